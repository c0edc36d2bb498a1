from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from siro.core.documents import documents_table_sql
from siro.utils.ids import new_id, utcnow


class RequestStatus(str, Enum):
    PENDING = "pending"
    # accept started, see step
    ACCEPTING = "accepting"


class AcceptStep(str, Enum):
    FRIENDS_LINKED = "friends_linked"
    CONVERSATION_READY = "conversation_ready"


class FriendRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    sender_id: str
    recipient_id: str
    pair_key: str
    status: RequestStatus = RequestStatus.PENDING
    step: Optional[AcceptStep] = None
    conversation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def reached(self, step: AcceptStep) -> bool:
        order = list(AcceptStep)
        return self.step is not None and order.index(self.step) >= order.index(step)


friend_requests_sql = documents_table_sql.format(collection="friend_requests") + """
-- the unique key is the sorted "sender:recipient" pair, so a second request in
-- either direction collides while one is pending
"""
