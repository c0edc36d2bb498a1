from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from siro.core.documents import documents_table_sql
from siro.utils.ids import utcnow


class PresenceStatus(str, Enum):
    ONLINE = "Online"
    OFFLINE = "Offline"


class User(BaseModel):
    id: str
    username: str
    display_name: str
    email: Optional[str] = None
    about: Optional[str] = None
    avatar: Optional[str] = None

    # symmetric: a in b.friends iff b in a.friends
    friends: List[str] = Field(default_factory=list)

    status: PresenceStatus = PresenceStatus.OFFLINE
    session_id: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)

    def is_friend(self, other_id: str) -> bool:
        return other_id in self.friends

    def summary(self) -> "UserSummary":
        return UserSummary(
            id=self.id,
            username=self.username,
            display_name=self.display_name,
            avatar=self.avatar,
            status=self.status,
        )


class UserSummary(BaseModel):
    id: str
    username: str
    display_name: str
    avatar: Optional[str] = None
    status: PresenceStatus = PresenceStatus.OFFLINE


users_sql = documents_table_sql.format(collection="users")
