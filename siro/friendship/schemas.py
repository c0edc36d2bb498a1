from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from siro.users.models import UserSummary

from .models import RequestStatus


# Friends
class FriendsResponseModel(BaseModel):
    friends: List[UserSummary]


# Friend requests
class FriendRequestItem(BaseModel):
    id: str
    sender: Optional[UserSummary]
    recipient: Optional[UserSummary]
    status: RequestStatus
    created_at: datetime


class FriendRequestsResponseModel(BaseModel):
    requests: List[FriendRequestItem]
