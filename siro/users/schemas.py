from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import PresenceStatus, User, UserSummary


class ProfileModel(BaseModel):
    id: str
    username: str
    display_name: str
    email: Optional[str] = None
    about: Optional[str] = None
    avatar: Optional[str] = None
    status: PresenceStatus
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "ProfileModel":
        return cls.model_validate(user.model_dump(exclude={"friends", "session_id"}))


"""
users/
"""


class UsersResponseModel(BaseModel):
    users: List[UserSummary]


"""
users/me
"""


class ProfileUpdateModel(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=50)
    about: Optional[str] = Field(default=None, max_length=280)
    avatar: Optional[str] = None

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, display_name: Optional[str]) -> Optional[str]:
        if display_name is None:
            return None

        display_name = display_name.strip()
        if not display_name:
            raise ValueError("Display name cannot be blank.")
        return display_name
