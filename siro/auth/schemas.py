import re
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from siro.friendship.schemas import FriendRequestItem
from siro.users.models import UserSummary
from siro.users.schemas import ProfileModel


"""
auth/register
"""


USERNAME_PATTERN = re.compile(r"^[a-z0-9_.]{3,20}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}$")


class UserRegistrationModel(BaseModel):
    email: str
    username: str
    password: SecretStr
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def validate_email(cls, email: str) -> str:
        email = email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValueError(f"Email ({email}) is invalid.")
        return email

    @field_validator("username")
    @classmethod
    def validate_username(cls, username: str) -> str:
        username = username.strip().lower()
        if not USERNAME_PATTERN.match(username):
            raise ValueError(
                "Username must be 3 to 20 characters of letters, numbers, underscores or dots."
            )
        return username

    @field_validator("password")
    @classmethod
    def validate_password(cls, password: SecretStr) -> SecretStr:
        password_str = password.get_secret_value()

        if len(password_str) < 8:
            raise ValueError("Password must be at least 8 characters long.")

        if not (re.search(r"[A-Za-z]", password_str) and re.search(r"[0-9]", password_str)):
            raise ValueError("Password must contain at least one letter and one number.")

        return password

    @property
    def display_name(self) -> str:
        full_name = " ".join(part.strip() for part in (self.first_name, self.last_name) if part and part.strip())
        return full_name or self.username


class UserRegistrationResponseModel(BaseModel):
    id: str
    email: str
    username: str


"""
auth/login
"""


class UserLoginModel(BaseModel):
    email: str
    password: SecretStr


class UserLoginResponseModel(BaseModel):
    access_token: str
    expires_in: int
    user_id: str
    email: str


"""
auth/access
"""


class AccessTokenResponseModel(BaseModel):
    access_token: str


"""
auth/me
"""


class MeResponseModel(BaseModel):
    profile: ProfileModel
    friends: List[UserSummary]
    incoming_requests: List[FriendRequestItem]
    outgoing_requests: List[FriendRequestItem]
