"""User and session models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models exchanged with the server in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRole(str, Enum):
    """Marketplace roles."""

    CUSTOMER = "CUSTOMER"
    FREELANCER = "FREELANCER"
    ADMIN = "ADMIN"


class User(WireModel):
    """An authenticated marketplace user."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    profile_picture: Optional[str] = None
    created_at: datetime


class Session(BaseModel):
    """The current authenticated session.

    Attributes:
        user_id: Identifier of the signed-in user
        role: The user's marketplace role
        access_token: Short-lived bearer credential
        refresh_token: Long-lived credential used only to mint new access tokens
        expiry: Decoded access token expiry, None when the token carries no
            readable ``exp`` claim
    """

    user_id: str
    role: UserRole
    access_token: str
    refresh_token: str
    expiry: Optional[datetime] = None
