"""Auth request and response models with shape normalization."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from freework.exceptions import ResponseShapeError
from freework.models.user import User, WireModel


class LoginRequest(WireModel):
    """Login credentials.

    Attributes:
        email: Account email address
        password: Account password
    """

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def email_has_at(cls, v: str) -> str:
        """Reject values that cannot be an email address."""
        if "@" not in v:
            raise ValueError("Email must contain '@'")
        return v.strip()


class RegisterRequest(WireModel):
    """New account registration request."""

    full_name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8)
    role: Literal["CUSTOMER", "FREELANCER"]

    @field_validator("password")
    @classmethod
    def password_not_empty(cls, v: str) -> str:
        """Ensure password is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("Password cannot be empty or whitespace only")
        return v


class RefreshRequest(WireModel):
    """Request to exchange a refresh token for a new token pair."""

    refresh_token: str


class TokenPayload(BaseModel):
    """Claims read from an access token.

    Only ``exp`` is required; everything else is informational.
    """

    model_config = ConfigDict(extra="allow")

    sub: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    exp: float
    iat: Optional[float] = None


class AuthResult(BaseModel):
    """Canonical form of every auth response the server may send."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    user: Optional[User] = None


class _StrictShape(BaseModel):
    """Known response shapes match field names exactly, never by fallback."""

    model_config = ConfigDict(populate_by_name=False, extra="ignore")


class CamelCaseAuthResponse(_StrictShape):
    """``{accessToken, refreshToken, tokenType, expiresIn, user}``"""

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)
    token_type: str = Field(default="Bearer", alias="tokenType")
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")
    user: Optional[User] = None

    def to_result(self) -> AuthResult:
        return AuthResult(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
            user=self.user,
        )


class TokenUserDetailsResponse(_StrictShape):
    """``{token, refreshToken, tokenType, expiresIn, userDetails}``"""

    token: str = Field(min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)
    token_type: str = Field(default="Bearer", alias="tokenType")
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")
    user_details: Optional[User] = Field(default=None, alias="userDetails")

    def to_result(self) -> AuthResult:
        return AuthResult(
            access_token=self.token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
            user=self.user_details,
        )


class SnakeCaseAuthResponse(_StrictShape):
    """``{access_token, refresh_token, token_type, expires_in, user}``"""

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    user: Optional[User] = None

    def to_result(self) -> AuthResult:
        return AuthResult(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
            user=self.user,
        )


KNOWN_AUTH_SHAPES = (
    CamelCaseAuthResponse,
    TokenUserDetailsResponse,
    SnakeCaseAuthResponse,
)


def parse_auth_response(data: Any) -> AuthResult:
    """Normalize a login/register/refresh response body.

    Args:
        data: Decoded JSON body

    Returns:
        The canonical AuthResult

    Raises:
        ResponseShapeError: If the body matches none of the known shapes
    """
    if not isinstance(data, dict):
        raise ResponseShapeError(
            f"Auth response must be a JSON object, got {type(data).__name__}"
        )

    for shape in KNOWN_AUTH_SHAPES:
        try:
            return shape.model_validate(data).to_result()
        except ValidationError:
            continue

    raise ResponseShapeError(
        f"Unrecognized auth response shape with keys {sorted(data.keys())}"
    )
