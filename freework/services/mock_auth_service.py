"""In-memory credential store and token minting for the mock backend."""

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog

from freework.config import Settings, get_settings
from freework.models.user import User, UserRole

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
MOCK_PASSWORD = "password"


def _seed_users() -> list[User]:
    return [
        User(
            id="freelancer1",
            email="john@example.com",
            first_name="John",
            last_name="Doe",
            role=UserRole.FREELANCER,
            profile_picture="https://i.pravatar.cc/150?img=12",
            created_at=datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc),
        ),
        User(
            id="emily-chen",
            email="emily@example.com",
            first_name="Emily",
            last_name="Chen",
            role=UserRole.CUSTOMER,
            profile_picture="https://i.pravatar.cc/150?img=20",
            created_at=datetime(2024, 3, 20, 14, 30, tzinfo=timezone.utc),
        ),
    ]


@dataclass
class _RefreshRecord:
    user_id: str
    expires_at: datetime
    revoked_at: Optional[datetime] = None


class MockAuthService:
    """Credential checks, JWT issuance, and refresh token lifecycle held in memory."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._users: dict[str, User] = {u.id: u for u in _seed_users()}
        self._password_hashes: dict[str, str] = {}
        self._refresh_tokens: dict[str, _RefreshRecord] = {}

    # -- users -------------------------------------------------------------

    def get_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in self._users.values():
            if user.email.lower() == email:
                return user
        return None

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def register_user(
        self, full_name: str, email: str, password: str, role: UserRole
    ) -> User:
        """Create a new account.

        Raises:
            ValueError: If the email is already registered
        """
        if self.get_by_email(email) is not None:
            raise ValueError("Email already registered")

        first_name, _, last_name = full_name.strip().partition(" ")
        base_id = re.sub(r"[^a-z0-9]+", "-", full_name.strip().lower()).strip("-") or "user"
        user_id = base_id
        while user_id in self._users:
            user_id = f"{base_id}-{secrets.token_hex(2)}"

        user = User(
            id=user_id,
            email=email.strip(),
            first_name=first_name,
            last_name=last_name,
            role=role,
            created_at=datetime.now(timezone.utc),
        )
        self._users[user.id] = user
        self._password_hashes[user.id] = self.hash_password(password)
        logger.info("mock_user_registered", user_id=user.id, role=role.value)
        return user

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt."""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    def verify_password(self, user: User, password: str) -> bool:
        """Check a password.

        Registered accounts compare against their bcrypt hash. Seeded demo
        accounts accept ``password`` or the user's first name, case-insensitively.
        """
        password_hash = self._password_hashes.get(user.id)
        if password_hash is not None:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        return password == MOCK_PASSWORD or password.lower() == user.first_name.lower()

    # -- access tokens -------------------------------------------------------

    def create_access_token(self, user: User) -> str:
        """Create a signed JWT access token for ``user``."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value,
            "iat": now,
            "exp": now + timedelta(seconds=self.settings.mock_access_token_ttl_seconds),
        }
        return jwt.encode(payload, self.settings.mock_jwt_secret, algorithm=JWT_ALGORITHM)

    def validate_access_token(self, token: str) -> dict:
        """Decode and verify an access token.

        Raises:
            ValueError: If the token is invalid, expired, or malformed
        """
        try:
            return jwt.decode(
                token,
                self.settings.mock_jwt_secret,
                algorithms=[JWT_ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Access token has expired")
        except jwt.InvalidTokenError as e:
            raise ValueError(f"Invalid access token: {e}")

    # -- refresh tokens ------------------------------------------------------

    @staticmethod
    def _hash(raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    def create_refresh_token(self, user_id: str) -> str:
        """Generate a refresh token and remember its hash."""
        raw_token = secrets.token_urlsafe(48)
        expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=self.settings.mock_refresh_token_ttl_seconds
        )
        self._refresh_tokens[self._hash(raw_token)] = _RefreshRecord(
            user_id=user_id, expires_at=expires_at
        )
        logger.debug("mock_refresh_token_created", user_id=user_id)
        return raw_token

    def validate_refresh_token(self, raw_token: str) -> Optional[str]:
        """Return the owning user id if the token is known, live and unrevoked."""
        record = self._refresh_tokens.get(self._hash(raw_token))
        if record is None:
            logger.warning("mock_refresh_token_not_found")
            return None
        if record.revoked_at is not None:
            logger.warning("mock_refresh_token_revoked", user_id=record.user_id)
            return None
        if record.expires_at < datetime.now(timezone.utc):
            logger.warning("mock_refresh_token_expired", user_id=record.user_id)
            return None
        return record.user_id

    def revoke_refresh_token(self, raw_token: str) -> bool:
        """Revoke a refresh token; returns False if it was unknown or already revoked."""
        record = self._refresh_tokens.get(self._hash(raw_token))
        if record is None or record.revoked_at is not None:
            return False
        record.revoked_at = datetime.now(timezone.utc)
        return True

    def rotate_refresh_token(self, old_token: str, user_id: str) -> str:
        """Revoke the old refresh token and create a new one."""
        self.revoke_refresh_token(old_token)
        return self.create_refresh_token(user_id)
