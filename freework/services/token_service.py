"""Client-side bearer token inspection.

Tokens are decoded without signature verification; the server remains the
only authority on whether a token is genuine. Anything that cannot be read
is treated as expired.
"""

from datetime import datetime, timezone
from typing import Optional

import jwt
import structlog
from pydantic import ValidationError

from freework.exceptions import TokenDecodeError
from freework.models.auth import TokenPayload

logger = structlog.get_logger(__name__)


def decode_token(token: str) -> TokenPayload:
    """Read the claims of a JWT without verifying it.

    Args:
        token: Encoded JWT string

    Returns:
        Parsed claims

    Raises:
        TokenDecodeError: If the token is malformed or has no numeric ``exp``
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise TokenDecodeError(f"Malformed token: {e}") from e

    try:
        return TokenPayload.model_validate(claims)
    except ValidationError as e:
        raise TokenDecodeError(f"Token claims unusable: {e.error_count()} errors") from e


def is_token_expired(token: Optional[str], now: float) -> bool:
    """Check whether a token is expired at ``now`` (POSIX seconds).

    Missing and undecodable tokens count as expired.
    """
    if not token:
        return True
    try:
        payload = decode_token(token)
    except TokenDecodeError as e:
        logger.debug("token_decode_failed", error=str(e))
        return True
    return payload.exp <= now


def token_expiry(token: str) -> Optional[datetime]:
    """Expiry of a token as an aware UTC datetime, None if unreadable."""
    try:
        payload = decode_token(token)
    except TokenDecodeError:
        return None
    return datetime.fromtimestamp(payload.exp, tz=timezone.utc)


def refresh_delay(token: str, now: float, lead_seconds: float) -> float:
    """Seconds to wait before refreshing ``token``.

    Fires ``lead_seconds`` before expiry. Tokens already inside the lead
    window, expired, or unreadable yield 0 so the refresh happens at once.
    """
    try:
        payload = decode_token(token)
    except TokenDecodeError as e:
        logger.warning("refresh_delay_undecodable_token", error=str(e))
        return 0.0
    return max(0.0, payload.exp - lead_seconds - now)
