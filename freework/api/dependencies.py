"""FastAPI dependencies for the mock backend."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from freework.models.user import User
from freework.services.mock_auth_service import MockAuthService

# Missing headers are answered with 401 below rather than HTTPBearer's default
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_auth_service(request: Request) -> MockAuthService:
    """The credential store bound to this app instance."""
    return request.app.state.auth_service


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: MockAuthService = Depends(get_auth_service),
) -> User:
    """Resolve the account named by the bearer access token.

    Raises:
        HTTPException 401: Missing, invalid or expired token, or unknown subject
    """
    if credentials is None:
        raise _unauthorized("Missing bearer token")

    try:
        claims = auth_service.validate_access_token(credentials.credentials)
    except ValueError:
        raise _unauthorized("Invalid or expired access token")

    account = auth_service.get_by_id(claims.get("sub", ""))
    if account is None:
        raise _unauthorized("User not found")
    return account
