"""Mock authentication API endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from freework.api.dependencies import get_auth_service, get_current_user
from freework.models.auth import (
    CamelCaseAuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
)
from freework.models.user import User, UserRole
from freework.services.mock_auth_service import MockAuthService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Auth"])


def _build_auth_response(
    auth_service: MockAuthService, user: User, refresh_token: str
) -> CamelCaseAuthResponse:
    """Create an auth response with a fresh access token."""
    return CamelCaseAuthResponse(
        accessToken=auth_service.create_access_token(user),
        refreshToken=refresh_token,
        tokenType="Bearer",
        expiresIn=auth_service.settings.mock_access_token_ttl_seconds,
        user=user,
    )


@router.post("/login")
async def login(
    request: LoginRequest,
    auth_service: MockAuthService = Depends(get_auth_service),
) -> CamelCaseAuthResponse:
    """Login with email and password.

    Raises:
        HTTPException 401: If credentials are invalid
    """
    user = auth_service.get_by_email(request.email)

    if user is None or not auth_service.verify_password(user, request.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("mock_user_logged_in", user_id=user.id)
    return _build_auth_response(
        auth_service, user, auth_service.create_refresh_token(user.id)
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    auth_service: MockAuthService = Depends(get_auth_service),
) -> CamelCaseAuthResponse:
    """Create an account and sign it in.

    Raises:
        HTTPException 409: If the email is already registered
    """
    try:
        user = auth_service.register_user(
            full_name=request.full_name,
            email=request.email,
            password=request.password,
            role=UserRole(request.role),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return _build_auth_response(
        auth_service, user, auth_service.create_refresh_token(user.id)
    )


@router.post("/refresh")
async def refresh(
    request: RefreshRequest,
    auth_service: MockAuthService = Depends(get_auth_service),
) -> CamelCaseAuthResponse:
    """Exchange a refresh token for a new pair, revoking the old one.

    Raises:
        HTTPException 401: If refresh token is invalid, expired, or revoked
    """
    user_id = auth_service.validate_refresh_token(request.refresh_token)
    user = auth_service.get_by_id(user_id) if user_id else None

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    new_refresh = auth_service.rotate_refresh_token(request.refresh_token, user.id)
    logger.info("mock_token_refreshed", user_id=user.id)
    return _build_auth_response(auth_service, user, new_refresh)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: RefreshRequest,
    auth_service: MockAuthService = Depends(get_auth_service),
) -> Response:
    """Invalidate a refresh token. Unknown tokens are accepted silently."""
    revoked = auth_service.revoke_refresh_token(request.refresh_token)
    logger.info("mock_user_logged_out", revoked=revoked)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)) -> User:
    """Get the user behind the bearer token."""
    return current_user
