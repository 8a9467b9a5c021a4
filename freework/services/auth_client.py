"""HTTP client for the auth endpoints and bearer auth for other API calls."""

from typing import TYPE_CHECKING, AsyncGenerator, Generator, Optional

import httpx
import structlog

from freework.config import Settings
from freework.exceptions import (
    AuthenticationError,
    ResponseShapeError,
    TransientNetworkError,
)
from freework.models.auth import (
    AuthResult,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    parse_auth_response,
)
from freework.models.user import User

if TYPE_CHECKING:
    from freework.services.session_manager import SessionManager

logger = structlog.get_logger(__name__)

MOCK_BASE_URL = "http://mock-backend"

# Client errors meaning "try again later" rather than a rejection
RETRYABLE_STATUS_CODES = {408, 425, 429}

# Paths that must never carry (or trigger refresh of) a bearer token
UNAUTHENTICATED_PATHS = ("/login", "/register", "/refresh")


class AuthClient:
    """Thin async wrapper around the auth REST endpoints.

    Error mapping:
    - transport failures and 5xx responses raise TransientNetworkError
    - other 4xx responses raise AuthenticationError
    - bodies of no known shape raise ResponseShapeError
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthClient":
        """Build a client for the configured backend.

        With ``use_mock_backend`` the requests are served in-process by the
        mock FastAPI app through an ASGI transport.
        """
        if settings.use_mock_backend:
            from freework.api.main import create_mock_app

            return cls(
                base_url=MOCK_BASE_URL,
                timeout=settings.http_timeout_seconds,
                transport=httpx.ASGITransport(app=create_mock_app(settings)),
            )
        return cls(base_url=settings.api_base_url, timeout=settings.http_timeout_seconds)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        try:
            response = await self._get_client().request(method, path, json=json, headers=headers)
        except httpx.RequestError as e:
            logger.warning(
                "auth_request_transport_error",
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransientNetworkError(f"Request to {path} failed: {e}") from e

        status_code = response.status_code
        if status_code >= 500 or status_code in RETRYABLE_STATUS_CODES:
            logger.warning("auth_request_retryable_status", path=path, status_code=status_code)
            raise TransientNetworkError(
                f"Retryable status {status_code} from {path}",
                status_code=status_code,
            )

        if status_code >= 400:
            detail = _error_detail(response)
            logger.info(
                "auth_request_rejected",
                path=path,
                status_code=status_code,
                detail=detail,
            )
            raise AuthenticationError(detail)

        return response

    async def _auth_call(self, path: str, body: dict) -> AuthResult:
        response = await self._request("POST", path, json=body)
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseShapeError(f"Response from {path} is not JSON") from e
        return parse_auth_response(data)

    async def login(self, credentials: LoginRequest) -> AuthResult:
        """POST /login."""
        return await self._auth_call("/login", credentials.model_dump(by_alias=True))

    async def register(self, request: RegisterRequest) -> AuthResult:
        """POST /register."""
        return await self._auth_call("/register", request.model_dump(by_alias=True))

    async def refresh(self, refresh_token: str) -> AuthResult:
        """POST /refresh."""
        body = RefreshRequest(refresh_token=refresh_token).model_dump(by_alias=True)
        return await self._auth_call("/refresh", body)

    async def logout(self, refresh_token: str) -> None:
        """POST /logout; the server invalidates the refresh token."""
        body = RefreshRequest(refresh_token=refresh_token).model_dump(by_alias=True)
        await self._request("POST", "/logout", json=body)

    async def me(self, access_token: str) -> User:
        """GET /me."""
        response = await self._request("GET", "/me", access_token=access_token)
        try:
            return User.model_validate(response.json())
        except ValueError as e:
            raise ResponseShapeError(f"Unrecognized user payload from /me: {e}") from e


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str):
            return detail
    return f"HTTP {response.status_code}"


class SessionAuth(httpx.Auth):
    """Attach the session's bearer token; on a 401, refresh once and retry.

    Only usable with ``httpx.AsyncClient``. A failed refresh surfaces as the
    session manager's error (and has already logged the session out).
    """

    def __init__(self, session_manager: "SessionManager"):
        self.session_manager = session_manager

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("SessionAuth requires httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        if request.url.path.endswith(UNAUTHENTICATED_PATHS):
            yield request
            return

        token = self.session_manager.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

        response = yield request

        if response.status_code == 401:
            logger.info("bearer_rejected_refreshing", path=request.url.path)
            await self.session_manager.refresh()
            request.headers["Authorization"] = f"Bearer {self.session_manager.get_access_token()}"
            yield request
