"""Session lifecycle: login, logout, and self-renewing access tokens.

State machine::

    LOGGED_OUT --login/register--> LOGGED_IN --refresh ok--> LOGGED_IN
    LOGGED_IN --refresh rejected | logout--> LOGGED_OUT

A refresh timer fires ``refresh_lead_seconds`` before the access token
expires. Exactly one timer is live while logged in and none while logged
out. Refreshes are serialized: concurrent callers share one request.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from freework.config import Settings, get_settings
from freework.exceptions import (
    AuthenticationError,
    FreeworkError,
    SessionExpiredError,
)
from freework.models.auth import AuthResult, LoginRequest, RegisterRequest
from freework.models.user import Session, User, UserRole
from freework.services.auth_client import AuthClient
from freework.services.broadcast import Broadcast, StateBroadcast
from freework.services.clock import Clock, TimerHandle
from freework.services.logging_service import (
    bind_session_context,
    clear_session_context,
)
from freework.services.token_service import (
    is_token_expired,
    refresh_delay,
    token_expiry,
)
from freework.services.token_store import TokenStore

logger = structlog.get_logger(__name__)


class AuthState(str, Enum):
    """Whether a session is current."""

    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


class SessionManager:
    """Owns the single current session of an application context."""

    def __init__(
        self,
        auth_client: AuthClient,
        store: TokenStore,
        clock: Clock,
        settings: Optional[Settings] = None,
    ):
        self.auth_client = auth_client
        self.store = store
        self.clock = clock
        self.settings = settings or get_settings()

        self.current_user: StateBroadcast[Optional[User]] = StateBroadcast("current_user")
        self.tokens: Broadcast[Session] = Broadcast("tokens")

        self._session: Optional[Session] = None
        self._refresh_timer: Optional[TimerHandle] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._logout_hooks: list[Callable[[], Any]] = []
        # Bumped whenever the session is replaced outside of refresh, so a
        # refresh that completes afterwards cannot resurrect the old session
        self._generation = 0

    # -- synchronous reads ---------------------------------------------------

    @property
    def state(self) -> AuthState:
        return AuthState.LOGGED_IN if self._session is not None else AuthState.LOGGED_OUT

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def has_refresh_timer(self) -> bool:
        return self._refresh_timer is not None

    def get_access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    def get_current_user(self) -> Optional[User]:
        return self.current_user.value

    def is_authenticated(self) -> bool:
        """True iff an access token is held and has not expired."""
        return not is_token_expired(self.get_access_token(), self.clock.now())

    def has_role(self, *roles: UserRole) -> bool:
        user = self.get_current_user()
        return self.is_authenticated() and user is not None and user.role in roles

    def add_logout_hook(self, hook: Callable[[], Any]) -> None:
        """Run ``hook`` (sync or async) during every logout, explicit or forced."""
        self._logout_hooks.append(hook)

    # -- lifecycle -------------------------------------------------------------

    async def restore(self) -> Optional[User]:
        """Resume a session persisted by an earlier run.

        Returns:
            The restored user, or None when the store holds no complete session
        """
        user = await self.store.get_user()
        access_token = await self.store.get_access_token()
        refresh_token = await self.store.get_refresh_token()

        if user is None or not access_token or not refresh_token:
            logger.debug("session_restore_skipped", has_user=user is not None)
            return None

        self._session = self._build_session(user, access_token, refresh_token)
        self._arm_refresh_timer(access_token)
        bind_session_context(user.id, user.role.value)
        self.current_user.publish(user)
        logger.info("session_restored", user_id=user.id)
        return user

    async def login(self, credentials: LoginRequest) -> Session:
        """Exchange credentials for a token pair.

        Raises:
            AuthenticationError: If the credentials are rejected
            TransientNetworkError: If the server could not be reached
            ResponseShapeError: If the server answered with an unknown payload
        """
        result = await self.auth_client.login(credentials)
        self._generation += 1
        session = await self._establish(result, self._generation)
        logger.info("user_logged_in", user_id=session.user_id, role=session.role.value)
        return session

    async def register(self, request: RegisterRequest) -> Session:
        """Create an account and sign in to it (same errors as :meth:`login`)."""
        result = await self.auth_client.register(request)
        self._generation += 1
        session = await self._establish(result, self._generation)
        logger.info("user_registered", user_id=session.user_id, role=session.role.value)
        return session

    async def logout(self) -> None:
        """End the session locally and notify the server best-effort.

        Never raises. Cancels the refresh timer, clears the store, runs logout
        hooks and broadcasts ``None`` as the current user.
        """
        self._generation += 1
        self._cancel_refresh_timer()

        if self._session is not None:
            refresh_token: Optional[str] = self._session.refresh_token
        else:
            refresh_token = await self.store.get_refresh_token()
        user = self.current_user.value
        self._session = None
        clear_session_context()

        await self.store.clear()
        await self._run_logout_hooks()
        if user is not None:
            self.current_user.publish(None)

        if refresh_token:
            try:
                await self.auth_client.logout(refresh_token)
            except FreeworkError as e:
                logger.warning("logout_notify_failed", error=str(e), error_type=type(e).__name__)

        logger.info("user_logged_out", user_id=user.id if user else None)

    async def refresh(self) -> Session:
        """Exchange the refresh token for a new pair.

        Concurrent calls share the in-flight request.

        Raises:
            SessionExpiredError: No refresh token, or the server rejected it;
                the session has been logged out
            TransientNetworkError: Transport failure or server error; the
                session is kept
            ResponseShapeError: Unrecognized response; the session is kept
        """
        if self._refresh_task is None:
            task = asyncio.ensure_future(self._do_refresh())
            task.add_done_callback(self._refresh_done)
            self._refresh_task = task
        return await asyncio.shield(self._refresh_task)

    async def fetch_profile(self) -> User:
        """Reload the current user from ``GET /me`` and broadcast it.

        Raises:
            SessionExpiredError: If there is no session
        """
        token = self.get_access_token()
        if self._session is None or token is None:
            raise SessionExpiredError("Not logged in")

        user = await self.auth_client.me(token)
        self._session = self._session.model_copy(update={"user_id": user.id, "role": user.role})
        await self.store.set_user(user)
        self.current_user.publish(user)
        return user

    # -- internals ---------------------------------------------------------------

    def _refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the outcome as retrieved even if every awaiting caller went away
            task.exception()

    async def _do_refresh(self) -> Session:
        generation = self._generation

        if self._session is not None:
            refresh_token: Optional[str] = self._session.refresh_token
        else:
            refresh_token = await self.store.get_refresh_token()

        if not refresh_token:
            logger.warning("refresh_without_token")
            if self._session is not None:
                await self.logout()
            raise SessionExpiredError("No refresh token available")

        try:
            result = await self.auth_client.refresh(refresh_token)
        except AuthenticationError as e:
            logger.warning("refresh_rejected", error=str(e))
            if generation == self._generation:
                await self.logout()
            raise SessionExpiredError("Refresh token rejected") from e

        if generation != self._generation:
            logger.info("refresh_result_discarded")
            raise SessionExpiredError("Session ended while refreshing")

        session = await self._establish(
            result, generation, fallback_user=self.current_user.value
        )
        logger.info("token_refreshed", user_id=session.user_id)
        return session

    async def _establish(
        self,
        result: AuthResult,
        generation: int,
        fallback_user: Optional[User] = None,
    ) -> Session:
        """Adopt a freshly issued token pair as the current session.

        The user comes from the response, else ``fallback_user``, else ``GET /me``.
        Nothing is adopted if a login or logout replaced ``generation`` while
        this was awaiting.

        Raises:
            SessionExpiredError: If the session was replaced meanwhile
        """
        user = result.user or fallback_user
        if user is None:
            user = await self.auth_client.me(result.access_token)
            if generation != self._generation:
                logger.info("session_superseded", stage="profile")
                raise SessionExpiredError("Session ended while it was being established")

        await self.store.set_tokens(result.access_token, result.refresh_token)
        await self.store.set_user(user)
        if generation != self._generation:
            # Our writes may have landed after the newer session's
            logger.info("session_superseded", stage="store")
            await self._resync_store()
            raise SessionExpiredError("Session ended while it was being established")

        session = self._build_session(user, result.access_token, result.refresh_token)
        self._session = session
        bind_session_context(user.id, user.role.value)
        self._arm_refresh_timer(result.access_token)

        if self.current_user.value != user:
            self.current_user.publish(user)
        self.tokens.publish(session)
        return session

    async def _resync_store(self) -> None:
        """Make the store hold exactly the current session, or nothing."""
        session = self._session
        if session is None:
            await self.store.clear()
            return

        await self.store.set_tokens(session.access_token, session.refresh_token)
        user = self.current_user.value
        if user is not None:
            await self.store.set_user(user)

    @staticmethod
    def _build_session(user: User, access_token: str, refresh_token: str) -> Session:
        return Session(
            user_id=user.id,
            role=user.role,
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=token_expiry(access_token),
        )

    def _arm_refresh_timer(self, access_token: str) -> None:
        self._cancel_refresh_timer()

        if token_expiry(access_token) is None:
            # Unreadable tokens count as expired; retry at a bounded rate
            delay = float(self.settings.refresh_retry_seconds)
            logger.warning("access_token_undecodable", retry_seconds=delay)
        else:
            delay = refresh_delay(
                access_token, self.clock.now(), self.settings.refresh_lead_seconds
            )

        self._refresh_timer = self.clock.call_later(delay, self._on_refresh_timer)
        logger.debug("refresh_timer_armed", delay_seconds=round(delay, 3))

    def _cancel_refresh_timer(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

    async def _on_refresh_timer(self) -> None:
        self._refresh_timer = None
        try:
            await self.refresh()
        except SessionExpiredError as e:
            logger.info("scheduled_refresh_ended_session", reason=str(e))
        except FreeworkError as e:
            if self._session is None:
                return
            if self.is_authenticated():
                delay = float(self.settings.refresh_retry_seconds)
                logger.warning(
                    "scheduled_refresh_failed_retrying",
                    error=str(e),
                    error_type=type(e).__name__,
                    retry_seconds=delay,
                )
                self._cancel_refresh_timer()
                self._refresh_timer = self.clock.call_later(delay, self._on_refresh_timer)
            else:
                logger.warning("scheduled_refresh_failed_token_expired", error=str(e))
                await self.logout()

    async def _run_logout_hooks(self) -> None:
        for hook in list(self._logout_hooks):
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "logout_hook_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
