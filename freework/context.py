"""Application context wiring the session and realtime layers together."""

from typing import Optional

import httpx
import structlog

from freework.config import Settings, get_settings
from freework.models.user import Session
from freework.services.auth_client import AuthClient, SessionAuth
from freework.services.clock import Clock, LoopClock
from freework.services.inbox import Inbox
from freework.services.logging_service import configure_logging
from freework.services.realtime_channel import (
    AiohttpConnector,
    Connector,
    RealtimeChannel,
)
from freework.services.session_manager import SessionManager
from freework.services.token_store import TokenStore, build_token_store

logger = structlog.get_logger(__name__)


class AppContext:
    """Everything a UI shell needs, constructed explicitly and injectable.

    Collaborators default from settings; tests pass fakes. Logging out, for
    any reason, closes the realtime connection and clears the inbox.
    ``configure_logs=True`` sets up structlog from ``log_level``/``log_json``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Clock] = None,
        store: Optional[TokenStore] = None,
        auth_client: Optional[AuthClient] = None,
        connector: Optional[Connector] = None,
        configure_logs: bool = False,
    ):
        self.settings = settings or get_settings()
        if configure_logs:
            configure_logging(self.settings.log_level, json_output=self.settings.log_json)
        self.clock = clock or LoopClock()
        self.store = store or build_token_store(self.settings)
        self.auth_client = auth_client or AuthClient.from_settings(self.settings)

        self.session = SessionManager(self.auth_client, self.store, self.clock, self.settings)
        self.channel = RealtimeChannel(
            connector or AiohttpConnector(heartbeat=self.settings.ws_heartbeat_seconds),
            self.clock,
            self.settings,
        )
        self.inbox = Inbox(self.channel)

        self.session.add_logout_hook(self._on_logout)
        self.session.tokens.subscribe(self._on_tokens)

    async def __aenter__(self) -> "AppContext":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Resume any persisted session."""
        await self.session.restore()

    async def start_realtime(self) -> bool:
        """Connect the realtime channel if the session holds a valid token.

        Returns:
            True if the channel is connected afterwards
        """
        token = self.session.get_access_token()
        if token is None or not self.session.is_authenticated():
            logger.warning("realtime_start_refused_unauthenticated")
            return False

        await self.channel.connect(token)
        return self.channel.is_connected()

    def http_client(self, base_url: str, **kwargs) -> httpx.AsyncClient:
        """An API client that sends the session's bearer token and refreshes on 401."""
        return httpx.AsyncClient(base_url=base_url, auth=SessionAuth(self.session), **kwargs)

    async def aclose(self) -> None:
        """Release connections without ending the persisted session."""
        await self.channel.aclose()
        self.inbox.close()
        await self.auth_client.aclose()
        await self.store.close()

    async def _on_logout(self) -> None:
        await self.channel.disconnect()
        self.inbox.clear()

    def _on_tokens(self, session: Session) -> None:
        self.channel.update_token(session.access_token)
