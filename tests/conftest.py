"""Pytest configuration and shared fixtures."""

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from freework.api.main import create_mock_app
from freework.config import Settings
from freework.services.auth_client import AuthClient
from freework.services.realtime_channel import RealtimeChannel
from freework.services.session_manager import SessionManager
from freework.services.token_store import MemoryTokenStore
from tests.fakes import TEST_JWT_SECRET, FakeClock, FakeConnector


@pytest.fixture
def settings() -> Settings:
    """Deterministic settings independent of the environment."""
    return Settings(
        api_base_url="http://api.test/api/auth",
        use_mock_backend=True,
        ws_url="ws://realtime.test/ws",
        refresh_lead_seconds=60,
        refresh_retry_seconds=30,
        reconnect_interval_seconds=3.0,
        max_reconnect_attempts=5,
        redis_url=None,
        mock_jwt_secret=TEST_JWT_SECRET,
        mock_access_token_ttl_seconds=3600,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def mock_app(settings):
    """A fresh mock backend with its own credential store."""
    return create_mock_app(settings)


@pytest.fixture
async def auth_client(mock_app) -> AsyncGenerator[AuthClient, None]:
    """AuthClient talking to the mock backend in-process."""
    client = AuthClient(
        base_url="http://mock-backend",
        transport=httpx.ASGITransport(app=mock_app),
    )
    yield client
    await client.aclose()


@pytest.fixture
def fake_auth_client() -> MagicMock:
    """AuthClient double with async endpoint methods."""
    client = MagicMock(spec=AuthClient)
    client.login = AsyncMock()
    client.register = AsyncMock()
    client.refresh = AsyncMock()
    client.logout = AsyncMock(return_value=None)
    client.me = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def session_manager(auth_client, store, clock, settings) -> SessionManager:
    """SessionManager wired to the mock backend."""
    return SessionManager(auth_client, store, clock, settings)


@pytest.fixture
def fake_session_manager(fake_auth_client, store, clock, settings) -> SessionManager:
    """SessionManager wired to the AuthClient double."""
    return SessionManager(fake_auth_client, store, clock, settings)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
async def channel(connector, clock, settings) -> AsyncGenerator[RealtimeChannel, None]:
    realtime = RealtimeChannel(connector, clock, settings)
    yield realtime
    await realtime.disconnect()
