"""Durable storage for the token pair and the current user record."""

from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
import structlog
from pydantic import ValidationError

from freework.config import Settings
from freework.models.user import User

logger = structlog.get_logger(__name__)


class TokenStore(ABC):
    """Key/value storage surviving reloads, written only by the session manager.

    Keys are ``<prefix>_access_token``, ``<prefix>_refresh_token`` and
    ``<prefix>_user``.
    """

    def __init__(self, prefix: str = "freework"):
        self.prefix = prefix

    @property
    def access_key(self) -> str:
        return f"{self.prefix}_access_token"

    @property
    def refresh_key(self) -> str:
        return f"{self.prefix}_refresh_token"

    @property
    def user_key(self) -> str:
        return f"{self.prefix}_user"

    @abstractmethod
    async def get_access_token(self) -> Optional[str]: ...

    @abstractmethod
    async def get_refresh_token(self) -> Optional[str]: ...

    @abstractmethod
    async def get_user(self) -> Optional[User]: ...

    @abstractmethod
    async def set_tokens(self, access_token: str, refresh_token: str) -> bool: ...

    @abstractmethod
    async def set_user(self, user: User) -> bool: ...

    @abstractmethod
    async def clear(self) -> bool:
        """Remove all three keys in one step."""

    async def close(self) -> None:
        return None

    def _load_user(self, raw: Optional[str]) -> Optional[User]:
        if not raw:
            return None
        try:
            return User.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("stored_user_invalid", key=self.user_key, error=str(e))
            return None


class MemoryTokenStore(TokenStore):
    """Process-local store; contents are lost when the process exits."""

    def __init__(self, prefix: str = "freework"):
        super().__init__(prefix)
        self._data: dict[str, str] = {}

    async def get_access_token(self) -> Optional[str]:
        return self._data.get(self.access_key)

    async def get_refresh_token(self) -> Optional[str]:
        return self._data.get(self.refresh_key)

    async def get_user(self) -> Optional[User]:
        return self._load_user(self._data.get(self.user_key))

    async def set_tokens(self, access_token: str, refresh_token: str) -> bool:
        self._data[self.access_key] = access_token
        self._data[self.refresh_key] = refresh_token
        return True

    async def set_user(self, user: User) -> bool:
        self._data[self.user_key] = user.model_dump_json(by_alias=True)
        return True

    async def clear(self) -> bool:
        for key in (self.access_key, self.refresh_key, self.user_key):
            self._data.pop(key, None)
        return True


class RedisTokenStore(TokenStore):
    """Redis-backed store.

    Failures degrade gracefully: reads return None and writes return False,
    leaving the in-memory session usable.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        prefix: str = "freework",
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(prefix)
        self.url = url
        self._client = client

    async def _get_client(self) -> Optional[redis.Redis]:
        """Get or create the Redis client.

        Returns:
            Redis client or None if connection fails (graceful degradation)
        """
        if self._client is not None:
            return self._client

        if not self.url:
            return None

        try:
            client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
            await client.ping()
            self._client = client
            logger.info("redis_connected", url=self.url.split("@")[-1])
            return self._client
        except Exception as e:
            logger.warning("redis_connection_failed", error=str(e))
            return None

    async def _get(self, key: str) -> Optional[str]:
        client = await self._get_client()
        if client is None:
            return None

        try:
            return await client.get(key)
        except Exception as e:
            logger.warning("redis_token_store_get_failed", key=key, error=str(e))
            return None

    async def get_access_token(self) -> Optional[str]:
        return await self._get(self.access_key)

    async def get_refresh_token(self) -> Optional[str]:
        return await self._get(self.refresh_key)

    async def get_user(self) -> Optional[User]:
        return self._load_user(await self._get(self.user_key))

    async def set_tokens(self, access_token: str, refresh_token: str) -> bool:
        client = await self._get_client()
        if client is None:
            return False

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self.access_key, access_token)
                pipe.set(self.refresh_key, refresh_token)
                await pipe.execute()
            return True
        except Exception as e:
            logger.warning("redis_token_store_set_tokens_failed", error=str(e))
            return False

    async def set_user(self, user: User) -> bool:
        client = await self._get_client()
        if client is None:
            return False

        try:
            await client.set(self.user_key, user.model_dump_json(by_alias=True))
            return True
        except Exception as e:
            logger.warning("redis_token_store_set_user_failed", error=str(e))
            return False

    async def clear(self) -> bool:
        client = await self._get_client()
        if client is None:
            return False

        try:
            await client.delete(self.access_key, self.refresh_key, self.user_key)
            return True
        except Exception as e:
            logger.warning("redis_token_store_clear_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis_connection_closed")


def build_token_store(settings: Settings) -> TokenStore:
    """Pick the store implied by settings: Redis when a URL is configured."""
    if settings.redis_url:
        return RedisTokenStore(url=settings.redis_url, prefix=settings.storage_key_prefix)
    return MemoryTokenStore(prefix=settings.storage_key_prefix)
