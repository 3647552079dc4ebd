from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
IDENTITY_KEY = "user_info"

SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, IDENTITY_KEY)


class TokenStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def clear(self, keys: Iterable[str]) -> None: ...


class MemoryTokenStore:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def clear(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.data.pop(key, None)


class RedisTokenStore:
    """Token storage that survives restarts.

    If Redis is unreachable every call degrades to a no-op and ``get``
    returns None, so the session simply looks anonymous.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        prefix: str = "streamchat:",
        ttl_sec: int = 0,
        client: Optional[redis.Redis] = None,
    ):
        self.r = client if client is not None else redis.Redis(host=host, port=port, decode_responses=True)
        self.prefix = prefix
        self.ttl = ttl_sec or None

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.r.get(self._key(key))
        except RedisError as e:
            logger.warning("token store unavailable, get(%s) ignored: %s", key, e)
            return None

    async def set(self, key: str, value: str) -> None:
        try:
            await self.r.set(self._key(key), value, ex=self.ttl)
        except RedisError as e:
            logger.warning("token store unavailable, set(%s) ignored: %s", key, e)

    async def clear(self, keys: Iterable[str]) -> None:
        names = [self._key(k) for k in keys]
        if not names:
            return
        try:
            await self.r.delete(*names)
        except RedisError as e:
            logger.warning("token store unavailable, clear ignored: %s", e)

    async def close(self) -> None:
        await self.r.aclose()


def build_token_store(settings) -> TokenStore:
    backend = (settings.TOKEN_STORE_BACKEND or "").lower()
    if backend == "memory":
        return MemoryTokenStore()
    if backend == "redis":
        return RedisTokenStore(
            settings.REDIS_HOST,
            settings.REDIS_PORT,
            prefix=settings.TOKEN_KEY_PREFIX,
            ttl_sec=settings.TOKEN_TTL_SEC,
        )
    raise ValueError(f"Unsupported token store backend: {settings.TOKEN_STORE_BACKEND}")
