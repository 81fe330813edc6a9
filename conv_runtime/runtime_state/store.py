# conv_runtime/runtime_state/store.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Session store adapters
-------------------------------------
The relay persists each session as one serialized JSON string under its
session_id, with a time-to-live. Expiry is the store's job; the relay only
renews the TTL by writing again on activity.

Two adapters implement the same small contract:

- RedisSessionStore     production backend (redis.asyncio).
- InMemorySessionStore  single-process backend for development and tests.

Callers never deal with connections: RedisSessionStore owns its connection
state (DISCONNECTED / CONNECTED / RETRYING) and reconnects with exponential
backoff. Every failure surfaces as StoreError.

Writes are last-writer-wins; there is no version token. Two connections
driving the same session_id can lose an update.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from conv_runtime.core.errors import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class SessionStoreAdapter(Protocol):
    """Key-value store with per-key TTL, keyed by session_id."""

    async def get(self, session_id: str) -> Optional[str]:
        """Return the serialized session, or None if absent or expired."""
        ...

    async def set(self, session_id: str, data: str, ttl_seconds: int) -> None:
        """Store the serialized session and (re)start its TTL."""
        ...

    async def ttl_remaining(self, session_id: str) -> Optional[int]:
        """Seconds until expiry, or None if absent. Debug surface only."""
        ...

    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemorySessionStore:
    """Dict-backed store with monotonic-clock expiry. Single process only."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: Dict[str, Tuple[str, float]] = {}

    def _live(self, session_id: str) -> Optional[Tuple[str, float]]:
        item = self._items.get(session_id)
        if item is None:
            return None
        if item[1] <= self._clock():
            del self._items[session_id]
            return None
        return item

    async def get(self, session_id: str) -> Optional[str]:
        item = self._live(session_id)
        return item[0] if item else None

    async def set(self, session_id: str, data: str, ttl_seconds: int) -> None:
        self._items[session_id] = (data, self._clock() + ttl_seconds)

    async def ttl_remaining(self, session_id: str) -> Optional[int]:
        item = self._live(session_id)
        if item is None:
            return None
        return max(0, math.ceil(item[1] - self._clock()))

    async def close(self) -> None:
        self._items.clear()


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RETRYING = "retrying"


class RedisSessionStore:
    """
    Redis-backed session store.

    Parameters
    ----------
    url:
        Redis URL, e.g. redis://localhost:6379/0.
    key_prefix:
        Prepended to every session_id to form the Redis key.
    retry_attempts:
        Connection attempts per (re)connect before giving up with StoreError.
    base_delay_s / max_delay_s:
        Exponential backoff between attempts: base, 2*base, 4*base ... capped.
    client_factory:
        Builds a fresh client. Defaults to Redis.from_url(url); tests pass fakes.
    sleep:
        Awaitable sleep used for backoff (asyncio.sleep by default).
    """

    def __init__(
        self,
        url: str,
        *,
        key_prefix: str = "conv:session:",
        retry_attempts: int = 5,
        base_delay_s: float = 0.2,
        max_delay_s: float = 5.0,
        client_factory: Optional[Callable[[], Redis]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.key_prefix = key_prefix
        self.retry_attempts = max(1, retry_attempts)
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self._client_factory = client_factory or (
            lambda: Redis.from_url(url, decode_responses=True)
        )
        self._sleep = sleep
        self._client: Optional[Redis] = None
        self.state = ConnectionState.DISCONNECTED

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    async def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except (RedisError, OSError) as exc:
            logger.debug("[RedisSessionStore] Error while closing client: %s", exc)

    async def _connect(self) -> Redis:
        if self._client is not None and self.state is ConnectionState.CONNECTED:
            return self._client

        delay = self.base_delay_s
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.retry_attempts + 1):
            if self._client is None:
                self._client = self._client_factory()
            try:
                await self._client.ping()
            except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
                last_exc = exc
                await self._discard_client()
                if attempt == self.retry_attempts:
                    break
                self.state = ConnectionState.RETRYING
                logger.warning(
                    "[RedisSessionStore] Connect attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt,
                    self.retry_attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)
                delay = min(delay * 2, self.max_delay_s)
                continue

            if self.state is not ConnectionState.CONNECTED:
                logger.info("[RedisSessionStore] Connected to %s", self.url)
            self.state = ConnectionState.CONNECTED
            return self._client

        self.state = ConnectionState.DISCONNECTED
        raise StoreError("Session store is unreachable.") from last_exc

    async def _run(self, op: str, fn: Callable[[Redis], Awaitable[T]]) -> T:
        """Run `fn` against a connected client; one reconnect on connection loss."""
        for attempt in (1, 2):
            client = await self._connect()
            try:
                return await fn(client)
            except (RedisConnectionError, RedisTimeoutError) as exc:
                logger.warning("[RedisSessionStore] %s lost connection: %s", op, exc)
                self.state = ConnectionState.DISCONNECTED
                await self._discard_client()
                if attempt == 2:
                    raise StoreError(f"Session store {op} failed.") from exc
            except RedisError as exc:
                raise StoreError(f"Session store {op} failed.") from exc
        raise StoreError(f"Session store {op} failed.")  # pragma: no cover

    async def get(self, session_id: str) -> Optional[str]:
        key = self._key(session_id)
        return await self._run("get", lambda c: c.get(key))

    async def set(self, session_id: str, data: str, ttl_seconds: int) -> None:
        key = self._key(session_id)
        await self._run("set", lambda c: c.set(key, data, ex=ttl_seconds))

    async def ttl_remaining(self, session_id: str) -> Optional[int]:
        key = self._key(session_id)
        ttl = await self._run("ttl", lambda c: c.ttl(key))
        # -2: no such key, -1: key without expiry
        if ttl is None or ttl < 0:
            return None
        return int(ttl)

    async def close(self) -> None:
        await self._discard_client()
        self.state = ConnectionState.DISCONNECTED
