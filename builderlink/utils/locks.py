"""
BuilderLink: Per-key mutual exclusion for matches and scenario submissions.

Both managers expose ``hold(key)`` as an async context manager.  The
in-process manager is enough for a single worker; the Redis manager is used
when several workers share one database.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from redis.exceptions import LockError

from builderlink.errors import TransientStorageError

logger = structlog.get_logger("builderlink.locks")


class KeyedLockManager:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class RedisLockManager:
    """Distributed lock on ``<prefix><key>`` using ``redis.asyncio`` locks.

    ``timeout`` bounds how long a crashed holder can block others;
    ``blocking_timeout`` bounds how long a caller waits before giving up
    with ``TransientStorageError``.
    """

    def __init__(
        self,
        client,
        timeout: float = 10.0,
        blocking_timeout: float | None = None,
        prefix: str = "builderlink:match-lock:",
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._blocking_timeout = timeout if blocking_timeout is None else blocking_timeout
        self._prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._client.lock(
            f"{self._prefix}{key}",
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        )
        if not await lock.acquire():
            logger.warning("match_lock_timeout", key=key)
            raise TransientStorageError("Timed out waiting for match lock", key=key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # lock expired while held; the version check still guards the write
                logger.warning("match_lock_expired_before_release", key=key)
