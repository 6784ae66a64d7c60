"""Skip-if-running guard for scheduler ticks."""

from __future__ import annotations

import asyncio
import uuid

import structlog

logger = structlog.get_logger()

TICK_LOCK_KEY = "event_notifier:tick_lock"


class TickLock:
    """Non-blocking lock around a tick.

    Always guards against overlap inside this process. With a Redis client it
    also takes a lease shared by every replica, so only one of them runs a
    tick at a time. The lease expires after ``ttl_seconds`` in case its
    holder dies mid-tick.
    """

    def __init__(self, redis_client=None, ttl_seconds: int = 600, key: str = TICK_LOCK_KEY):
        self._local = asyncio.Lock()
        self._redis = redis_client
        self._ttl_ms = int(ttl_seconds * 1000)
        self._key = key
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._local.locked()

    async def try_acquire(self) -> bool:
        """Take the lock if nobody holds it; never waits."""
        if self._local.locked():
            return False
        await self._local.acquire()

        if self._redis is None:
            return True

        token = uuid.uuid4().hex
        try:
            acquired = await self._redis.set(self._key, token, nx=True, px=self._ttl_ms)
        except Exception:
            self._local.release()
            raise
        if not acquired:
            self._local.release()
            return False
        self._token = token
        return True

    async def release(self) -> None:
        if not self._local.locked():
            return
        try:
            if self._redis is not None and self._token is not None:
                current = await self._redis.get(self._key)
                if isinstance(current, bytes):
                    current = current.decode()
                # Only drop the lease if it is still ours
                if current == self._token:
                    await self._redis.delete(self._key)
        except Exception as e:
            logger.warning("tick_lock_release_error", key=self._key, error=str(e))
        finally:
            self._token = None
            self._local.release()
