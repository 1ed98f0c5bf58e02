"""Per-DID refresh locks.

Concurrent requests for the same DID can all see a token near expiry and all
try to refresh it. Authorization servers that invalidate a refresh token on
first use turn that race into failed refreshes, so the session manager can be
given a ``RefreshLock``: only the request holding the lock refreshes, the
others continue with the tokens they already have.

Locks are leases. They expire on their own after ``ttl`` seconds, so a crashed
worker never blocks refreshes for longer than that. Releasing a lease only
removes the lock while it still belongs to the holder; a lease that ran out and
was taken by another worker is left alone.
"""

import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError, RedisError

from social.graze.sessions.errors import StorageError

logger = logging.getLogger(__name__)


def refresh_lock_key(did: str) -> str:
    return f"refresh_lock:{did}"


class RefreshLock(ABC):
    @abstractmethod
    async def acquire(self, did: str) -> Optional[Any]:
        """Try to take the lock for did. Returns None if someone else holds it."""

    @abstractmethod
    async def release(self, lease: Any) -> None:
        """Give back a lease returned by ``acquire``."""

    @contextlib.asynccontextmanager
    async def hold(self, did: str) -> AsyncIterator[bool]:
        """
        Hold the lock for the duration of a block.

        Yields True when the lock was acquired. The lock is only released if it
        was acquired here.
        """
        lease = await self.acquire(did)
        try:
            yield lease is not None
        finally:
            if lease is not None:
                await self.release(lease)


class RedisRefreshLock(RefreshLock):
    """
    Refresh lock built on the redis client's ``Lock``.

    Each lease stores a random token under the lock key with ``SET NX PX``, and
    release deletes the key only while it still holds that token.

    Args:
        redis_client: Redis client
        ttl: Lease duration in seconds
        prefix: Prefix added to every lock key
    """

    def __init__(
        self, redis_client: redis.Redis, ttl: int = 30, prefix: str = "oauth_sessions:"
    ):
        self.redis_client = redis_client
        self.ttl = ttl
        self.prefix = prefix

    def _key(self, did: str) -> str:
        return f"{self.prefix}{refresh_lock_key(did)}"

    async def acquire(self, did: str) -> Optional[Lock]:
        lease = self.redis_client.lock(
            self._key(did), timeout=self.ttl, blocking=False, thread_local=False
        )
        try:
            acquired = await lease.acquire()
        except RedisError as e:
            raise StorageError(f"Failed to acquire refresh lock: {e}") from e
        return lease if acquired else None

    async def release(self, lease: Lock) -> None:
        try:
            await lease.release()
        except LockNotOwnedError:
            logger.warning("Refresh lock %s expired before release", lease.name)
        except RedisError as e:
            raise StorageError(f"Failed to release refresh lock: {e}") from e
