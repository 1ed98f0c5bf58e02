"""
Session Storage

Key/value storage used by the session manager for stored OAuth sessions
(``session:{did}``). Values are JSON objects, and every key can carry an
optional time-to-live in seconds.

The manager only depends on the ``SessionStorage`` interface. Two adapters
are provided:
- RedisSessionStorage: Redis (or Valkey) with native key expiry
- DatabaseSessionStorage: SQLAlchemy async engine with an ``expires_at``
  column and an explicit ``cleanup``

Adapters raise ``StorageError`` for any backend failure.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import delete, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.sessions.errors import StorageError
from social.graze.sessions.model.storage import SessionStoreEntry


class SessionStorage(ABC):
    """Key/value storage contract consumed by the session manager."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value stored under key, or None if absent or expired."""

    @abstractmethod
    async def set(
        self, key: str, value: Dict[str, Any], ttl: Optional[int] = None
    ) -> None:
        """Store value under key, expiring after ttl seconds when given."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""


class RedisSessionStorage(SessionStorage):
    """
    Session storage backed by Redis.

    Values are stored as JSON strings under ``{prefix}{key}``. TTLs map to
    Redis key expiry, so expired entries disappear without a cleanup task.

    Args:
        redis_client: Redis client, with or without ``decode_responses``
        prefix: Prefix added to every key
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "oauth_sessions:"):
        self.redis_client = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.redis_client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to get item: {e}") from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Failed to decode item {key}: {e}") from e

    async def set(
        self, key: str, value: Dict[str, Any], ttl: Optional[int] = None
    ) -> None:
        try:
            await self.redis_client.set(
                self._key(key), json.dumps(value), ex=ttl if ttl else None
            )
        except RedisError as e:
            raise StorageError(f"Failed to set item: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis_client.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to remove item: {e}") from e


class DatabaseSessionStorage(SessionStorage):
    """
    Session storage backed by PostgreSQL through SQLAlchemy.

    Entries live in the ``oauth_session_store`` table. Expired rows are
    ignored on read and removed by :meth:`cleanup`.

    Args:
        database_session_maker: Factory for async database sessions
    """

    def __init__(self, database_session_maker: async_sessionmaker[AsyncSession]):
        self.database_session_maker = database_session_maker

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        try:
            async with self.database_session_maker() as database_session:
                stmt = select(SessionStoreEntry).where(
                    SessionStoreEntry.key == key,
                    or_(
                        SessionStoreEntry.expires_at.is_(None),
                        SessionStoreEntry.expires_at > now,
                    ),
                )
                entry: Optional[SessionStoreEntry] = (
                    await database_session.scalars(stmt)
                ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get item: {e}") from e
        if entry is None:
            return None
        return entry.value

    async def set(
        self, key: str, value: Dict[str, Any], ttl: Optional[int] = None
    ) -> None:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl) if ttl else None
        stmt = (
            insert(SessionStoreEntry)
            .values(
                [
                    {
                        "key": key,
                        "value": value,
                        "expires_at": expires_at,
                        "created_at": now,
                        "updated_at": now,
                    }
                ]
            )
            .on_conflict_do_update(
                index_elements=["key"],
                set_={
                    "value": value,
                    "expires_at": expires_at,
                    "updated_at": now,
                },
            )
        )
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to set item: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(
                        delete(SessionStoreEntry).where(SessionStoreEntry.key == key)
                    )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to remove item: {e}") from e

    async def cleanup(self) -> int:
        """
        Remove expired entries.

        Returns:
            int: Number of removed entries
        """
        now = datetime.now(timezone.utc)
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    result = await database_session.execute(
                        delete(SessionStoreEntry).where(
                            SessionStoreEntry.expires_at.is_not(None),
                            SessionStoreEntry.expires_at <= now,
                        )
                    )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to cleanup: {e}") from e
        return result.rowcount or 0
