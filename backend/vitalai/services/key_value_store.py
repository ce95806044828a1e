"""String key-value stores used by the tuning service for local persistence."""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vitalai.database.models import KeyValueEntry
from vitalai.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Async get/set/remove over string keys and values."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError


class NullKeyValueStore(KeyValueStore):
    """Used when no local persistence is available: reads find nothing, writes are dropped."""

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str) -> None:
        return None

    async def remove(self, key: str) -> None:
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; survives service re-initialisation but not restarts."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class DatabaseKeyValueStore(KeyValueStore):
    """Store backed by the ``kv_store`` table."""

    def __init__(self, session_factory: async_sessionmaker, timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, operation, key: str):
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageUnavailable(f"Key-value store timed out on '{key}'") from e
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Key-value store error on '{key}': {str(e)}") from e

    async def get(self, key: str) -> Optional[str]:
        async def _get():
            async with self.session_factory() as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                return result.scalar_one_or_none()

        return await self._run(_get, key)

    async def set(self, key: str, value: str) -> None:
        async def _set():
            async with self.session_factory() as session:
                await self._upsert(session, key, value)
                await session.commit()

        await self._run(_set, key)

    async def remove(self, key: str) -> None:
        async def _remove():
            async with self.session_factory() as session:
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                await session.commit()

        await self._run(_remove, key)

    @staticmethod
    async def _upsert(session: AsyncSession, key: str, value: str) -> None:
        entry = await session.get(KeyValueEntry, key)
        if entry is None:
            session.add(KeyValueEntry(key=key, value=value, updated_at=datetime.utcnow()))
        else:
            entry.value = value
            entry.updated_at = datetime.utcnow()


def build_key_value_store(backend: str, session_factory: async_sessionmaker, timeout: float) -> KeyValueStore:
    """Select the tuner's local store from the configured backend name."""
    backend = (backend or "none").lower()
    if backend == "database":
        return DatabaseKeyValueStore(session_factory, timeout=timeout)
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend != "none":
        logger.warning(f"Unknown tuning storage backend '{backend}', persistence disabled")
    return NullKeyValueStore()
