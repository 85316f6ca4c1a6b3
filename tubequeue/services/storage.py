"""Persistent key-value store and the cached runtime options read from it."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from sqlalchemy import delete, select

from ..config import Settings
from ..database import Database
from ..db_models import KeyValueEntry

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
RETRIES_FIELD = "operationRetries"
CONCURRENCY_FIELD = "operationConcurrency"
MIN_RETRIES, MAX_RETRIES = 0, 5
MIN_CONCURRENCY, MAX_CONCURRENCY = 1, 8


class KeyValueStore(Protocol):
    """Minimal async storage interface used by the coordinator and client."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


class SQLKeyValueStore:
    """Key-value store persisted in the ``kv_entries`` table."""

    def __init__(self, database: Database):
        self._database = database

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._database.session() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None or entry.value is None:
                return default
            return entry.value

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}
        async with self._database.session() as session:
            result = await session.execute(
                select(KeyValueEntry).where(KeyValueEntry.key.in_(wanted))
            )
            entries = result.scalars().all()
        return {entry.key: entry.value for entry in entries if entry.value is not None}

    async def set(self, key: str, value: Any) -> None:
        async with self._database.session() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value
                entry.updated_at = datetime.utcnow()
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._database.session() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await session.commit()


@dataclass(slots=True, frozen=True)
class OperationOptions:
    """User-tunable request behaviour."""

    retries: int = 2
    concurrency: int = 4


def _clamp(value: Any, fallback: int, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return max(low, min(high, number))


class RuntimeOptions:
    """Read operation options from the store through a short TTL cache."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: Settings,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._defaults = OperationOptions(
            retries=settings.operation_retries,
            concurrency=settings.operation_concurrency,
        )
        self._ttl = settings.options_cache_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cached: OperationOptions | None = None
        self._fetched_at = 0.0

    async def get(self) -> OperationOptions:
        now = self._clock()
        if self._cached is not None and now - self._fetched_at < self._ttl:
            return self._cached

        raw = await self._store.get(SETTINGS_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed stored options: %r", raw)
            raw = {}
        options = OperationOptions(
            retries=_clamp(raw.get(RETRIES_FIELD), self._defaults.retries, MIN_RETRIES, MAX_RETRIES),
            concurrency=_clamp(
                raw.get(CONCURRENCY_FIELD),
                self._defaults.concurrency,
                MIN_CONCURRENCY,
                MAX_CONCURRENCY,
            ),
        )
        self._cached = options
        self._fetched_at = now
        return options

    async def retries(self) -> int:
        return (await self.get()).retries

    async def update(
        self, *, retries: int | None = None, concurrency: int | None = None
    ) -> OperationOptions:
        """Persist new option values (clamped) and drop the cached copy."""

        raw = await self._store.get(SETTINGS_KEY, {})
        stored = dict(raw) if isinstance(raw, dict) else {}
        if retries is not None:
            stored[RETRIES_FIELD] = _clamp(retries, self._defaults.retries, MIN_RETRIES, MAX_RETRIES)
        if concurrency is not None:
            stored[CONCURRENCY_FIELD] = _clamp(
                concurrency, self._defaults.concurrency, MIN_CONCURRENCY, MAX_CONCURRENCY
            )
        await self._store.set(SETTINGS_KEY, stored)
        self.invalidate()
        return await self.get()

    def invalidate(self) -> None:
        self._cached = None
