"""Durable key-value surfaces backing the tab state store.

Values are JSON documents. Every write or removal is followed by a change
notification to the registered listeners, mirroring browser extension storage
``onChanged`` events.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiosqlite

from .errors import StorageError
from .scanner import DEFAULT_LOGGER_NAME

ChangeListener = Callable[[str, Optional[Any]], None]
Transform = Callable[[Optional[Any]], Awaitable[Any]]

logger = logging.getLogger(DEFAULT_LOGGER_NAME).getChild("kvstore")


class KeyValueStore:
    """Base class: async get/set/remove plus change listeners."""

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    async def update(self, key: str, transform: Transform) -> Any:
        """Atomically replace ``key`` with ``await transform(current)``.

        No other ``update``, ``set`` or ``remove`` on the same backing store
        can interleave between the read and the write, including from other
        instances or processes sharing it. Returns the value written.
        """
        raise NotImplementedError

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, key: str, value: Optional[Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:
                # a broken listener must not turn a committed write into a failure
                logger.exception("Change listener failed for %s", key)


class MemoryKeyValueStore(KeyValueStore):
    """In-process surface; values are stored JSON-encoded so callers never share references."""

    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[str, str] = {}
        self.fail_writes = False
        self.fail_reads = False
        self._write_lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        if self.fail_reads:
            raise StorageError(f"read of {key} failed")
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StorageError(f"write of {key} failed")
        self._data[key] = json.dumps(value)
        self._notify(key, json.loads(self._data[key]))

    async def remove(self, key: str) -> None:
        if self.fail_writes:
            raise StorageError(f"removal of {key} failed")
        if self._data.pop(key, None) is not None:
            self._notify(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    async def update(self, key: str, transform: Transform) -> Any:
        async with self._write_lock:
            if self.fail_writes:
                raise StorageError(f"write of {key} failed")
            value = await transform(await self.get(key))
            await self.set(key, value)
        return value


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-file surface that survives process restarts.

    A connection is opened per operation, so the database file is the only
    state and a fresh instance (or a fresh process) sees every committed write.
    """

    TABLE = "kv"

    def __init__(self, path: Path, timeout: float = 10.0) -> None:
        super().__init__()
        self.path = Path(path).expanduser()
        self.timeout = timeout
        self._initialized = False

    async def _ensure_schema(self, db: aiosqlite.Connection) -> None:
        if self._initialized:
            return
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self.TABLE} (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        await db.commit()
        self._initialized = True

    def _connect(self, **kwargs: Any) -> aiosqlite.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return aiosqlite.connect(self.path, timeout=self.timeout, **kwargs)

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with self._connect() as db:
                await self._ensure_schema(db)
                async with db.execute(f"SELECT value FROM {self.TABLE} WHERE key = ?", (key,)) as cursor:
                    row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"read of {key} failed: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise StorageError(f"stored value for {key} is not valid JSON") from exc

    async def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        try:
            async with self._connect() as db:
                await self._ensure_schema(db)
                await db.execute(
                    f"INSERT INTO {self.TABLE} (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, payload),
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"write of {key} failed: {exc}") from exc
        self._notify(key, json.loads(payload))

    async def remove(self, key: str) -> None:
        try:
            async with self._connect() as db:
                await self._ensure_schema(db)
                cursor = await db.execute(f"DELETE FROM {self.TABLE} WHERE key = ?", (key,))
                removed = cursor.rowcount
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"removal of {key} failed: {exc}") from exc
        if removed:
            self._notify(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        try:
            async with self._connect() as db:
                await self._ensure_schema(db)
                async with db.execute(
                    f"SELECT key FROM {self.TABLE} WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ) as cursor:
                    rows = await cursor.fetchall()
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"key listing failed: {exc}") from exc
        return [row[0] for row in rows]

    async def update(self, key: str, transform: Transform) -> Any:
        try:
            # autocommit mode so the explicit BEGIN IMMEDIATE owns the transaction
            async with self._connect(isolation_level=None) as db:
                await self._ensure_schema(db)
                # closing without COMMIT rolls the transaction back
                await db.execute("BEGIN IMMEDIATE")
                async with db.execute(f"SELECT value FROM {self.TABLE} WHERE key = ?", (key,)) as cursor:
                    row = await cursor.fetchone()
                current = json.loads(row[0]) if row is not None else None
                payload = json.dumps(await transform(current))
                await db.execute(
                    f"INSERT INTO {self.TABLE} (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, payload),
                )
                await db.execute("COMMIT")
        except json.JSONDecodeError as exc:
            raise StorageError(f"stored value for {key} is not valid JSON") from exc
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"update of {key} failed: {exc}") from exc
        value = json.loads(payload)
        self._notify(key, value)
        return value
