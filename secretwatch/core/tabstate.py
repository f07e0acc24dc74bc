"""Per-tab state with a single serialized mutation gate.

Every ``update`` is a load-mutate-persist cycle executed under one
``asyncio.Lock`` and committed through the key-value surface's atomic
``update``, so stores in other tasks, instances or processes sharing the same
backing file cannot interleave with it. ``delete`` takes the same lock. Reads
always go to the key-value surface so a restarted observer sees the last
committed record.

Closed tabs are remembered in memory only, for the most recent
``retired_limit`` ids. That covers late events from a tab closed during this
process's lifetime; after a restart, a late event for a tab closed before it
recreates the record.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, List, Optional, Union

from .kvstore import KeyValueStore
from .models import TabRecord
from .scanner import DEFAULT_LOGGER_NAME

TabId = int
Mutator = Callable[[TabRecord], Union[None, Awaitable[None]]]
TabListener = Callable[[TabId, Optional[TabRecord]], None]

KEY_PREFIX = "tab_"
DEFAULT_RETIRED_LIMIT = 4096


def tab_key(tab_id: TabId) -> str:
    return f"{KEY_PREFIX}{tab_id}"


def tab_id_from_key(key: str) -> Optional[TabId]:
    if not key.startswith(KEY_PREFIX):
        return None
    try:
        return int(key[len(KEY_PREFIX):])
    except ValueError:
        return None


class TabStateStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        lock_name: str = "tab-data",
        retired_limit: int = DEFAULT_RETIRED_LIMIT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.kv = kv
        self.lock_name = lock_name
        self.retired_limit = retired_limit
        self._lock = asyncio.Lock()
        self._retired: "OrderedDict[TabId, None]" = OrderedDict()
        self._listeners: List[TabListener] = []
        base_logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.logger = base_logger.getChild("tabstate")
        self.kv.add_listener(self._on_kv_change)

    async def read(self, tab_id: TabId) -> Optional[TabRecord]:
        data = await self.kv.get(tab_key(tab_id))
        if data is None:
            return None
        return TabRecord.from_dict(data)

    async def update(self, tab_id: TabId, mutator: Mutator) -> TabRecord:
        """Apply ``mutator`` to the tab's record and persist it.

        Returns a copy decoded from what was written. Storage errors propagate
        and mean nothing was applied.
        """
        async with self._lock:
            if tab_id in self._retired:
                # late event for a closed tab: apply to scratch, never persist
                self.logger.debug("Dropping update for closed tab %s", tab_id)
                scratch = TabRecord()
                await _apply(mutator, scratch)
                return scratch

            async def transform(data: Optional[Any]) -> Any:
                record = TabRecord.from_dict(data)
                await _apply(mutator, record)
                return record.to_dict()

            payload = await self.kv.update(tab_key(tab_id), transform)
        return TabRecord.from_dict(payload)

    async def delete(self, tab_id: TabId) -> None:
        async with self._lock:
            await self.kv.remove(tab_key(tab_id))
            self._retire(tab_id)

    async def tab_ids(self) -> List[TabId]:
        ids = [tab_id_from_key(k) for k in await self.kv.keys(KEY_PREFIX)]
        return sorted(i for i in ids if i is not None)

    def subscribe(self, listener: TabListener) -> Callable[[], None]:
        """Register for committed changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _retire(self, tab_id: TabId) -> None:
        self._retired[tab_id] = None
        self._retired.move_to_end(tab_id)
        while len(self._retired) > self.retired_limit:
            self._retired.popitem(last=False)

    def _on_kv_change(self, key: str, value: Optional[Any]) -> None:
        tab_id = tab_id_from_key(key)
        if tab_id is None:
            return
        record = TabRecord.from_dict(value) if value is not None else None
        for listener in list(self._listeners):
            try:
                listener(tab_id, record)
            except Exception:
                self.logger.exception("Tab listener failed for tab %s", tab_id)


async def _apply(mutator: Mutator, record: TabRecord) -> None:
    result = mutator(record)
    if inspect.isawaitable(result):
        await result
