"""Facade wiring the detection engine to the browser-facing collaborators.

Discovery channels, the presentation layer and tab lifecycle hooks all talk
to ``SecretWatch``; it owns no state of its own beyond what the tab state store
and the instrumentation session manager hold.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..patterns import PatternCatalog
from .errors import MalformedEventError, SecretWatchError
from .events import ScriptDetected
from .filters import visible_findings
from .ingest import CountCallback, IngestionCoordinator, ScriptFetcher
from .instrumentation import InstrumentationChannel, InstrumentationSessionManager, SessionState
from .kvstore import KeyValueStore
from .models import SecretFinding, TabRecord
from .scanner import DEFAULT_LOGGER_NAME, DEFAULT_MAX_SCAN_CHARS
from .tabstate import TabId, TabListener, TabStateStore


@dataclass(frozen=True)
class CommandResult:
    status: str  # "started" | "stopped" | "error"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "error"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status}
        if self.error is not None:
            data["error"] = self.error
        return data


class SecretWatch:
    def __init__(
        self,
        kv: KeyValueStore,
        channel: InstrumentationChannel,
        *,
        catalog: Optional[PatternCatalog] = None,
        fetcher: Optional[ScriptFetcher] = None,
        on_count: Optional[CountCallback] = None,
        max_script_chars: int = DEFAULT_MAX_SCAN_CHARS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        base_logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.logger = base_logger.getChild("service")
        self.store = TabStateStore(kv, logger=base_logger)
        self.coordinator = IngestionCoordinator(
            self.store,
            catalog=catalog,
            fetcher=fetcher,
            on_count=on_count,
            max_script_chars=max_script_chars,
            logger=base_logger,
        )
        self.sessions = InstrumentationSessionManager(
            self.store, self.coordinator, channel, logger=base_logger
        )

    # presentation layer

    async def get_status(self, tab_id: TabId) -> TabRecord:
        record = await self.store.read(tab_id)
        return record if record is not None else TabRecord()

    async def get_visible_findings(self, tab_id: TabId) -> List[SecretFinding]:
        """Findings minus likely false positives (extension-injected scripts)."""
        record = await self.get_status(tab_id)
        return visible_findings(record.findings)

    def subscribe(self, listener: TabListener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def session_state(self, tab_id: TabId) -> SessionState:
        return self.sessions.state(tab_id)

    async def start_instrumentation(self, tab_id: TabId) -> CommandResult:
        try:
            await self.sessions.start(tab_id)
        except SecretWatchError as exc:
            return CommandResult("error", str(exc))
        return CommandResult("started")

    async def stop_instrumentation(self, tab_id: TabId) -> CommandResult:
        try:
            await self.sessions.stop(tab_id)
        except SecretWatchError as exc:
            return CommandResult("error", str(exc))
        return CommandResult("stopped")

    # passive discovery channel

    async def handle_script_detected(self, tab_id: Optional[TabId], message: Mapping[str, Any]) -> None:
        try:
            event = ScriptDetected.from_message(tab_id, message)
        except MalformedEventError as exc:
            self.logger.warning("Dropping script report: %s", exc)
            return

        record = await self.store.read(event.tab_id)
        if record is not None and record.instrumentation_active:
            # the instrumented channel already sees every script in this tab
            return

        self.logger.debug("Script detected in tab %s (%s)", event.tab_id, event.document_url)
        if event.content is not None:
            await self.coordinator.ingest(event.tab_id, event.content, event.source_locator)
        else:
            await self.coordinator.ingest_remote(event.tab_id, event.script_url or "")

    # instrumented discovery channel

    async def handle_debugger_event(
        self, tab_id: TabId, method: str, params: Optional[Mapping[str, Any]] = None
    ) -> None:
        await self.sessions.handle_event(tab_id, method, params)

    async def handle_detached(self, tab_id: TabId) -> None:
        await self.sessions.handle_detached(tab_id)

    # tab lifecycle

    async def handle_navigation(self, tab_id: TabId) -> TabRecord:
        """Navigation started: forget the previous page's findings and errors."""
        return await self.store.update(tab_id, TabRecord.clear)

    async def handle_tab_closed(self, tab_id: TabId) -> None:
        await self.sessions.handle_tab_closed(tab_id)
