"""Per-tab attach/detach of the instrumented (debugger) channel.

States run Inactive -> Starting -> Active -> Stopping -> Inactive. While a tab
is Active, scripts parsed on the instrumented channel are scanned directly and
the passive channel's reports for that tab are ignored.

Sessions live in memory, but the committed ``instrumentation_active`` flag is
the durable truth: a manager that finds the flag set for a tab it has no
session for (a restarted observer) treats that tab as Active.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import InstrumentationError, MalformedEventError
from .events import SCRIPT_PARSED, ScriptParsed
from .ingest import IngestionCoordinator
from .models import TabRecord
from .scanner import DEFAULT_LOGGER_NAME
from .tabstate import TabId, TabStateStore


class SessionState(str, Enum):
    INACTIVE = "inactive"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class InstrumentationChannel:
    """Transport to the instrumented channel (e.g. a DevTools protocol client).

    ``attach`` must leave the channel ready to emit script-parsed events, and
    raise on rejection.
    """

    async def attach(self, tab_id: TabId) -> None:
        raise NotImplementedError

    async def detach(self, tab_id: TabId) -> None:
        raise NotImplementedError

    async def get_script_source(self, tab_id: TabId, script_id: str) -> str:
        raise NotImplementedError


class _Session:
    __slots__ = ("state",)

    def __init__(self, state: SessionState = SessionState.INACTIVE) -> None:
        self.state = state


def _set_active(flag: bool):
    def mutate(record: TabRecord) -> None:
        record.instrumentation_active = flag

    return mutate


class InstrumentationSessionManager:
    def __init__(
        self,
        store: TabStateStore,
        coordinator: IngestionCoordinator,
        channel: InstrumentationChannel,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.channel = channel
        self._sessions: Dict[TabId, _Session] = {}
        base_logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.logger = base_logger.getChild("instrumentation")

    def state(self, tab_id: TabId) -> SessionState:
        session = self._sessions.get(tab_id)
        return session.state if session else SessionState.INACTIVE

    async def start(self, tab_id: TabId) -> None:
        """Attach to ``tab_id``. Raises ``InstrumentationError`` on rejection."""
        session = await self._resolve(tab_id) or self._sessions.setdefault(tab_id, _Session())
        if session.state is SessionState.ACTIVE:
            return
        if session.state is not SessionState.INACTIVE:
            raise InstrumentationError(f"tab {tab_id} is {session.state.value}")

        session.state = SessionState.STARTING
        try:
            await self.channel.attach(tab_id)
        except Exception as exc:
            self._end(tab_id, session)
            self.logger.warning("Attach to tab %s rejected: %s", tab_id, exc)
            raise InstrumentationError(f"attach to tab {tab_id} failed: {exc}") from exc

        if self._sessions.get(tab_id) is not session:
            self._end(tab_id, session)
            await self._detach_quietly(tab_id)
            raise InstrumentationError(f"tab {tab_id} closed while attaching")

        try:
            await self.store.update(tab_id, _set_active(True))
        except Exception:
            self._end(tab_id, session)
            await self._detach_quietly(tab_id)
            raise
        session.state = SessionState.ACTIVE
        self.logger.info("Instrumentation active for tab %s", tab_id)

    async def stop(self, tab_id: TabId) -> None:
        """Detach from ``tab_id``; the tab ends Inactive even if detaching fails."""
        session = await self._resolve(tab_id)
        if session is None or session.state is SessionState.INACTIVE:
            return
        if session.state is not SessionState.ACTIVE:
            raise InstrumentationError(f"tab {tab_id} is {session.state.value}")

        session.state = SessionState.STOPPING
        failure: Optional[Exception] = None
        try:
            await self.channel.detach(tab_id)
        except Exception as exc:
            failure = exc
        try:
            await self._mark_inactive(tab_id)
        finally:
            self._end(tab_id, session)
        if failure is not None:
            self.logger.warning("Detach from tab %s failed: %s", tab_id, failure)
            raise InstrumentationError(f"detach from tab {tab_id} failed: {failure}") from failure
        self.logger.info("Instrumentation stopped for tab %s", tab_id)

    async def handle_event(self, tab_id: TabId, method: str, params: Optional[Mapping[str, Any]] = None) -> None:
        if method == SCRIPT_PARSED:
            await self.handle_script_parsed(tab_id, params)

    async def handle_script_parsed(self, tab_id: TabId, params: Optional[Mapping[str, Any]]) -> None:
        try:
            event = ScriptParsed.from_params(params)
        except MalformedEventError as exc:
            self.logger.warning("Dropping event for tab %s: %s", tab_id, exc)
            return
        session = await self._resolve(tab_id)
        if session is None or session.state is not SessionState.ACTIVE:
            return

        try:
            source = await self.channel.get_script_source(tab_id, event.script_id)
        except Exception as exc:
            await self.coordinator.record_fetch_error(tab_id, event.error_locator, str(exc))
            return
        if source:
            await self.coordinator.ingest(tab_id, source, event.source_locator)

    async def handle_detached(self, tab_id: TabId) -> None:
        """The channel went away without our stop (navigation, tool closed)."""
        session = await self._resolve(tab_id)
        if session is None or session.state in (SessionState.INACTIVE, SessionState.STOPPING):
            return
        self.logger.info("Instrumentation for tab %s detached externally", tab_id)
        session.state = SessionState.STOPPING
        try:
            await self._mark_inactive(tab_id)
        finally:
            self._end(tab_id, session)

    async def handle_tab_closed(self, tab_id: TabId) -> None:
        session = self._sessions.pop(tab_id, None)
        if session is not None:
            attached = session.state in (SessionState.ACTIVE, SessionState.STARTING)
        else:
            record = await self.store.read(tab_id)
            attached = record is not None and record.instrumentation_active
        await self.store.delete(tab_id)
        if attached:
            await self._detach_quietly(tab_id)

    async def _resolve(self, tab_id: TabId) -> Optional[_Session]:
        """In-memory session for ``tab_id``, rebuilt from the stored flag when missing."""
        session = self._sessions.get(tab_id)
        if session is not None:
            return session
        record = await self.store.read(tab_id)
        if record is None or not record.instrumentation_active:
            return None
        session = self._sessions.setdefault(tab_id, _Session(SessionState.ACTIVE))
        if session.state is SessionState.ACTIVE:
            self.logger.info("Resuming instrumentation for tab %s from stored state", tab_id)
        return session

    async def _mark_inactive(self, tab_id: TabId) -> None:
        record = await self.store.read(tab_id)
        if record is None or not record.instrumentation_active:
            return
        await self.store.update(tab_id, _set_active(False))

    def _end(self, tab_id: TabId, session: _Session) -> None:
        session.state = SessionState.INACTIVE
        if self._sessions.get(tab_id) is session:
            del self._sessions[tab_id]

    async def _detach_quietly(self, tab_id: TabId) -> None:
        try:
            await self.channel.detach(tab_id)
        except Exception as exc:
            self.logger.debug("Ignoring detach failure for tab %s: %s", tab_id, exc)
