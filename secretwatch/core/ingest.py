from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

import httpx

from ..patterns import PatternCatalog
from .errors import FetchError
from .models import ScriptFetchError, SecretFinding, TabRecord
from .scanner import DEFAULT_LOGGER_NAME, DEFAULT_MAX_SCAN_CHARS, scan
from .tabstate import TabId, TabStateStore
from .utils import decode_script_bytes

CountCallback = Callable[[TabId, int], Union[None, Awaitable[None]]]

DEFAULT_FETCH_TIMEOUT = 20.0


class ScriptFetcher:
    """Fetch external script bodies with httpx.

    Transport failures, timeouts and 4xx/5xx responses all raise ``FetchError``.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_bytes: int = DEFAULT_MAX_SCAN_CHARS,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client = client
        self._transport = transport

    async def fetch(self, url: str) -> str:
        if self._client is not None:
            return await self._fetch_with(self._client, url)
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            return await self._fetch_with(client, url)

    async def _fetch_with(self, client: httpx.AsyncClient, url: str) -> str:
        try:
            resp = await client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        return decode_script_bytes(resp.content[: self.max_bytes], resp.charset_encoding)


@dataclass(frozen=True)
class IngestResult:
    added: int
    total: int


class IngestionCoordinator:
    def __init__(
        self,
        store: TabStateStore,
        *,
        catalog: Optional[PatternCatalog] = None,
        fetcher: Optional[ScriptFetcher] = None,
        on_count: Optional[CountCallback] = None,
        max_script_chars: int = DEFAULT_MAX_SCAN_CHARS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.fetcher = fetcher or ScriptFetcher()
        self.on_count = on_count
        self.max_script_chars = max_script_chars
        base_logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.logger = base_logger.getChild("ingest")

    async def ingest(self, tab_id: TabId, script_text: str, source_locator: str) -> IngestResult:
        """Scan ``script_text`` and append unseen findings to the tab's record."""
        matches = scan(script_text, self.catalog, max_chars=self.max_script_chars)
        candidates: List[SecretFinding] = [SecretFinding.from_match(m, source_locator) for m in matches]
        added = 0

        def merge(record: TabRecord) -> None:
            nonlocal added
            added = 0
            for finding in candidates:
                if record.add_finding(finding):
                    added += 1

        record = await self.store.update(tab_id, merge)
        if added:
            self.logger.info("Tab %s: %d new finding(s) in %s", tab_id, added, source_locator)
        else:
            self.logger.debug("Tab %s: nothing new in %s", tab_id, source_locator)
        await self._notify(tab_id, len(record.findings))
        return IngestResult(added=added, total=len(record.findings))

    async def ingest_remote(self, tab_id: TabId, script_url: str) -> Optional[IngestResult]:
        """Fetch an external script and ingest it; a failed fetch is recorded, not raised."""
        self.logger.debug("Tab %s: fetching script %s", tab_id, script_url)
        try:
            content = await self.fetcher.fetch(script_url)
        except FetchError as exc:
            await self.record_fetch_error(tab_id, script_url, exc.reason)
            return None
        return await self.ingest(tab_id, content, script_url)

    async def record_fetch_error(self, tab_id: TabId, script_url: str, error: str) -> TabRecord:
        self.logger.warning("Tab %s: could not fetch %s: %s", tab_id, script_url, error)
        entry = ScriptFetchError(script_url=script_url, error=error)
        return await self.store.update(tab_id, lambda record: record.record_error(entry))

    async def _notify(self, tab_id: TabId, total: int) -> None:
        if self.on_count is None:
            return
        result = self.on_count(tab_id, total)
        if inspect.isawaitable(result):
            await result
