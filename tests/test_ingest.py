"""Tests for the ingestion coordinator and the remote script fetcher."""
import asyncio

import httpx
import pytest

from secretwatch.core.errors import FetchError
from secretwatch.core.ingest import IngestionCoordinator, ScriptFetcher
from secretwatch.core.kvstore import MemoryKeyValueStore
from secretwatch.core.tabstate import TabStateStore

STRIPE = "sk_test_51H8L9fJyKzNmJqS7QkV4Kq3"
SOURCE = "https://shop.test/app.js"


def make_fetcher(routes):
    """routes: url -> httpx.Response or exception instance."""

    def handler(request: httpx.Request) -> httpx.Response:
        outcome = routes[str(request.url)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return ScriptFetcher(transport=httpx.MockTransport(handler))


def make_coordinator(fetcher=None, on_count=None):
    store = TabStateStore(MemoryKeyValueStore())
    return store, IngestionCoordinator(store, fetcher=fetcher, on_count=on_count)


def test_ingest_records_timestamped_findings():
    async def run():
        store, coordinator = make_coordinator()
        result = await coordinator.ingest(1, f'const k = "{STRIPE}";', SOURCE)
        return result, await store.read(1)

    result, record = asyncio.run(run())
    assert (result.added, result.total) == (1, 1)
    (found,) = record.findings
    assert found.secret_type == "Stripe Access Token"
    assert found.matched_text == STRIPE
    assert found.source_locator == SOURCE
    assert found.discovered_at


def test_ingest_is_idempotent():
    async def run():
        store, coordinator = make_coordinator()
        await coordinator.ingest(1, 'password: "hello"', SOURCE)
        second = await coordinator.ingest(1, 'password: "hello"', SOURCE)
        return second, await store.read(1)

    second, record = asyncio.run(run())
    assert second.added == 0
    assert len(record.findings) == 1


def test_same_text_from_different_sources_is_kept_twice():
    async def run():
        store, coordinator = make_coordinator()
        await coordinator.ingest(1, 'password: "hello"', "https://a.test/1.js")
        await coordinator.ingest(1, 'password: "hello"', "https://a.test/2.js")
        return await store.read(1)

    assert len(asyncio.run(run()).findings) == 2


def test_existing_findings_stay_in_place():
    async def run():
        store, coordinator = make_coordinator()
        await coordinator.ingest(1, 'password: "first-one"', SOURCE)
        await coordinator.ingest(1, f'password: "first-one"; k = "{STRIPE}"', SOURCE)
        return await store.read(1)

    record = asyncio.run(run())
    assert [f.secret_type for f in record.findings] == ["Password", "Stripe Access Token"]


def test_concurrent_ingests_keep_both_contributions():
    async def run():
        store, coordinator = make_coordinator()
        await asyncio.gather(
            coordinator.ingest(1, f'k = "{STRIPE}"', "https://a.test/1.js"),
            coordinator.ingest(1, 'password: "hello"', "https://a.test/2.js"),
        )
        return await store.read(1)

    record = asyncio.run(run())
    assert {f.secret_type for f in record.findings} == {"Stripe Access Token", "Password"}


def test_count_callback_receives_totals():
    counts = []

    async def on_count(tab_id, total):
        counts.append((tab_id, total))

    async def run():
        _, coordinator = make_coordinator(on_count=on_count)
        await coordinator.ingest(4, 'password: "hello"', SOURCE)
        await coordinator.ingest(4, "nothing", SOURCE)

    asyncio.run(run())
    assert counts == [(4, 1), (4, 1)]


def test_ingest_remote_scans_fetched_body():
    fetcher = make_fetcher({SOURCE: httpx.Response(200, text=f'var k="{STRIPE}";')})

    async def run():
        store, coordinator = make_coordinator(fetcher)
        result = await coordinator.ingest_remote(1, SOURCE)
        return result, await store.read(1)

    result, record = asyncio.run(run())
    assert result.added == 1
    assert record.findings[0].source_locator == SOURCE
    assert record.errors == []


def test_failed_fetch_twice_keeps_one_error():
    url = "https://x/y.js"
    fetcher = make_fetcher({url: httpx.Response(404)})

    async def run():
        store, coordinator = make_coordinator(fetcher)
        assert await coordinator.ingest_remote(1, url) is None
        assert await coordinator.ingest_remote(1, url) is None
        return await store.read(1)

    record = asyncio.run(run())
    assert [e.script_url for e in record.errors] == [url]
    assert record.errors[0].error == "HTTP 404"
    assert record.findings == []


def test_transport_error_recorded():
    url = "https://down.test/app.js"
    fetcher = make_fetcher({url: httpx.ConnectError("connection refused")})

    async def run():
        store, coordinator = make_coordinator(fetcher)
        await coordinator.ingest_remote(1, url)
        return await store.read(1)

    (error,) = asyncio.run(run()).errors
    assert error.error.startswith("ConnectError")


def test_fetcher_decodes_declared_charset():
    body = 'var s = "café";'.encode("latin-1")
    fetcher = make_fetcher(
        {SOURCE: httpx.Response(200, content=body, headers={"content-type": "application/javascript; charset=iso-8859-1"})}
    )
    assert asyncio.run(fetcher.fetch(SOURCE)) == 'var s = "café";'


def test_fetcher_raises_fetch_error_on_server_error():
    fetcher = make_fetcher({SOURCE: httpx.Response(503)})
    with pytest.raises(FetchError) as info:
        asyncio.run(fetcher.fetch(SOURCE))
    assert info.value.url == SOURCE
    assert info.value.reason == "HTTP 503"


def test_fetcher_drops_character_cut_by_size_cap():
    body = 'var s = "café";'.encode("utf-8")
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            200, content=body, headers={"content-type": "application/javascript; charset=utf-8"}
        )
    )
    # cap lands between the two bytes of "é"
    fetcher = ScriptFetcher(transport=transport, max_bytes=body.index("é".encode("utf-8")) + 1)
    assert asyncio.run(fetcher.fetch(SOURCE)) == 'var s = "caf'
