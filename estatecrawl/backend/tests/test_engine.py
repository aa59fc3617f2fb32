import itertools
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.adapters.repos.properties import PropertyRepository
from app.domain.errors import ConfigError, FetchError, TransientFetchError
from app.models import Property, Source, utcnow
from app.schemas import RunOptions
from app.service_layer.engine import dedupe_by_canonical
from app.service_layer.seed import seed_urls
from conftest import FakeAdapter, FakeFetcher


@pytest.mark.asyncio
async def test_end_to_end_dedup_insert(make_engine, async_session_maker):
    adapter = FakeAdapter(["https://s.test/a", "https://s.test/a?utm_source=x"])
    fetcher = FakeFetcher()
    engine = make_engine([adapter], fetcher)

    res = await engine.run(RunOptions(adapter_name="FakeSite"))

    assert (res.inserted, res.discovered, res.adapters, res.errors) == (1, 1, 1, [])
    assert fetcher.calls == ["https://s.test/a"]

    async with async_session_maker() as session:
        src = (await session.execute(select(Source).where(Source.name == "FakeSite"))).scalar_one()
        p = (await session.execute(select(Property))).scalar_one()

    assert src.base_url == "https://s.test/"
    assert p.external_id == "a"
    assert p.source_id == src.id
    assert p.first_seen_at is not None
    assert p.first_seen_at == p.last_seen_at
    assert p.currency == "NGN"
    assert p.property_type == "apartment"


@pytest.mark.asyncio
async def test_rerun_same_listing_updates_one_row(make_engine, async_session_maker):
    engine = make_engine([FakeAdapter(["https://s.test/a"])], FakeFetcher(), recent_hours=0)

    await engine.run(RunOptions())
    async with async_session_maker() as session:
        before = (await session.execute(select(Property))).scalar_one()

    res = await engine.run(RunOptions())
    async with async_session_maker() as session:
        rows = (await session.execute(select(Property))).scalars().all()

    assert res.inserted == 1
    assert len(rows) == 1
    assert rows[0].first_seen_at == before.first_seen_at
    assert rows[0].last_seen_at > before.last_seen_at
    assert rows[0].scraped_at > before.scraped_at


@pytest.mark.asyncio
async def test_retry_bound_for_persistent_timeout(make_engine, sleeps):
    url = "https://s.test/slow"
    fetcher = FakeFetcher({url: TransientFetchError("timeout fetching", url=url)})
    engine = make_engine([FakeAdapter([url])], fetcher)

    res = await engine.run(RunOptions())

    assert fetcher.count(url) == 3
    assert len(res.errors) == 1
    assert res.errors[0].startswith("parse/upsert failed for FakeSite:")
    assert res.inserted == 0
    # linear backoff: 1s then 2s
    assert sleeps.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_failures_do_not_retry_or_abort_siblings(make_engine):
    urls = ["https://s.test/gone", "https://s.test/ok", "https://s.test/"]
    fetcher = FakeFetcher({urls[0]: FetchError("status 404", url=urls[0], status=404)})
    engine = make_engine([FakeAdapter(urls)], fetcher)

    res = await engine.run(RunOptions())

    assert fetcher.count(urls[0]) == 1
    # root URL has no path segment -> ParseError, not retried
    assert fetcher.count(urls[2]) == 1
    assert res.inserted == 1
    assert len(res.errors) == 2


@pytest.mark.asyncio
async def test_429_then_success_counts_once(make_engine):
    url = "https://s.test/busy"
    calls = itertools.count()

    class FlakyFetcher(FakeFetcher):
        async def get_text(self, u, timeout_ms=None):
            self.calls.append(u)
            if next(calls) == 0:
                raise TransientFetchError("rate limited", url=u, status=429)
            return "<html></html>"

    fetcher = FlakyFetcher()
    res = await make_engine([FakeAdapter([url])], fetcher).run(RunOptions())

    assert res.inserted == 1
    assert res.errors == []
    assert fetcher.count(url) == 2


@pytest.mark.asyncio
async def test_recently_seen_listings_are_not_refetched(make_engine, async_session_maker):
    engine = make_engine([FakeAdapter(["https://s.test/known", "https://s.test/stale", "https://s.test/new"])], FakeFetcher())
    source = await engine.resolve_source(engine.get_adapter("FakeSite"))
    async with async_session_maker() as session:
        repo = PropertyRepository(session)
        await repo.upsert_listing({"source_id": source.id, "external_id": "known", "url": "https://s.test/known"})
        await repo.upsert_listing(
            {"source_id": source.id, "external_id": "stale", "url": "https://s.test/stale"},
            now=utcnow() - timedelta(days=1),
        )
        await session.commit()

    res = await engine.run(RunOptions())

    assert engine.fetcher.calls == ["https://s.test/stale", "https://s.test/new"]
    assert res.discovered == 3
    assert res.inserted == 2


@pytest.mark.asyncio
async def test_freshness_lookup_failure_fails_open(make_engine, monkeypatch):
    async def broken(self, *a, **kw):
        raise RuntimeError("db down")

    monkeypatch.setattr(PropertyRepository, "recently_seen", broken)
    fetcher = FakeFetcher()
    res = await make_engine([FakeAdapter(["https://s.test/a"])], fetcher).run(RunOptions())

    assert fetcher.calls == ["https://s.test/a"]
    assert res.inserted == 1


@pytest.mark.asyncio
async def test_max_urls_bounds_discovery(make_engine):
    adapter = FakeAdapter([f"https://s.test/{i}" for i in range(30)])
    res = await make_engine([adapter], FakeFetcher()).run(RunOptions(max_urls=5))
    assert res.discovered == 5
    assert res.inserted == 5


@pytest.mark.asyncio
async def test_discovery_timeout_truncates_without_failing(make_engine):
    ticks = iter(range(0, 100, 3))
    adapter = FakeAdapter([f"https://s.test/{i}" for i in range(10)])
    engine = make_engine([adapter], FakeFetcher(), clock=lambda: next(ticks))

    res = await engine.run(RunOptions(discovery_timeout_ms=5000, max_urls=50))

    # clock reads 0 at start, 3 after the first URL, 6 (> 5s) after the second
    assert res.discovered == 2
    assert res.inserted == 2
    assert res.errors == ["discover timeout for FakeSite after 5000ms"]


@pytest.mark.asyncio
async def test_discovery_failure_keeps_urls_found_before_it(make_engine):
    class Broken(FakeAdapter):
        name = "Broken"

        async def discover_listing_urls(self, ctx):
            yield "https://s.test/x"
            raise RuntimeError("index page changed")

    fetcher = FakeFetcher()
    engine = make_engine([Broken(), FakeAdapter(["https://s.test/ok"])], fetcher)
    res = await engine.run(RunOptions())

    assert res.adapters == 2
    assert res.errors == ["discover failed for Broken: index page changed"]
    assert (res.discovered, res.inserted) == (2, 2)
    assert fetcher.calls == ["https://s.test/x", "https://s.test/ok"]


@pytest.mark.asyncio
async def test_unknown_adapter_is_config_error(make_engine):
    engine = make_engine([FakeAdapter()], FakeFetcher())
    with pytest.raises(ConfigError):
        await engine.run(RunOptions(adapter_name="Nope"))


@pytest.mark.asyncio
async def test_missing_base_url_is_config_error(make_engine):
    class NoBase(FakeAdapter):
        name = "NoBase"
        default_base_url = None

    with pytest.raises(ConfigError):
        await make_engine([NoBase(["https://s.test/a"])], FakeFetcher()).run(RunOptions())


@pytest.mark.asyncio
async def test_listing_type_and_context_are_passed_through(make_engine, async_session_maker):
    adapter = FakeAdapter(["https://s.test/r1"])
    res = await make_engine([adapter], FakeFetcher()).run(
        RunOptions(extra_listing_type="rent", extra_start_urls=["https://s.test/seed"], max_pages=3)
    )
    assert res.inserted == 1

    ctx = adapter.contexts[0]
    assert ctx.start_urls == ["https://s.test/seed"]
    assert ctx.max_pages == 3
    assert ctx.listing_type == "rent"

    async with async_session_maker() as session:
        p = (await session.execute(select(Property))).scalar_one()
    assert p.listing_type == "rent"


@pytest.mark.asyncio
async def test_polite_delay_is_applied_per_fetch(make_engine, sleeps):
    class Polite(FakeAdapter):
        polite_delay_ms = (250, 400)

    await make_engine([Polite(["https://s.test/a", "https://s.test/b"])], FakeFetcher()).run(RunOptions())

    assert len(sleeps.calls) == 2
    assert all(0.25 <= s <= 0.4 for s in sleeps.calls)


@pytest.mark.asyncio
async def test_list_adapters(make_engine):
    engine = make_engine([FakeAdapter(), FakeAdapter(name="Other")], FakeFetcher())
    assert [m.name for m in engine.list_adapters()] == ["FakeSite", "Other"]


def test_dedupe_keeps_first_representative():
    urls = ["https://s.test/a?b=1&a=2", "https://S.test/a/?a=2&b=1&utm_medium=x", "https://s.test/b"]
    assert dedupe_by_canonical(urls) == ["https://s.test/a?b=1&a=2", "https://s.test/b"]


@pytest.mark.asyncio
async def test_seed_urls_upserts_sequentially_and_reports(make_engine, async_session_maker):
    fetcher = FakeFetcher({"https://s.test/bad": FetchError("status 500", status=500)})
    engine = make_engine([FakeAdapter()], fetcher)

    res = await seed_urls(engine, "FakeSite", ["https://s.test/a", "https://s.test/bad", "https://s.test/a"])

    assert res.upserted == 1
    assert [r.external_id for r in res.results] == ["a"]
    assert len(res.errors) == 1 and res.errors[0].startswith("https://s.test/bad")
    assert fetcher.calls == ["https://s.test/a", "https://s.test/bad"]

    with pytest.raises(ConfigError):
        await seed_urls(engine, "Nope", ["https://s.test/a"])
