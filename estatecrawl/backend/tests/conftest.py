# tests/conftest.py
from typing import AsyncIterator
from urllib.parse import urlsplit

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.adapters.repos.crawl_state import SqlAlchemyCrawlStateStore
from app.adapters.scraping.base import BaseAdapter, ScrapeContext
from app.domain.errors import ParseError
from app.models import Base
from app.service_layer.engine import ScrapeEngine


@pytest.fixture
async def engine(tmp_path):
    """
    Fresh file-backed SQLite DB per test. Each session gets its own
    connection, so concurrent worker sessions behave like they do on Postgres.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crawl.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
def state_store(async_session_maker):
    return SqlAlchemyCrawlStateStore(async_session_maker)


class FakeFetcher:
    """
    url -> html, or url -> exception instance (raised on every call).
    Records every requested URL in order.
    """

    def __init__(self, pages=None, default_html="<html><body><h1>Listing</h1></body></html>"):
        self.pages = dict(pages or {})
        self.default_html = default_html
        self.calls: list[str] = []

    async def get_text(self, url, timeout_ms=None):
        self.calls.append(url)
        v = self.pages.get(url, self.default_html)
        if isinstance(v, BaseException):
            raise v
        return v

    def count(self, url):
        return self.calls.count(url)


class FakeAdapter(BaseAdapter):
    """Yields a fixed URL list; external_id is the last path segment."""

    name = "FakeSite"
    default_base_url = "https://s.test/"

    def __init__(self, urls=(), *, name=None):
        self.urls = list(urls)
        self.contexts: list[ScrapeContext] = []
        if name:
            self.name = name

    async def discover_listing_urls(self, ctx) -> AsyncIterator[str]:
        self.contexts.append(ctx)
        for u in self.urls:
            yield u

    async def parse_listing(self, ctx, html, url):
        ext = self.guess_external_id(url)
        if not ext:
            raise ParseError(f"no id in {url}")
        return {
            "external_id": ext,
            "url": url,
            "title": f"2 bedroom flat {ext}",
            "price": "₦ 45,000,000",
            "city": "Lagos",
            "raw": {"path": urlsplit(url).path},
        }


@pytest.fixture
def sleeps():
    """Collects every backoff/delay the engine asks for instead of sleeping."""
    calls: list[float] = []

    async def sleep(seconds):
        calls.append(seconds)

    sleep.calls = calls
    return sleep


@pytest.fixture
def make_engine(async_session_maker, state_store, sleeps):
    def _make(adapters, fetcher, **kw):
        kw.setdefault("sleep", sleeps)
        return ScrapeEngine(
            adapters,
            session_factory=async_session_maker,
            fetcher=fetcher,
            state_store=state_store,
            **kw,
        )

    return _make
