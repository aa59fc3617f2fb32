# app/adapters/scraping/base.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, ClassVar, Iterable, Protocol
from urllib.parse import urlsplit

from ...best_effort import best_effort
from ...domain.pacing import cursor_after, plan_window
from ...domain.urls import origin_of
from ..repos.crawl_state import CrawlStateStore

log = logging.getLogger(__name__)

RawListing = dict[str, Any]


class TextFetcher(Protocol):
    async def get_text(self, url: str, timeout_ms: int | None = None) -> str: ...


@dataclass(frozen=True)
class SourceInfo:
    id: int
    name: str
    base_url: str


@dataclass
class ScrapeContext:
    """Everything an adapter may touch during one engine run."""

    fetcher: TextFetcher
    source: SourceInfo
    max_pages: int = 1
    request_timeout_ms: int | None = None
    start_urls: list[str] = field(default_factory=list)
    listing_type: str | None = None
    # None disables cursor persistence (seed runs, tests)
    state: CrawlStateStore | None = None

    @property
    def log(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(log, {"adapter": self.source.name})


class BaseAdapter(ABC):
    """
    One listing site: a lazy URL discovery sequence plus a detail-page parser.

    The engine, not the adapter, bounds how many URLs are pulled and for how long.
    """

    name: ClassVar[str]
    default_base_url: ClassVar[str | None] = None
    # (min_ms, max_ms) jittered sleep before each detail fetch
    polite_delay_ms: ClassVar[tuple[int, int] | None] = None

    def meta(self) -> dict[str, str]:
        return {"name": self.name}

    @abstractmethod
    def discover_listing_urls(self, ctx: ScrapeContext) -> AsyncIterator[str]:
        raise NotImplementedError

    @abstractmethod
    async def parse_listing(self, ctx: ScrapeContext, html: str, url: str) -> RawListing:
        """Raise ParseError when external_id cannot be derived."""
        raise NotImplementedError

    def guess_external_id(self, url: str) -> str | None:
        """Cheap pre-fetch guess used by the stop-on-known filter. Default: last path segment."""
        try:
            segs = [s for s in urlsplit(url).path.split("/") if s]
        except ValueError:
            return None
        return segs[-1] if segs else None


class PaginatedAdapter(BaseAdapter):
    """
    Discovery over seed index pages with a persisted per-seed cursor.

    Each run scans a window of ctx.max_pages pages starting at the stored
    cursor, stops a seed early on a page with no candidates, and persists the
    next cursor even when the engine stops pulling mid-window.
    """

    def page_cap(self) -> int | None:
        return None

    @abstractmethod
    def seeds(self, ctx: ScrapeContext) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def list_page_url(self, ctx: ScrapeContext, seed: str, page: int) -> str:
        raise NotImplementedError

    @abstractmethod
    def extract_listing_urls(self, html: str, page_url: str, origin: str) -> Iterable[str]:
        raise NotImplementedError

    def direct_listing_urls(self, ctx: ScrapeContext) -> list[str]:
        """Seeds that already are detail pages; yielded before any index scan."""
        return []

    async def discover_listing_urls(self, ctx: ScrapeContext) -> AsyncIterator[str]:
        for u in self.direct_listing_urls(ctx):
            yield u
        for seed in self.seeds(ctx):
            # consumer stopping early still closes the scan and writes its cursor
            async with aclosing(self._scan_seed(ctx, seed)) as stream:
                async for u in stream:
                    yield u

    async def _scan_seed(self, ctx: ScrapeContext, seed: str) -> AsyncIterator[str]:
        origin = origin_of(seed) or origin_of(ctx.source.base_url) or ""
        cap = self.page_cap()

        stored = None
        if ctx.state is not None:
            stored = await best_effort(f"cursor read {seed}", ctx.state.get_cursor(seed))
        window = plan_window(stored, ctx.max_pages, cap)

        scanned_through = window.first_page - 1
        exhausted = False
        page_done = True
        yielded = 0
        try:
            for page in window.pages():
                list_url = self.list_page_url(ctx, seed, page)
                ctx.log.info("list page %s", list_url)
                html = await ctx.fetcher.get_text(list_url, ctx.request_timeout_ms)
                scanned_through = page
                page_done = False

                found = list(dict.fromkeys(self.extract_listing_urls(html, list_url, origin)))
                if not found:
                    # end of results
                    exhausted = True
                    break
                for i, u in enumerate(found, 1):
                    page_done = i == len(found)
                    yielded += 1
                    yield u
        finally:
            if ctx.state is not None and scanned_through >= window.first_page:
                if exhausted:
                    next_page = 1
                elif page_done:
                    next_page = cursor_after(scanned_through, cap)
                else:
                    # stopped mid-page: resume on that page
                    next_page = scanned_through
                await best_effort(
                    f"cursor write {seed}",
                    ctx.state.save_cursor(seed, next_page, f"yielded:{yielded}"),
                )
