# app/service_layer/engine.py
from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import aclosing
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.http_fetcher import FetcherConfig, HttpFetcher
from ..adapters.repos.crawl_state import CrawlStateStore, SqlAlchemyCrawlStateStore
from ..adapters.repos.properties import PropertyRepository
from ..adapters.repos.sources import SourceRepository
from ..adapters.scraping.base import BaseAdapter, ScrapeContext, SourceInfo, TextFetcher
from ..adapters.scraping.registry import build_registry, default_adapters
from ..best_effort import best_effort
from ..config import settings
from ..domain.errors import ConfigError, ParseError, is_retryable
from ..domain.normalize import normalize_to_property
from ..domain.urls import canonicalize_url
from ..models import utcnow
from ..schemas import AdapterMeta, RunOptions, RunResult

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def _err_text(e: BaseException) -> str:
    return str(e) or type(e).__name__


def dedupe_by_canonical(urls: Iterable[str]) -> list[str]:
    """First URL wins for each canonical form; order preserved."""
    seen: set[str] = set()
    out: list[str] = []
    for u in urls:
        key = canonicalize_url(u)
        if key in seen:
            continue
        seen.add(key)
        out.append(u)
    return out


class ScrapeEngine:
    """
    Discovery -> dedup -> stop-on-known filter -> bounded fetch/parse/normalize/upsert.

    Per-URL failures are folded into RunResult.errors; only ConfigError
    escapes run().
    """

    def __init__(
        self,
        adapters: Mapping[str, BaseAdapter] | Iterable[BaseAdapter],
        *,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: TextFetcher,
        state_store: CrawlStateStore | None = None,
        max_attempts: int | None = None,
        backoff_step_ms: int | None = None,
        recent_hours: int | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.adapters = dict(adapters) if isinstance(adapters, Mapping) else build_registry(adapters)
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.state_store = state_store
        self.max_attempts = max(1, max_attempts or settings.SCRAPE_MAX_ATTEMPTS)
        self.backoff_step_ms = settings.SCRAPE_BACKOFF_STEP_MS if backoff_step_ms is None else backoff_step_ms
        self.recent_hours = settings.SCRAPE_RECENT_HOURS if recent_hours is None else recent_hours
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random()

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker[AsyncSession]) -> "ScrapeEngine":
        return cls(
            default_adapters(),
            session_factory=session_factory,
            fetcher=HttpFetcher(FetcherConfig.from_settings()),
            state_store=SqlAlchemyCrawlStateStore(session_factory),
        )

    # -------------------------
    # Registry
    # -------------------------

    def list_adapters(self) -> list[AdapterMeta]:
        return [AdapterMeta(**a.meta()) for a in self.adapters.values()]

    def get_adapter(self, name: str) -> BaseAdapter:
        try:
            return self.adapters[name]
        except KeyError:
            raise ConfigError(f"unknown adapter {name!r}; known: {sorted(self.adapters)}") from None

    # -------------------------
    # Run
    # -------------------------

    async def run(self, options: RunOptions | None = None) -> RunResult:
        opts = options or RunOptions()
        targets = [self.get_adapter(opts.adapter_name)] if opts.adapter_name else list(self.adapters.values())

        result = RunResult(adapters=len(targets))
        for adapter in targets:
            part = await self._run_adapter(adapter, opts)
            result.inserted += part.inserted
            result.discovered += part.discovered
            result.errors.extend(part.errors)

        log.info(
            "scrape run done adapters=%s discovered=%s inserted=%s errors=%s",
            result.adapters,
            result.discovered,
            result.inserted,
            len(result.errors),
        )
        return result

    async def resolve_source(self, adapter: BaseAdapter) -> SourceInfo:
        """Source row for the adapter, auto-created from its default base URL."""
        async with self.session_factory() as session:
            repo = SourceRepository(session)
            src = await repo.get_by_name(adapter.name)
            if src is None:
                if not adapter.default_base_url:
                    raise ConfigError(f"no source row and no default base URL for adapter {adapter.name}")
                src, created = await repo.get_or_create(adapter.name, adapter.default_base_url)
                await session.commit()
                if created:
                    log.info("created source %s base_url=%s", src.name, src.base_url)
            return SourceInfo(id=src.id, name=src.name, base_url=src.base_url)

    def context_for(self, adapter: BaseAdapter, source: SourceInfo, opts: RunOptions) -> ScrapeContext:
        return ScrapeContext(
            fetcher=self.fetcher,
            source=source,
            max_pages=opts.max_pages,
            request_timeout_ms=opts.request_timeout_ms,
            start_urls=list(opts.extra_start_urls),
            listing_type=opts.extra_listing_type,
            state=self.state_store,
        )

    async def _run_adapter(self, adapter: BaseAdapter, opts: RunOptions) -> RunResult:
        out = RunResult(adapters=1)
        source = await self.resolve_source(adapter)
        ctx = self.context_for(adapter, source, opts)

        urls = dedupe_by_canonical(await self._discover(adapter, ctx, opts, out.errors))
        out.discovered = len(urls)

        todo = await self._drop_recently_seen(adapter, source, urls)
        if len(todo) < len(urls):
            log.info("[%s] skipping %d recently seen listing(s)", adapter.name, len(urls) - len(todo))

        sem = asyncio.Semaphore(opts.concurrency)

        async def worker(url: str) -> int:
            async with sem:
                return await self._process(adapter, ctx, url, out.errors)

        counts = await asyncio.gather(*(worker(u) for u in todo))
        out.inserted = sum(counts)
        return out

    async def _discover(
        self,
        adapter: BaseAdapter,
        ctx: ScrapeContext,
        opts: RunOptions,
        errors: list[str],
    ) -> list[str]:
        """
        Pull from the adapter's lazy sequence until max_urls or the time budget.
        A discovery failure is recorded and whatever was pulled before it is kept.
        """
        urls: list[str] = []
        budget_s = opts.discovery_timeout_ms / 1000.0
        started = self.clock()
        try:
            async with aclosing(adapter.discover_listing_urls(ctx)) as stream:
                async for u in stream:
                    urls.append(u)
                    if len(urls) >= opts.max_urls:
                        break
                    if self.clock() - started > budget_s:
                        msg = f"discover timeout for {adapter.name} after {opts.discovery_timeout_ms}ms"
                        log.warning(msg)
                        errors.append(msg)
                        break
        except ConfigError:
            raise
        except Exception as e:  # noqa: BLE001
            log.warning("[%s] discovery failed: %s", adapter.name, e)
            errors.append(f"discover failed for {adapter.name}: {_err_text(e)}")
        return urls

    async def _drop_recently_seen(self, adapter: BaseAdapter, source: SourceInfo, urls: list[str]) -> list[str]:
        if not urls or self.recent_hours <= 0:
            return urls
        guesses = {u: adapter.guess_external_id(u) for u in urls}
        since = utcnow() - timedelta(hours=self.recent_hours)

        async def lookup() -> set[str]:
            async with self.session_factory() as session:
                ids = [g for g in guesses.values() if g]
                return await PropertyRepository(session).recently_seen(source.id, ids, since=since)

        # lookup failure means fetch everything
        seen = await best_effort(f"recently-seen lookup for {adapter.name}", lookup(), default=set())
        return [u for u in urls if not (guesses[u] and guesses[u] in seen)]

    async def _process(self, adapter: BaseAdapter, ctx: ScrapeContext, url: str, errors: list[str]) -> int:
        if adapter.polite_delay_ms:
            lo, hi = adapter.polite_delay_ms
            await self.sleep(self.rng.uniform(lo, hi) / 1000.0)

        for attempt in range(1, self.max_attempts + 1):
            try:
                log.info("[%s] fetching %s (attempt %d)", adapter.name, url, attempt)
                await self.fetch_parse_upsert(adapter, ctx, url)
                return 1
            except Exception as e:  # noqa: BLE001
                if attempt < self.max_attempts and is_retryable(e):
                    await self.sleep(attempt * self.backoff_step_ms / 1000.0)
                    continue
                log.warning("[%s] giving up on %s after %d attempt(s): %s", adapter.name, url, attempt, e)
                errors.append(f"parse/upsert failed for {adapter.name}: {_err_text(e)}")
                return 0
        return 0

    async def fetch_parse_upsert(self, adapter: BaseAdapter, ctx: ScrapeContext, url: str) -> dict[str, Any]:
        """One listing end to end. Raises on any failure; returns the stored payload."""
        html = await ctx.fetcher.get_text(url, ctx.request_timeout_ms)
        raw = await adapter.parse_listing(ctx, html, url)
        if not raw or not raw.get("external_id"):
            raise ParseError(f"{adapter.name} returned no external_id for {url}")

        payload = normalize_to_property({**raw, "url": raw.get("url") or url}, source_id=ctx.source.id)
        if ctx.listing_type:
            payload["listing_type"] = ctx.listing_type

        async with self.session_factory() as session:
            await PropertyRepository(session).upsert_listing(payload)
            await session.commit()
        return payload
