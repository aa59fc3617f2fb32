# app/service_layer/regions.py
from __future__ import annotations

import asyncio
import logging
import random
import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable
from urllib.parse import urljoin

from ..adapters.repos.crawl_state import CrawlStateSnapshot, CrawlStateStore
from ..adapters.scraping.base import BaseAdapter
from ..best_effort import best_effort
from ..config import settings
from ..domain.errors import ConfigError
from ..domain.pacing import next_pacing
from ..models import utcnow
from ..schemas import RegionResult, RegionRunOptions, RegionSkipReason, RegionSpec, RegionsRunResult
from .engine import ScrapeEngine

log = logging.getLogger(__name__)


def new_run_owner() -> str:
    return f"run-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def lock_key_for(adapter_name: str, region: str) -> str:
    return f"{adapter_name}:{region}"


def region_start_urls(base_url: str, region: RegionSpec) -> list[str]:
    """Explicit start_urls as-is, then paths resolved against the base URL."""
    urls = [u for u in region.start_urls if u]
    urls.extend(urljoin(base_url, p) for p in region.paths if p)
    return list(dict.fromkeys(urls))


class RegionCoordinator:
    """
    Fans one adapter out over many regions: freshness gate, per-region lock,
    bounded engine run, guaranteed release, pacing update.
    """

    def __init__(
        self,
        engine: ScrapeEngine,
        state_store: CrawlStateStore,
        *,
        lock_ttl_s: int | None = None,
        fresh_minutes: dict[str, int] | None = None,
        fresh_minutes_default: int | None = None,
        pacing_upper_bound: int | None = None,
        jitter_ms: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
        owner_factory: Callable[[], str] = new_run_owner,
    ) -> None:
        self.engine = engine
        self.state = state_store
        self.lock_ttl_s = lock_ttl_s or settings.RUN_LOCK_TTL_S
        self.fresh_minutes = dict(settings.REGION_FRESH_MINUTES if fresh_minutes is None else fresh_minutes)
        self.fresh_minutes_default = (
            settings.REGION_FRESH_MINUTES_DEFAULT if fresh_minutes_default is None else fresh_minutes_default
        )
        self.pacing_upper_bound = pacing_upper_bound or settings.PACING_MAX_PAGES
        self.jitter_ms = settings.REGION_JITTER_MS if jitter_ms is None else jitter_ms
        self.sleep = sleep
        self.now = now
        self.owner_factory = owner_factory

    def freshness_window(self, adapter_name: str) -> timedelta:
        return timedelta(minutes=self.fresh_minutes.get(adapter_name, self.fresh_minutes_default))

    async def run_regions(
        self,
        adapter_name: str,
        regions: Iterable[RegionSpec | str | dict],
        options: RegionRunOptions | None = None,
    ) -> RegionsRunResult:
        opts = options or RegionRunOptions()
        adapter = self.engine.get_adapter(adapter_name)
        specs = [r if isinstance(r, RegionSpec) else RegionSpec.model_validate(r) for r in regions]
        sem = asyncio.Semaphore(opts.region_concurrency)

        async def unit(spec: RegionSpec) -> RegionResult:
            async with sem:
                return await self._run_region(adapter, spec, opts)

        results = await asyncio.gather(*(unit(s) for s in specs))

        out = RegionsRunResult(regions=list(results))
        for r in results:
            out.inserted += r.inserted
            out.discovered += r.discovered
            out.errors.extend(f"{r.name}: {e}" for e in r.errors)

        log.info(
            "region batch %s done regions=%d skipped=%d inserted=%d",
            adapter.name,
            len(results),
            sum(1 for r in results if r.skipped),
            out.inserted,
        )
        return out

    def _is_fresh(self, state: CrawlStateSnapshot | None, adapter_name: str) -> bool:
        if state is None or state.updated_at is None:
            return False
        return self.now() - state.updated_at < self.freshness_window(adapter_name)

    async def _run_region(
        self,
        adapter: BaseAdapter,
        spec: RegionSpec,
        opts: RegionRunOptions,
    ) -> RegionResult:
        name = spec.name
        # one owner per unit: a region listed twice in a batch must still exclude itself
        owner = self.owner_factory()

        if self.jitter_ms > 0:
            await self.sleep(random.uniform(0, self.jitter_ms) / 1000.0)

        # unreadable state means not fresh
        state = await best_effort(f"crawl-state read {adapter.name}:{name}", self.state.get_state(adapter.name, name))
        if self._is_fresh(state, adapter.name):
            log.info("[%s] region %s is fresh, skipping", adapter.name, name)
            return RegionResult(name=name, skipped=True, reason=RegionSkipReason.fresh)

        key = lock_key_for(adapter.name, name)
        try:
            acquired = await self.state.acquire_lock(key, owner, self.lock_ttl_s)
        except Exception as e:  # noqa: BLE001
            log.warning("lock acquire %s failed, treating as locked: %s", key, e)
            acquired = False
        if not acquired:
            log.info("[%s] region %s is locked, skipping", adapter.name, name)
            return RegionResult(name=name, skipped=True, reason=RegionSkipReason.locked)

        target = state.target_max_pages if state is not None else opts.max_pages
        target = max(1, min(settings.PACING_HARD_MAX_PAGES, int(target)))

        try:
            source = await self.engine.resolve_source(adapter)
            run_opts = opts.model_copy(
                update={
                    "adapter_name": adapter.name,
                    "max_pages": target,
                    "extra_start_urls": region_start_urls(source.base_url, spec) or list(opts.extra_start_urls),
                }
            )
            res = await self.engine.run(run_opts)
        except ConfigError:
            raise
        except Exception as e:  # noqa: BLE001
            log.exception("[%s] region %s crashed", adapter.name, name)
            return RegionResult(name=name, errors=[str(e) or type(e).__name__], target_max_pages=target)
        finally:
            await best_effort(f"lock release {key}", self.state.release_lock(key, owner))

        pacing = next_pacing(
            target_max_pages=target,
            low_yield_streak=state.low_yield_streak if state is not None else 0,
            inserted=res.inserted,
            discovered=res.discovered,
            upper_bound=self.pacing_upper_bound,
        )
        if pacing.target_max_pages != target:
            log.info("[%s] region %s pacing %d -> %d pages", adapter.name, name, target, pacing.target_max_pages)
        await best_effort(
            f"crawl-state write {adapter.name}:{name}",
            self.state.save_state(
                adapter.name,
                name,
                target_max_pages=pacing.target_max_pages,
                last_discovered=res.discovered,
                last_inserted=res.inserted,
                low_yield_streak=pacing.low_yield_streak,
            ),
        )

        return RegionResult(
            name=name,
            inserted=res.inserted,
            discovered=res.discovered,
            adapters=res.adapters,
            errors=list(res.errors),
            target_max_pages=target,
        )
