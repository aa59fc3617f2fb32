# app/service_layer/seed.py
from __future__ import annotations

import logging
from typing import Iterable

from ..schemas import RunOptions, SeedItem, SeedResult
from .engine import ScrapeEngine

log = logging.getLogger(__name__)


async def seed_urls(
    engine: ScrapeEngine,
    adapter_name: str,
    urls: Iterable[str],
    *,
    listing_type: str | None = None,
    request_timeout_ms: int | None = None,
) -> SeedResult:
    """
    Fetch/parse/upsert an explicit list of listing URLs, one at a time.

    No discovery, no stop-on-known filter, no retries. An unknown adapter
    raises ConfigError; per-URL failures land in `errors`.
    """
    adapter = engine.get_adapter(adapter_name)
    source = await engine.resolve_source(adapter)
    opts = RunOptions(
        adapter_name=adapter.name,
        extra_listing_type=listing_type,
        request_timeout_ms=request_timeout_ms,
    )
    ctx = engine.context_for(adapter, source, opts)
    # seeding never moves discovery cursors
    ctx.state = None

    out = SeedResult()
    for url in dict.fromkeys(u.strip() for u in urls if u and u.strip()):
        try:
            payload = await engine.fetch_parse_upsert(adapter, ctx, url)
        except Exception as e:  # noqa: BLE001
            log.warning("[%s] seed failed for %s: %s", adapter.name, url, e)
            out.errors.append(f"{url}: {str(e) or type(e).__name__}")
            continue
        out.upserted += 1
        out.results.append(
            SeedItem(
                url=url,
                external_id=payload.get("external_id"),
                title=payload.get("title"),
                price=payload.get("price"),
            )
        )
    return out
