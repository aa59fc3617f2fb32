# scripts/run_scrape.py
"""
One crawl from the command line.

    python scripts/run_scrape.py --adapter Zoopla --max-urls 20
    python scripts/run_scrape.py --adapter NigeriaPropertyCentre \
        --region /for-sale/flats/lagos/lekki/ --region /for-sale/houses/lagos/ikoyi/
    python scripts/run_scrape.py --dry-run
"""
import argparse
import asyncio
import json
import logging

from app.db import AsyncSessionLocal, create_all
from app.service_layer.engine import ScrapeEngine
from app.service_layer.jobruns import tracked_job
from app.service_layer.regions import RegionCoordinator
from app.schemas import RegionRunOptions, RunOptions


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the listing crawler once.")
    p.add_argument("--adapter", help="adapter name; omit to run every adapter (not allowed with --region)")
    p.add_argument("--max-pages", type=int)
    p.add_argument("--max-urls", type=int)
    p.add_argument("--request-timeout-ms", type=int)
    p.add_argument("--discovery-timeout-ms", type=int)
    p.add_argument("--concurrency", type=int)
    p.add_argument("--start-url", action="append", default=[], dest="start_urls")
    p.add_argument("--listing-type", choices=["buy", "rent"])
    p.add_argument("--region", action="append", default=[], dest="regions", help="region path or name (repeatable)")
    p.add_argument("--region-concurrency", type=int)
    p.add_argument("--dry-run", action="store_true", help="list adapters and exit; no network")
    return p.parse_args(argv)


def _options(args: argparse.Namespace) -> dict:
    raw = {
        "adapter_name": args.adapter,
        "max_pages": args.max_pages,
        "max_urls": args.max_urls,
        "request_timeout_ms": args.request_timeout_ms,
        "discovery_timeout_ms": args.discovery_timeout_ms,
        "concurrency": args.concurrency,
        "extra_start_urls": args.start_urls,
        "extra_listing_type": args.listing_type,
    }
    return {k: v for k, v in raw.items() if v is not None}


async def main(argv=None) -> int:
    args = parse_args(argv)
    engine = ScrapeEngine.from_settings(AsyncSessionLocal)

    if args.dry_run:
        print(json.dumps({"adapters": [m.model_dump() for m in engine.list_adapters()]}, indent=2))
        return 0

    if args.regions and not args.adapter:
        raise SystemExit("--region needs --adapter")

    await create_all()

    job_name = "scrape_regions" if args.regions else "scrape"
    meta = {"adapter": args.adapter, "regions": args.regions}
    async with tracked_job(AsyncSessionLocal, job_name, meta) as job:
        if args.regions:
            opts = RegionRunOptions(**_options(args), region_concurrency=args.region_concurrency)
            coordinator = RegionCoordinator(engine, engine.state_store)
            result = await coordinator.run_regions(args.adapter, args.regions, opts)
        else:
            result = await engine.run(RunOptions(**_options(args)))
        summary = job.summary = result.model_dump(mode="json")

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    raise SystemExit(asyncio.run(main()))
