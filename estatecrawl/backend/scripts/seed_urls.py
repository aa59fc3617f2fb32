# scripts/seed_urls.py
import argparse
import asyncio
import json
import logging
import sys

from app.db import AsyncSessionLocal, create_all
from app.service_layer.engine import ScrapeEngine
from app.service_layer.jobruns import tracked_job
from app.service_layer.seed import seed_urls


async def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Upsert an explicit list of listing URLs.")
    p.add_argument("adapter")
    p.add_argument("urls", nargs="*", help="listing URLs; read from stdin when omitted")
    p.add_argument("--listing-type", choices=["buy", "rent"])
    args = p.parse_args(argv)

    urls = args.urls or [line.strip() for line in sys.stdin if line.strip()]
    if not urls:
        raise SystemExit("no URLs given")

    await create_all()
    engine = ScrapeEngine.from_settings(AsyncSessionLocal)

    async with tracked_job(AsyncSessionLocal, "seed_urls", {"adapter": args.adapter, "count": len(urls)}) as job:
        res = await seed_urls(engine, args.adapter, urls, listing_type=args.listing_type)
        summary = job.summary = res.model_dump(mode="json")

    print(json.dumps(summary, indent=2))
    return 0 if not res.errors else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    raise SystemExit(asyncio.run(main()))
