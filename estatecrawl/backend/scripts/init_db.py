# scripts/init_db.py
import asyncio
import logging

from app.config import settings
from app.db import create_all

log = logging.getLogger("init_db")


async def main() -> None:
    await create_all()
    log.info("created crawl tables on %s (idempotent)", settings.CRAWL_DB_URL)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    asyncio.run(main())
