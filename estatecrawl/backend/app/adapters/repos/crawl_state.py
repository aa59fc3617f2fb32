# app/adapters/repos/crawl_state.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...models import CrawlState, DiscoveryCursor, RunLock, utcnow
from .dialect import insert_for


@dataclass(frozen=True)
class CrawlStateSnapshot:
    adapter_name: str
    region: str
    target_max_pages: int
    last_discovered: int
    last_inserted: int
    low_yield_streak: int
    updated_at: datetime


class CrawlStateStore(Protocol):
    """
    Shared mutable crawl memory: discovery cursors, per-region pacing and
    run locks. Every write is a single conflict-key upsert or conditional
    delete, never a read-then-write in the caller.
    """

    async def get_cursor(self, seed_url: str) -> int | None: ...

    async def save_cursor(self, seed_url: str, next_page: int, status: str) -> None: ...

    async def get_state(self, adapter_name: str, region: str) -> CrawlStateSnapshot | None: ...

    async def save_state(
        self,
        adapter_name: str,
        region: str,
        *,
        target_max_pages: int,
        last_discovered: int,
        last_inserted: int,
        low_yield_streak: int,
    ) -> None: ...

    async def acquire_lock(self, lock_key: str, owner: str, ttl_seconds: int) -> bool: ...

    async def release_lock(self, lock_key: str, owner: str) -> None: ...


class SqlAlchemyCrawlStateStore:
    """Each call runs in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # -------------------------
    # Discovery cursors
    # -------------------------

    async def get_cursor(self, seed_url: str) -> int | None:
        async with self.session_factory() as session:
            q = select(DiscoveryCursor.next_page).where(DiscoveryCursor.seed_url == seed_url)
            return (await session.execute(q)).scalars().first()

    async def save_cursor(self, seed_url: str, next_page: int, status: str) -> None:
        now = utcnow()
        async with self.session_factory() as session:
            stmt = insert_for(session, DiscoveryCursor.__table__).values(
                seed_url=seed_url,
                next_page=next_page,
                last_run_at=now,
                last_status=status,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["seed_url"],
                set_={
                    "next_page": stmt.excluded.next_page,
                    "last_run_at": stmt.excluded.last_run_at,
                    "last_status": stmt.excluded.last_status,
                },
            )
            await session.execute(stmt)
            await session.commit()

    # -------------------------
    # Region pacing
    # -------------------------

    async def get_state(self, adapter_name: str, region: str) -> CrawlStateSnapshot | None:
        async with self.session_factory() as session:
            q = select(CrawlState).where(CrawlState.adapter_name == adapter_name, CrawlState.region == region)
            row = (await session.execute(q)).scalars().first()
            if row is None:
                return None
            return CrawlStateSnapshot(
                adapter_name=row.adapter_name,
                region=row.region,
                target_max_pages=int(row.target_max_pages or 1),
                last_discovered=int(row.last_discovered or 0),
                last_inserted=int(row.last_inserted or 0),
                low_yield_streak=int(row.low_yield_streak or 0),
                updated_at=row.updated_at,
            )

    async def save_state(
        self,
        adapter_name: str,
        region: str,
        *,
        target_max_pages: int,
        last_discovered: int,
        last_inserted: int,
        low_yield_streak: int,
    ) -> None:
        async with self.session_factory() as session:
            stmt = insert_for(session, CrawlState.__table__).values(
                adapter_name=adapter_name,
                region=region,
                target_max_pages=target_max_pages,
                last_discovered=last_discovered,
                last_inserted=last_inserted,
                low_yield_streak=low_yield_streak,
                updated_at=utcnow(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["adapter_name", "region"],
                set_={
                    k: stmt.excluded[k]
                    for k in ("target_max_pages", "last_discovered", "last_inserted", "low_yield_streak", "updated_at")
                },
            )
            await session.execute(stmt)
            await session.commit()

    # -------------------------
    # Run locks
    # -------------------------

    async def acquire_lock(self, lock_key: str, owner: str, ttl_seconds: int) -> bool:
        """
        Atomic acquire: inserts a new lock, or takes over one whose TTL has
        elapsed. A live lock held by someone else is left untouched.
        """
        now = utcnow()
        async with self.session_factory() as session:
            stmt = insert_for(session, RunLock.__table__).values(
                lock_key=lock_key,
                owner=owner,
                expires_at=now + timedelta(seconds=int(ttl_seconds)),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["lock_key"],
                set_={"owner": stmt.excluded.owner, "expires_at": stmt.excluded.expires_at},
                where=RunLock.__table__.c.expires_at < now,
            )
            await session.execute(stmt)
            holder = (
                await session.execute(select(RunLock.owner).where(RunLock.lock_key == lock_key))
            ).scalars().first()
            await session.commit()
            return holder == owner

    async def release_lock(self, lock_key: str, owner: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(RunLock).where(RunLock.lock_key == lock_key, RunLock.owner == owner))
            await session.commit()
