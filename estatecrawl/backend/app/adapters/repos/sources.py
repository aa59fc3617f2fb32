# app/adapters/repos/sources.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import Source
from .dialect import insert_for


class SourceRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_name(self, name: str) -> Source | None:
        q = select(Source).where(Source.name == name)
        return (await self.session.execute(q)).scalars().first()

    async def get_or_create(self, name: str, base_url: str) -> tuple[Source, bool]:
        """
        Returns (source, created). Insert is ON CONFLICT DO NOTHING so two
        runs auto-creating the same source converge on one row.
        """
        existing = await self.get_by_name(name)
        if existing is not None:
            return existing, False

        stmt = insert_for(self.session, Source.__table__).values(name=name, base_url=base_url)
        stmt = stmt.on_conflict_do_nothing(index_elements=["name"])
        res = await self.session.execute(stmt)

        src = await self.get_by_name(name)
        assert src is not None
        return src, res.rowcount == 1
