# app/adapters/repos/properties.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import case, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.errors import StoreError
from ...models import Property, utcnow
from .dialect import insert_for

# Columns an upsert may overwrite. first_seen_at is deliberately absent.
_UPDATABLE = (
    "url",
    "url_canonical",
    "title",
    "description",
    "price",
    "currency",
    "size_sqm",
    "bedrooms",
    "bathrooms",
    "property_type",
    "listing_type",
    "images",
    "address_line1",
    "address_line2",
    "neighborhood",
    "city",
    "state",
    "postal_code",
    "country",
    "latitude",
    "longitude",
    "listed_at",
    "listing_updated_at",
    "is_active",
    "raw",
    "scraped_at",
)

# NOT NULL columns that fall back to their column default when the payload has no value
_DEFAULTED = ("price", "currency", "property_type", "is_active")

_LOOKUP_CHUNK = 500


class PropertyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert_listing(self, payload: dict[str, Any], *, now: datetime | None = None) -> None:
        """
        Upsert on (source_id, external_id).

        first_seen_at is written on first insert only; scraped_at and
        last_seen_at are bumped to `now` on every call, and last_seen_at never
        moves backwards when two writers race.
        """
        source_id = payload.get("source_id")
        external_id = payload.get("external_id")
        if source_id is None or not external_id:
            raise StoreError(f"Missing conflict key: {source_id=}, {external_id=}")

        ts = now or utcnow()
        values = {k: payload[k] for k in _UPDATABLE if k in payload and k != "scraped_at"}
        for k in _DEFAULTED:
            if values.get(k) is None:
                values.pop(k, None)
        values.update(
            source_id=source_id,
            external_id=str(external_id),
            first_seen_at=ts,
            last_seen_at=ts,
            scraped_at=ts,
        )

        table = Property.__table__
        stmt = insert_for(self.session, table).values(**values)
        set_ = {k: stmt.excluded[k] for k in values if k in _UPDATABLE}
        set_["last_seen_at"] = case(
            (table.c.last_seen_at > stmt.excluded.last_seen_at, table.c.last_seen_at),
            else_=stmt.excluded.last_seen_at,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["source_id", "external_id"], set_=set_)

        try:
            await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"upsert failed for {source_id}:{external_id}: {e}") from e

    async def get(self, source_id: int, external_id: str) -> Property | None:
        q = select(Property).where(Property.source_id == source_id, Property.external_id == external_id)
        return (await self.session.execute(q)).scalars().first()

    async def recently_seen(self, source_id: int, external_ids: Iterable[str], *, since: datetime) -> set[str]:
        """external_ids under source_id whose last_seen_at is at or after `since`."""
        ids = sorted({str(x) for x in external_ids if x})
        seen: set[str] = set()
        for i in range(0, len(ids), _LOOKUP_CHUNK):
            chunk = ids[i : i + _LOOKUP_CHUNK]
            q = select(Property.external_id).where(
                Property.source_id == source_id,
                Property.external_id.in_(chunk),
                Property.last_seen_at >= since,
            )
            seen.update((await self.session.execute(q)).scalars().all())
        return seen
