# app/adapters/repos/dialect.py
from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.errors import StoreError


def insert_for(session: AsyncSession, table: Any):
    """
    Dialect-specific INSERT that supports ON CONFLICT DO UPDATE / DO NOTHING.
    Every conflict-key upsert in the repos goes through here.
    """
    name = session.get_bind().dialect.name
    if name == "sqlite":
        return sqlite.insert(table)
    if name == "postgresql":
        return postgresql.insert(table)
    raise StoreError(f"upsert not supported for dialect {name!r}")
