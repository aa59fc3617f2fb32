# app/best_effort.py
from __future__ import annotations

import logging
from typing import Awaitable, TypeVar

T = TypeVar("T")

log = logging.getLogger(__name__)


async def best_effort(what: str, aw: Awaitable[T], *, default: T | None = None) -> T | None:
    """
    Await a side-table operation (cursor, pacing, lock release, freshness lookup)
    whose failure must not fail the run. Failures are logged and `default` is returned.
    """
    try:
        return await aw
    except Exception as e:  # noqa: BLE001
        log.warning("best-effort %s failed: %s: %s", what, type(e).__name__, e)
        return default
