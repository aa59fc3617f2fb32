# app/domain/pacing.py
from __future__ import annotations

from dataclasses import dataclass

MAX_STREAK = 10
HIGH_YIELD_INSERTS = 10
URLS_PER_PAGE_HINT = 20
LOW_YIELD_STREAK_TRIGGER = 2


@dataclass(frozen=True)
class Pacing:
    target_max_pages: int
    low_yield_streak: int


def next_pacing(
    *,
    target_max_pages: int,
    low_yield_streak: int,
    inserted: int,
    discovered: int,
    upper_bound: int = 5,
) -> Pacing:
    """
    Adapt crawl depth from one run's yield.

    Any insert resets the streak; a zero-insert run bumps it (capped).
    High yield deepens by one page up to upper_bound; a repeated zero-insert
    streak backs off by one page, never below 1.
    """
    target = max(1, int(target_max_pages))
    streak = max(0, int(low_yield_streak))

    if inserted > 0:
        streak = 0
    else:
        streak = min(MAX_STREAK, streak + 1)

    if inserted >= HIGH_YIELD_INSERTS or discovered >= target * URLS_PER_PAGE_HINT:
        target = min(upper_bound, target + 1)
    elif inserted == 0 and streak >= LOW_YIELD_STREAK_TRIGGER:
        target = max(1, target - 1)

    return Pacing(target_max_pages=target, low_yield_streak=streak)


@dataclass(frozen=True)
class PageWindow:
    first_page: int
    last_page: int

    def pages(self) -> range:
        return range(self.first_page, self.last_page + 1)


def plan_window(next_page: int | None, max_pages: int, page_cap: int | None = None) -> PageWindow:
    """
    Pages to scan for one seed this run, resuming from the stored cursor.
    With a page_cap the window never runs past it.
    """
    first = next_page if next_page and next_page > 0 else 1
    if page_cap is not None and first > page_cap:
        first = 1
    last = first + max(1, int(max_pages)) - 1
    if page_cap is not None:
        last = min(page_cap, last)
    return PageWindow(first_page=first, last_page=last)


def cursor_after(scanned_through: int, page_cap: int | None = None) -> int:
    """Cursor to persist once pages up to scanned_through were scanned; wraps at the cap."""
    if page_cap is not None and scanned_through >= page_cap:
        return 1
    return scanned_through + 1
