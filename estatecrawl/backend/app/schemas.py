from __future__ import annotations

import enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import settings

ListingTypeName = Literal["buy", "rent"]


def _clamp(v: Any, lo: int, hi: int, default: int) -> int:
    """Coerce to int and clamp into [lo, hi]; junk falls back to default."""
    if v is None or isinstance(v, bool):
        return default
    try:
        n = int(float(v))
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, n))


class RunOptions(BaseModel):
    """
    Options for one engine run. Out-of-range numbers are clamped, not rejected,
    so a caller passing max_urls=500 gets 50.
    """

    adapter_name: str | None = None  # None = every registered adapter
    max_pages: int = Field(default_factory=lambda: settings.SCRAPE_MAX_PAGES)
    max_urls: int = Field(default_factory=lambda: settings.SCRAPE_MAX_URLS)
    request_timeout_ms: int = Field(default_factory=lambda: settings.SCRAPE_REQUEST_TIMEOUT_MS)
    discovery_timeout_ms: int = Field(default_factory=lambda: settings.SCRAPE_DISCOVERY_TIMEOUT_MS)
    extra_start_urls: list[str] = Field(default_factory=list)
    extra_listing_type: ListingTypeName | None = None
    concurrency: int = Field(default_factory=lambda: settings.SCRAPE_CONCURRENCY)

    @field_validator("max_pages", mode="before")
    @classmethod
    def _max_pages(cls, v: Any) -> int:
        return _clamp(v, 1, settings.PACING_HARD_MAX_PAGES, settings.SCRAPE_MAX_PAGES)

    @field_validator("max_urls", mode="before")
    @classmethod
    def _max_urls(cls, v: Any) -> int:
        return _clamp(v, 1, 50, settings.SCRAPE_MAX_URLS)

    @field_validator("request_timeout_ms", mode="before")
    @classmethod
    def _request_timeout(cls, v: Any) -> int:
        return _clamp(v, 1000, 30000, settings.SCRAPE_REQUEST_TIMEOUT_MS)

    @field_validator("discovery_timeout_ms", mode="before")
    @classmethod
    def _discovery_timeout(cls, v: Any) -> int:
        return _clamp(v, 1000, 20000, settings.SCRAPE_DISCOVERY_TIMEOUT_MS)

    @field_validator("concurrency", mode="before")
    @classmethod
    def _concurrency(cls, v: Any) -> int:
        return _clamp(v, 1, 10, settings.SCRAPE_CONCURRENCY)

    @field_validator("extra_listing_type", mode="before")
    @classmethod
    def _listing_type(cls, v: Any) -> str | None:
        s = str(v).strip().lower() if v is not None else ""
        return s if s in ("buy", "rent") else None

    @field_validator("extra_start_urls", mode="before")
    @classmethod
    def _start_urls(cls, v: Any) -> list[str]:
        if not v:
            return []
        if isinstance(v, str):
            v = [v]
        return [str(u).strip() for u in v if u and str(u).strip()]


class RegionSpec(BaseModel):
    """A named crawl target. A bare string is a region whose name is also its only path."""

    name: str
    paths: list[str] = Field(default_factory=list)
    start_urls: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"name": v.strip(), "paths": [v.strip()]}
        return v


class RegionRunOptions(RunOptions):
    region_concurrency: int = Field(default_factory=lambda: settings.REGION_CONCURRENCY)

    @field_validator("region_concurrency", mode="before")
    @classmethod
    def _region_concurrency(cls, v: Any) -> int:
        return _clamp(v, 1, 10, settings.REGION_CONCURRENCY)


class RunResult(BaseModel):
    inserted: int = 0
    discovered: int = 0
    adapters: int = 0
    errors: list[str] = Field(default_factory=list)


class RegionSkipReason(str, enum.Enum):
    fresh = "fresh"
    locked = "locked"


class RegionResult(RunResult):
    name: str
    skipped: bool = False
    reason: RegionSkipReason | None = None
    target_max_pages: int | None = None


class RegionsRunResult(BaseModel):
    inserted: int = 0
    discovered: int = 0
    regions: list[RegionResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class AdapterMeta(BaseModel):
    name: str


class SeedItem(BaseModel):
    url: str
    external_id: str | None = None
    title: str | None = None
    price: float | None = None


class SeedResult(BaseModel):
    upserted: int = 0
    results: list[SeedItem] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
