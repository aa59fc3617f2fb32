# app/domain/normalize.py
from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin, urlsplit

from ..models import ListingType, PropertyType
from .parsing import clean_text, parse_size_sqm, to_float, to_number
from .urls import canonicalize_url

DEFAULT_CURRENCY = "NGN"
DEFAULT_COUNTRY = "Nigeria"
MAX_IMAGES = 20

# Order matters: the first matching bucket wins.
_TYPE_KEYWORDS: list[tuple[PropertyType, tuple[str, ...]]] = [
    (PropertyType.duplex, ("duplex",)),
    (PropertyType.apartment, ("apartment", "flat", "maisonette")),
    (PropertyType.house, ("house", "bungalow", "villa")),
    (PropertyType.townhouse, ("townhouse", "terrace")),
    (PropertyType.land, ("land", "plot")),
    (PropertyType.studio, ("studio", "bedsitter")),
    (PropertyType.condo, ("condo",)),
]

_ASSET_HINTS = re.compile(r"(sprite|icon|logo|favicon|placeholder)", re.IGNORECASE)


def map_property_type(raw: Any) -> PropertyType:
    """
    Classify messy free text ('3 bedroom detached duplex', 'Flat for sale')
    into the canonical enum. Unknown => other.
    """
    if not raw:
        return PropertyType.other
    s = str(raw).lower()
    for ptype, keywords in _TYPE_KEYWORDS:
        if any(k in s for k in keywords):
            return ptype
    return PropertyType.other


def compose_address(
    address_line1: Any,
    *,
    neighborhood: Any = None,
    city: Any = None,
    state: Any = None,
    postal_code: Any = None,
    country: Any = None,
) -> str | None:
    """Keep a parsed street address; otherwise join whatever location parts exist."""
    street = clean_text(address_line1)
    if street:
        return street
    parts = [clean_text(p) for p in (neighborhood, city, state, postal_code, country)]
    parts = [p for p in parts if p]
    return ", ".join(parts) if parts else None


def normalize_images(images: Any, base_url: str) -> list[str] | None:
    if not images:
        return None
    items = images if isinstance(images, (list, tuple)) else [images]

    out: list[str] = []
    seen: set[str] = set()
    for it in items:
        s = clean_text(it)
        if not s or s.lower().startswith("data:"):
            continue
        try:
            abs_url = urljoin(base_url, s)
            parts = urlsplit(abs_url)
        except ValueError:
            continue
        if parts.scheme not in ("http", "https"):
            continue
        if _ASSET_HINTS.search(parts.path.rsplit("/", 1)[-1]):
            continue
        if abs_url in seen:
            continue
        seen.add(abs_url)
        out.append(abs_url)
        if len(out) >= MAX_IMAGES:
            break
    return out or None


def _listing_type(raw: Any) -> str | None:
    if raw is None:
        return None
    try:
        return ListingType(str(raw).strip().lower()).value
    except ValueError:
        return None


def normalize_to_property(raw: dict[str, Any], *, source_id: int | None) -> dict[str, Any]:
    """
    Adapter raw fields -> canonical Property payload.

    Never raises: every field degrades to None or a safe default.
    external_id/url are passed through untouched (the engine checks them).
    """
    url = str(raw.get("url") or "")

    size_sqm = to_number(raw.get("size_sqm")) if raw.get("size_sqm") is not None else parse_size_sqm(raw.get("size"))

    lat = to_float(raw.get("latitude"))
    lon = to_float(raw.get("longitude"))

    country = clean_text(raw.get("country"))
    currency = clean_text(raw.get("currency"))

    type_text = raw.get("property_type") or raw.get("title")

    is_active = raw.get("is_active")

    return {
        "source_id": source_id,
        "external_id": clean_text(raw.get("external_id")),
        "url": url,
        "url_canonical": canonicalize_url(url) if url else None,
        "title": clean_text(raw.get("title")),
        "description": clean_text(raw.get("description")),
        "price": to_number(raw.get("price")) or 0.0,
        "currency": (currency or DEFAULT_CURRENCY).upper(),
        "size_sqm": size_sqm,
        "bedrooms": to_number(raw.get("bedrooms")),
        "bathrooms": to_number(raw.get("bathrooms")),
        "property_type": map_property_type(type_text).value,
        "listing_type": _listing_type(raw.get("listing_type")),
        "images": normalize_images(raw.get("images"), url),
        "address_line1": compose_address(
            raw.get("address_line1"),
            neighborhood=raw.get("neighborhood"),
            city=raw.get("city"),
            state=raw.get("state"),
            postal_code=raw.get("postal_code"),
            country=country or DEFAULT_COUNTRY,
        ),
        "address_line2": clean_text(raw.get("address_line2")),
        "neighborhood": clean_text(raw.get("neighborhood")),
        "city": clean_text(raw.get("city")),
        "state": clean_text(raw.get("state")),
        "postal_code": clean_text(raw.get("postal_code")),
        "country": country or DEFAULT_COUNTRY,
        "latitude": lat,
        "longitude": lon,
        "listed_at": clean_text(raw.get("listed_at")),
        "listing_updated_at": clean_text(raw.get("listing_updated_at")),
        "is_active": True if is_active is None else bool(is_active),
        "raw": raw.get("raw") if isinstance(raw.get("raw"), dict) else None,
    }
