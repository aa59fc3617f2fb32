# app/adapters/scraping/html.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from bs4 import BeautifulSoup
from bs4.element import Tag

from ...domain.urls import absolute_url

_BED = re.compile(r"(\d+)\s*(?:bed|bedroom)s?\b", re.IGNORECASE)
_BATH = re.compile(r"(\d+)\s*(?:bath|bathroom)s?\b", re.IGNORECASE)
_SIZE = re.compile(r"([0-9,.]+)\s*(?:sqm|m2|m²|sq\.?\s*m\b|square\s*met(?:er|re)s?)", re.IGNORECASE)
_FIRST_NUMBER = re.compile(r"[0-9][0-9,.]*")

_CURRENCY_SYMBOLS = {"£": "GBP", "€": "EUR", "$": "USD", "₦": "NGN"}
_CURRENCY_CODES = ("GBP", "EUR", "USD", "NGN")


def soup_of(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def pick_text(soup: BeautifulSoup | Tag, selector: str) -> str | None:
    """Text of the first element matching selector, whitespace-collapsed."""
    el = soup.select_one(selector)
    if el is None:
        return None
    t = el.get_text(" ", strip=True)
    return t or None


def attr_of(soup: BeautifulSoup | Tag, selector: str, attr: str) -> str | None:
    el = soup.select_one(selector)
    if el is None:
        return None
    v = el.get(attr)
    if isinstance(v, list):
        v = " ".join(v)
    v = (v or "").strip()
    return v or None


def meta_content(soup: BeautifulSoup, *selectors: str) -> str | None:
    for sel in selectors:
        v = attr_of(soup, sel, "content")
        if v:
            return v
    return None


def body_text(soup: BeautifulSoup) -> str:
    body = soup.body or soup
    return body.get_text(" ", strip=True)


def anchors(soup: BeautifulSoup, selector: str, base: str) -> Iterator[str]:
    """Absolute hrefs for every anchor matching selector (nav/self links dropped)."""
    for a in soup.select(selector):
        href = a.get("href")
        u = absolute_url(href if isinstance(href, str) else None, base)
        if u:
            yield u


def regex_urls(html: str, pattern: re.Pattern[str], base: str) -> Iterator[str]:
    for m in pattern.finditer(html or ""):
        u = absolute_url(m.group(0), base)
        if u:
            yield u


def same_origin(urls: Iterable[str], origin: str) -> list[str]:
    return [u for u in urls if origin and u.startswith(origin)]


def breadcrumb_location(parts: list[str]) -> tuple[str | None, str | None, str | None]:
    """
    [..., state, city, neighborhood] -> (neighborhood, city, state).
    Crumbs that are site navigation ('Home', 'For sale') are dropped.
    """
    def ok(x: str | None) -> str | None:
        if not x or re.search(r"home|for\s*sale", x, re.IGNORECASE):
            return None
        return x

    def at(i: int) -> str | None:
        return parts[-i] if len(parts) >= i else None

    return ok(at(1)), ok(at(2)), ok(at(3))


def crumb_texts(soup: BeautifulSoup, selector: str) -> list[str]:
    return [t for t in (el.get_text(" ", strip=True) for el in soup.select(selector)) if t]


def count_match(pattern: re.Pattern[str], *texts: str) -> int | None:
    for t in texts:
        m = pattern.search(t or "")
        if m:
            return int(m.group(1))
    return None


def bedrooms_in(*texts: str) -> int | None:
    return count_match(_BED, *texts)


def bathrooms_in(*texts: str) -> int | None:
    return count_match(_BATH, *texts)


def size_in(*texts: str) -> str | None:
    for t in texts:
        m = _SIZE.search(t or "")
        if m:
            return m.group(0)
    return None


def first_number(text: str | None) -> float | None:
    if not text:
        return None
    m = _FIRST_NUMBER.search(text)
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", ""))
    except ValueError:
        return None


def detect_currency(text: str | None) -> str | None:
    """Symbol directly before a number wins; then explicit ISO codes."""
    if not text:
        return None
    m = re.search(r"(£|€|\$|₦)\s*[0-9]", text)
    if m:
        return _CURRENCY_SYMBOLS[m.group(1)]
    for code in _CURRENCY_CODES:
        if re.search(rf"\b{code}\b", text, re.IGNORECASE):
            return code
    if "₦" in text or re.search(r"\bnaira\b", text, re.IGNORECASE):
        return "NGN"
    return None


# -------------------------
# JSON-LD
# -------------------------


@dataclass
class JsonLdFacts:
    street: str | None = None
    locality: str | None = None
    region: str | None = None
    postal_code: str | None = None
    neighborhood: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    date_published: str | None = None
    date_modified: str | None = None
    images: list[str] = field(default_factory=list)

    def address_line(self, *, neighborhood: str | None = None) -> str | None:
        parts = [self.street, self.neighborhood or neighborhood, self.locality, self.region, self.postal_code]
        parts = [str(p).strip() for p in parts if p]
        return ", ".join(parts) or None


def _first_str(d: dict[str, Any], *keys: str) -> str | None:
    for k in keys:
        v = d.get(k)
        if isinstance(v, (str, int, float)) and str(v).strip():
            return str(v).strip()
    return None


def _geo_number(v: Any) -> float | None:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def json_ld_blocks(soup: BeautifulSoup) -> list[Any]:
    out: list[Any] = []
    for el in soup.select('script[type="application/ld+json"]'):
        txt = el.string or el.get_text()
        if not txt or len(txt.strip()) < 2:
            continue
        try:
            out.append(json.loads(txt))
        except ValueError:
            continue
    return out


def json_ld_facts(soup: BeautifulSoup) -> JsonLdFacts:
    """Walk every JSON-LD block for PostalAddress, geo, publish dates and images. First hit wins."""
    facts = JsonLdFacts()

    def push_image(v: Any) -> None:
        if isinstance(v, str) and v.strip():
            facts.images.append(v.strip())

    def walk(node: Any) -> None:
        if isinstance(node, list):
            for x in node:
                walk(x)
            return
        if not isinstance(node, dict):
            return

        if facts.date_published is None and isinstance(node.get("datePublished"), str):
            facts.date_published = node["datePublished"]
        if facts.date_modified is None and isinstance(node.get("dateModified"), str):
            facts.date_modified = node["dateModified"]

        addr = node.get("address") if isinstance(node.get("address"), dict) else None
        if addr is None and node.get("@type") == "PostalAddress":
            addr = node
        if addr is not None:
            facts.street = facts.street or _first_str(addr, "streetAddress", "address1", "addressLine1")
            facts.locality = facts.locality or _first_str(addr, "addressLocality", "locality", "city")
            facts.region = facts.region or _first_str(addr, "addressRegion", "region", "state")
            facts.postal_code = facts.postal_code or _first_str(addr, "postalCode", "postcode", "zipCode")
            facts.neighborhood = facts.neighborhood or _first_str(addr, "neighborhood", "addressNeighborhood")

        geo = node.get("geo")
        if isinstance(geo, dict) and facts.latitude is None:
            lat = _geo_number(geo.get("latitude", geo.get("lat")))
            lng = _geo_number(geo.get("longitude", geo.get("lng")))
            if lat is not None and lng is not None:
                facts.latitude, facts.longitude = lat, lng

        img = node.get("image")
        if isinstance(img, list):
            for v in img:
                push_image(v)
        else:
            push_image(img)
        if node.get("@type") == "ImageObject":
            push_image(node.get("url"))

        for v in node.values():
            if isinstance(v, (dict, list)):
                walk(v)

    for block in json_ld_blocks(soup):
        walk(block)
    return facts


def page_images(soup: BeautifulSoup) -> list[str]:
    """og:image plus <img src|data-src> and <source srcset> candidates, unresolved."""
    out: list[str] = []
    og = meta_content(soup, 'meta[property="og:image"]')
    if og:
        out.append(og)
    for el in soup.select("img[src], img[data-src], source[srcset]"):
        src = el.get("src") or el.get("data-src")
        if isinstance(src, str) and src.strip():
            out.append(src.strip())
        srcset = el.get("srcset")
        if isinstance(srcset, str):
            out.extend(p.strip().split(" ")[0] for p in srcset.split(",") if p.strip())
    return out
