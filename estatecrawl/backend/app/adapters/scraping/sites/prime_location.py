# app/adapters/scraping/sites/prime_location.py
from __future__ import annotations

import re
from datetime import date
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup

from ....domain.parsing import to_float
from ....domain.urls import with_params
from .. import html as h
from ..base import RawListing, ScrapeContext
from .zoopla import ZooplaAdapter

SQFT_PER_SQM = 10.7639

_MONTHS = {
    m: i
    for i, m in enumerate(
        ["january", "february", "march", "april", "may", "june", "july",
         "august", "september", "october", "november", "december"],
        start=1,
    )
}
_LISTED_MONTH = re.compile(
    r"\b(?:Listed|Added) on\s+(\d{1,2})(?:st|nd|rd|th)?\s+([A-Za-z]{3,9})\s+(\d{4})", re.IGNORECASE
)
_LISTED_SLASH = re.compile(
    r"\b(?:Listed|Added) on\s+(\d{1,2})\s*[/-]\s*(\d{1,2})\s*[/-]\s*(\d{2,4})\b", re.IGNORECASE
)
_SIZE_TEXT = re.compile(r"([0-9][0-9,.]{1,6})\s*(sq\s*ft|sqft|ft²|m2|m²|sqm)", re.IGNORECASE)
_UK_OUTWARD = re.compile(r"([A-Za-z]{1,2}\d[A-Za-z0-9]?)(?:\s*\d[A-Za-z]{2})?$")
_UK_NATIONS = re.compile(r"^(united kingdom|england|scotland|wales|northern ireland)$", re.IGNORECASE)


def _month_date(text: str) -> str | None:
    m = _LISTED_MONTH.search(text)
    if not m:
        return None
    month = _MONTHS.get(m.group(2).lower()) or next(
        (i for name, i in _MONTHS.items() if name.startswith(m.group(2).lower()[:3])), None
    )
    try:
        return date(int(m.group(3)), month, int(m.group(1))).isoformat() if month else None
    except ValueError:
        return None


def _slash_date(text: str) -> str | None:
    # UK order: dd/mm/yyyy
    m = _LISTED_SLASH.search(text)
    if not m:
        return None
    day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    if year < 100:
        year += 1900 if year >= 70 else 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _to_sqm(val: Any) -> float | None:
    if isinstance(val, list):
        val = val[0] if val else None
    if val is None:
        return None
    if isinstance(val, dict):
        v = to_float(val.get("value"))
        unit = str(val.get("unitCode") or val.get("unitText") or "").upper()
    else:
        v, unit = to_float(val), ""
    if v is None:
        return None
    if "SQF" in unit or "FT" in unit:
        return round(v / SQFT_PER_SQM, 2)
    if "M2" in unit or "SQM" in unit or "MTK" in unit:
        return round(v, 2)
    return None


def _structured_extras(soup: BeautifulSoup) -> dict[str, Any]:
    """Offer price/currency, room counts, floor size and property type from JSON-LD."""
    out: dict[str, Any] = {}

    def setdefault(k: str, v: Any) -> None:
        if v is not None and k not in out:
            out[k] = v

    def walk(node: Any) -> None:
        if isinstance(node, list):
            for x in node:
                walk(x)
            return
        if not isinstance(node, dict):
            return
        offers = node.get("offers") if isinstance(node.get("offers"), dict) else {}
        setdefault(
            "price",
            to_float(offers.get("price") or offers.get("lowPrice") or offers.get("highPrice") or node.get("price")),
        )
        cur = offers.get("priceCurrency") or offers.get("currency") or node.get("priceCurrency")
        if isinstance(cur, str) and cur.strip():
            setdefault("currency", cur.strip().upper())
        setdefault("bedrooms", to_float(node.get("numberOfBedrooms") or offers.get("numberOfBedrooms")))
        setdefault(
            "bathrooms",
            to_float(node.get("numberOfBathroomsTotal") or node.get("numberOfBathrooms") or offers.get("numberOfBathrooms")),
        )
        fs = node.get("floorSize") or (node if node.get("@type") == "QuantitativeValue" else None)
        setdefault("size_sqm", _to_sqm(fs))
        ptype = node.get("propertyType")
        if isinstance(ptype, str) and ptype.strip():
            setdefault("property_type", ptype.strip())
        for v in node.values():
            if isinstance(v, (dict, list)):
                walk(v)

    for block in h.json_ld_blocks(soup):
        walk(block)
    return out


def _key_features(soup: BeautifulSoup) -> list[str]:
    items = [li.get_text(" ", strip=True) for li in soup.select('.key-features li, [data-testid="key-features"] li')]
    for sec in soup.select("section"):
        if re.search(r"key\s*features", sec.get_text(" ", strip=True), re.IGNORECASE):
            items.extend(li.get_text(" ", strip=True) for li in sec.select("li"))
    seen: set[str] = set()
    out: list[str] = []
    for f in items:
        f = re.sub(r"\s+", " ", f).strip()
        if f and f.lower() not in seen:
            seen.add(f.lower())
            out.append(f)
    return out


def _details_table(soup: BeautifulSoup) -> dict[str, str]:
    details: dict[str, str] = {}
    for tr in soup.select("table tr"):
        cells = tr.select("th, td")
        tds = tr.select("td")
        if cells and tds:
            k = cells[0].get_text(" ", strip=True)
            v = tds[-1].get_text(" ", strip=True)
            if k and v:
                details[k] = v
    for dl in soup.select("dl"):
        for dt, dd in zip(dl.select("dt"), dl.select("dd")):
            k, v = dt.get_text(" ", strip=True), dd.get_text(" ", strip=True)
            if k and v:
                details[k] = v
    return details


def _pick_detail(details: dict[str, str], *needles: str) -> str | None:
    for k, v in details.items():
        if any(n in k.lower() for n in needles):
            return v
    return None


class PrimeLocationAdapter(ZooplaAdapter):
    """
    Same search/details URL shape as Zoopla. The site sits behind a WAF, so
    requests may go through the proxy fallback configured on the fetcher.
    """

    name = "PrimeLocation"
    default_base_url = "https://www.primelocation.com/"

    def seeds(self, ctx: ScrapeContext) -> list[str]:
        seeds = super().seeds(ctx)
        if ctx.listing_type != "rent":
            return seeds
        out = []
        for seed in seeds:
            p = urlsplit(seed)
            swapped = urlunsplit(p._replace(path=p.path.replace("/for-sale/", "/to-rent/")))
            if "search_source=" in p.query:
                swapped = with_params(swapped, {"search_source": "to-rent"})
            out.append(swapped)
        return out

    def list_page_url(self, ctx: ScrapeContext, seed: str, page: int) -> str:
        src = "to-rent" if ctx.listing_type == "rent" else "for-sale"
        return with_params(
            seed,
            {"pn": str(page), "results_sort": "newest_listings", "search_source": src},
            keep=("results_sort", "search_source"),
        )

    async def parse_listing(self, ctx: ScrapeContext, html: str, url: str) -> RawListing:
        raw = await super().parse_listing(ctx, html, url)
        soup = h.soup_of(html)
        body = h.body_text(soup)

        title = raw["title"] or h.pick_text(soup, "title")
        raw["title"] = title

        price_text = h.pick_text(soup, '[data-testid="price"], .price, [itemprop="price"]') or h.meta_content(
            soup, 'meta[property="og:price:amount"]'
        )
        meta_currency = h.meta_content(soup, 'meta[property="og:price:currency"]', 'meta[itemprop="priceCurrency"]')

        extras = _structured_extras(soup)
        raw["price"] = h.first_number(price_text) if price_text else extras.get("price")
        host = (urlsplit(url).hostname or "").lower()
        raw["currency"] = (
            h.detect_currency(price_text)
            or meta_currency
            or extras.get("currency")
            or ("GBP" if host.endswith(".co.uk") else None)
            or h.detect_currency(body)
            or "GBP"
        )

        raw["bedrooms"] = extras.get("bedrooms") if extras.get("bedrooms") is not None else h.bedrooms_in(title or "", body)
        raw["bathrooms"] = extras.get("bathrooms") if extras.get("bathrooms") is not None else h.bathrooms_in(body)

        size_sqm = extras.get("size_sqm")
        if size_sqm is None:
            m = _SIZE_TEXT.search(body)
            if m:
                v = to_float(m.group(1).replace(",", ""))
                if v is not None:
                    sqft = re.match(r"sq\s*ft|sqft|ft²", m.group(2), re.IGNORECASE)
                    size_sqm = round(v / SQFT_PER_SQM, 2) if sqft else round(v, 2)
        raw["size_sqm"] = size_sqm
        raw.pop("size", None)

        # JSON-LD type first, then title, then crumbs and body text
        crumbs = " ".join(h.crumb_texts(soup, '[class*="crumb"] a, nav.breadcrumb a, .breadcrumbs a'))
        raw["property_type"] = extras.get("property_type") or " ".join(x for x in (title, crumbs, body) if x)

        if not raw["listed_at"]:
            raw["listed_at"] = _month_date(body) or _slash_date(body)

        # '<street>, <neighbourhood>, <city> <postcode>' read right to left
        if raw["address_line1"]:
            parts = [p.strip() for p in raw["address_line1"].split(",") if p.strip()]
            parts = [p for p in parts if not _UK_NATIONS.match(p)]
            if parts:
                last = parts[-1]
                m = _UK_OUTWARD.search(last)
                if m:
                    raw["postal_code"] = m.group(1).upper()
                    last = last[: m.start()].strip().rstrip(", ")
                if last:
                    raw["city"] = last
                if len(parts) >= 2:
                    raw["neighborhood"] = parts[-2]

        features = _key_features(soup)
        details = _details_table(soup)

        tenure = _pick_detail(details, "tenure")
        if not tenure:
            m = re.search(r"\b(Share of Freehold|Freehold|Leasehold)\b", " | ".join(features + [body]), re.IGNORECASE)
            tenure = m.group(1) if m else None

        epc = _pick_detail(details, "epc", "energy performance")
        if not epc:
            m = re.search(r"EPC[^A-Za-z0-9]*([A-G][+\-]?)\b", body, re.IGNORECASE)
            epc = m.group(1).upper() if m else None

        council_tax = _pick_detail(details, "council tax", "council-tax")
        m = re.search(r"band\s*([A-H])\b", council_tax or "", re.IGNORECASE) or (
            None if council_tax else re.search(r"council\s*tax\s*band\s*([A-H])\b", body, re.IGNORECASE)
        )
        if m:
            council_tax = m.group(1).upper()

        raw["raw"] = {
            "source": self.name,
            "url": url,
            "features": features,
            "details": details,
            "tenure": tenure,
            "epc_rating": epc,
            "council_tax_band": council_tax,
        }
        return raw
