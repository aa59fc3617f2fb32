# app/adapters/scraping/sites/properstar.py
from __future__ import annotations

import json
import re
from typing import Any, Iterable
from urllib.parse import urljoin, urlsplit

from ....domain.errors import ParseError
from ....domain.urls import absolute_url, origin_of, with_params
from .. import html as h
from ..base import PaginatedAdapter, RawListing, ScrapeContext

_LISTING_PATH = re.compile(r"/listing/([A-Za-z0-9_-]+)", re.IGNORECASE)
_LISTING_IN_HTML = re.compile(r"(?:https?://[A-Za-z0-9.-]+)?/listing/[A-Za-z0-9_-]+")
_DATE_LABEL = re.compile(r"(?:Added\s*On|Published\s*On|Listed\s*On)\s*:?\s*([^|]{6,30})", re.IGNORECASE)
_UPDATED_LABEL = re.compile(r"(?:Last\s*Updated|Updated\s*On)\s*:?\s*([^|]{6,30})", re.IGNORECASE)

_COUNTRY_BY_PATH = (("/united-kingdom/", "United Kingdom"), ("/nigeria/", "Nigeria"))


def _is_listing(url: str) -> bool:
    return bool(_LISTING_PATH.search(urlsplit(url).path))


def _json_strings(node: Any) -> Iterable[str]:
    if isinstance(node, str):
        yield node
    elif isinstance(node, list):
        for x in node:
            yield from _json_strings(x)
    elif isinstance(node, dict):
        for x in node.values():
            yield from _json_strings(x)


class ProperstarAdapter(PaginatedAdapter):
    """
    Properstar renders most listing links client-side, so index pages are mined
    three ways: anchors, raw-HTML regex, and JSON embedded in <script> tags.
    """

    name = "Properstar"
    default_base_url = "https://www.properstar.co.uk/"
    polite_delay_ms = (250, 400)

    def _extra_seeds(self, ctx: ScrapeContext) -> list[str]:
        origin = origin_of(ctx.source.base_url)
        return [u for u in ctx.start_urls if origin_of(u) == origin]

    def direct_listing_urls(self, ctx: ScrapeContext) -> list[str]:
        return [u for u in self._extra_seeds(ctx) if _is_listing(u)]

    def seeds(self, ctx: ScrapeContext) -> list[str]:
        extra = [u for u in self._extra_seeds(ctx) if not _is_listing(u)]
        if ctx.start_urls:
            return extra
        base = ctx.source.base_url
        return [
            urljoin(base, "/united-kingdom/sale"),
            urljoin(base, "/nigeria/sale"),
            urljoin(base, "/united-kingdom/"),
            urljoin(base, "/nigeria/"),
        ]

    def list_page_url(self, ctx: ScrapeContext, seed: str, page: int) -> str:
        return seed if page == 1 else with_params(seed, {"page": str(page)})

    def extract_listing_urls(self, html: str, page_url: str, origin: str) -> Iterable[str]:
        soup = h.soup_of(html)
        found = list(h.anchors(soup, 'a[href*="/listing/"]', page_url))
        found.extend(h.regex_urls(html, _LISTING_IN_HTML, page_url))

        for script in soup.select("script"):
            txt = script.string or ""
            if len(txt) < 10:
                continue
            try:
                data = json.loads(txt)
            except ValueError:
                continue
            for s in _json_strings(data):
                if _LISTING_PATH.search(s):
                    u = absolute_url(s, page_url)
                    if u:
                        found.append(u)

        return [u for u in h.same_origin(found, origin) if _is_listing(u)]

    def guess_external_id(self, url: str) -> str | None:
        m = _LISTING_PATH.search(urlsplit(url).path)
        return m.group(1) if m else None

    async def parse_listing(self, ctx: ScrapeContext, html: str, url: str) -> RawListing:
        external_id = self.guess_external_id(url)
        if not external_id:
            raise ParseError(f"no /listing/<id> in {url}")

        soup = h.soup_of(html)
        title = h.pick_text(soup, "h1")

        price_text = (
            h.pick_text(soup, '[itemprop="price"], .price, .listing-price, [class*="price"]')
            or h.pick_text(soup, '[data-testid="price"]')
        )
        currency = h.detect_currency(price_text) or "GBP"

        crumbs = h.crumb_texts(soup, '[class*="crumb"] a, nav.breadcrumb a, .breadcrumbs a')
        neighborhood, city, state = h.breadcrumb_location(crumbs)

        path = urlsplit(url).path.lower()
        country = next((c for p, c in _COUNTRY_BY_PATH if p in path), "United Kingdom")

        address_line1 = None
        street = h.pick_text(soup, '[itemprop="streetAddress"], .address, .listing-address, [data-testid="street-address"]')
        if street:
            address_line1 = ", ".join(x for x in (street, neighborhood, city, state) if x)

        ld = h.json_ld_facts(soup)
        if not address_line1:
            address_line1 = ld.address_line(neighborhood=neighborhood)

        body = h.body_text(soup)

        listed_at = (
            ld.date_published
            or h.meta_content(soup, 'meta[itemprop="datePublished"]', 'meta[property="article:published_time"]')
            or h.attr_of(soup, 'time[itemprop="datePublished"]', "datetime")
            or h.attr_of(soup, "time[datetime]", "datetime")
        )
        if not listed_at:
            m = _DATE_LABEL.search(body)
            listed_at = m.group(1).strip() if m else None

        updated_at = (
            ld.date_modified
            or h.meta_content(soup, 'meta[itemprop="dateModified"]', 'meta[property="article:modified_time"]')
            or h.attr_of(soup, 'time[itemprop="dateModified"]', "datetime")
        )
        if not updated_at:
            m = _UPDATED_LABEL.search(body)
            updated_at = m.group(1).strip() if m else None

        return {
            "external_id": external_id,
            "url": url,
            "title": title,
            "description": h.meta_content(soup, 'meta[name="description"]'),
            "price": h.first_number(price_text),
            "currency": currency,
            "size": h.size_in(body),
            "bedrooms": h.bedrooms_in(body),
            "bathrooms": h.bathrooms_in(body),
            "images": ld.images + h.page_images(soup),
            "address_line1": address_line1,
            "address_line2": None,
            "neighborhood": neighborhood,
            "city": city or ld.locality,
            "state": state or ld.region,
            "postal_code": ld.postal_code,
            "country": country,
            "latitude": ld.latitude,
            "longitude": ld.longitude,
            "listed_at": listed_at,
            "listing_updated_at": updated_at,
            "is_active": True,
            "raw": {"source": self.name, "url": url},
        }
