# app/adapters/scraping/sites/zoopla.py
from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urljoin, urlsplit

from ....config import settings
from ....domain.errors import ParseError
from ....domain.urls import with_params
from .. import html as h
from ..base import PaginatedAdapter, RawListing, ScrapeContext

_DETAILS_ID = re.compile(r"/details/(\d+)", re.IGNORECASE)
_DETAILS_IN_HTML = re.compile(r"(?:https?://[A-Za-z0-9.-]+)?/[A-Za-z0-9\-/]*details/[0-9]+")
_ADDRESS_SELECTORS = '[data-testid="address-label"], address, .property-address'


class ZooplaAdapter(PaginatedAdapter):
    """Search-results pages (pn=1..cap, newest first) -> /details/<id> pages."""

    name = "Zoopla"
    default_base_url = "https://www.zoopla.co.uk/"
    default_country = "United Kingdom"

    def page_cap(self) -> int | None:
        return settings.DISCOVERY_PAGE_CAP

    def seeds(self, ctx: ScrapeContext) -> list[str]:
        if ctx.start_urls:
            return list(ctx.start_urls)
        return [urljoin(ctx.source.base_url, "/for-sale/property/")]

    def list_page_url(self, ctx: ScrapeContext, seed: str, page: int) -> str:
        return with_params(
            seed,
            {"pn": str(page), "results_sort": "newest_listings"},
            keep=("results_sort",),
        )

    def extract_listing_urls(self, html: str, page_url: str, origin: str) -> Iterable[str]:
        soup = h.soup_of(html)
        found = list(h.anchors(soup, 'a[href*="/details/"]', page_url))
        found.extend(h.regex_urls(html, _DETAILS_IN_HTML, page_url))
        return [u for u in h.same_origin(found, origin) if _DETAILS_ID.search(urlsplit(u).path)]

    def guess_external_id(self, url: str) -> str | None:
        m = _DETAILS_ID.search(urlsplit(url).path)
        return m.group(1) if m else None

    async def parse_listing(self, ctx: ScrapeContext, html: str, url: str) -> RawListing:
        external_id = self.guess_external_id(url)
        if not external_id:
            raise ParseError(f"no /details/<id> in {url}")

        soup = h.soup_of(html)
        title = h.pick_text(soup, "h1") or h.meta_content(soup, 'meta[property="og:title"]')

        price_text = (
            h.pick_text(soup, '[data-testid="price"]')
            or h.pick_text(soup, '[itemprop="price"]')
            or h.meta_content(soup, 'meta[property="og:price:amount"]')
        )

        ld = h.json_ld_facts(soup)
        address_line1 = ", ".join(x for x in (ld.street, ld.locality, ld.region) if x) or None
        if not address_line1:
            address_line1 = h.pick_text(soup, _ADDRESS_SELECTORS)

        crumbs = h.crumb_texts(soup, '[class*="crumb"] a, nav.breadcrumb a, .breadcrumbs a')
        neighborhood, city, state = h.breadcrumb_location(crumbs)

        body = h.body_text(soup)
        listing_type = "rent" if "/to-rent/" in urlsplit(url).path.lower() else "buy"

        return {
            "external_id": external_id,
            "url": url,
            "url_canonical": h.attr_of(soup, 'link[rel="canonical"]', "href"),
            "title": title,
            "description": h.meta_content(soup, 'meta[name="description"]'),
            "price": h.first_number(price_text),
            "currency": h.detect_currency(price_text) or "GBP",
            "size": h.size_in(body),
            "bedrooms": h.bedrooms_in(title or "", body),
            "bathrooms": h.bathrooms_in(body),
            "images": ld.images + h.page_images(soup),
            "address_line1": address_line1,
            "address_line2": None,
            "neighborhood": neighborhood,
            "city": city or ld.locality,
            "state": state or ld.region,
            "postal_code": ld.postal_code,
            "listing_type": listing_type,
            "country": self.default_country,
            "latitude": ld.latitude,
            "longitude": ld.longitude,
            "listed_at": ld.date_published,
            "listing_updated_at": ld.date_modified,
            "is_active": True,
            "raw": {"source": self.name, "url": url},
        }
