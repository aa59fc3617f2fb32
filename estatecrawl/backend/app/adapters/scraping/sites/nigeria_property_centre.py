# app/adapters/scraping/sites/nigeria_property_centre.py
from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urljoin, urlsplit

from ....domain.errors import ParseError
from ....domain.urls import origin_of, with_params
from .. import html as h
from ..base import PaginatedAdapter, RawListing, ScrapeContext

_LIST_SELECTORS = ", ".join(
    [
        "ul.property-list li a[href]",
        ".property-list .property a[href]",
        'a[title][href*="/for-sale/"]',
        'a[href*="/for-sale/"]',
        'a[href*="/for-rent/"]',
        'a[href*="/property/"]',
    ]
)
_ADDRESS_SELECTORS = (
    ".address",
    ".property-address",
    'span[itemprop="streetAddress"]',
    ".breadcrumb li:nth-last-child(3) a",
)
_ADDRESS_ROW_LABELS = ("address", "location", "street", "estate")


class NigeriaPropertyCentreAdapter(PaginatedAdapter):
    name = "NigeriaPropertyCentre"
    default_base_url = "https://nigeriapropertycentre.com/"

    def seeds(self, ctx: ScrapeContext) -> list[str]:
        origin = origin_of(ctx.source.base_url)
        extra = [u for u in ctx.start_urls if origin_of(u) == origin]
        if extra:
            return extra
        return [
            urljoin(ctx.source.base_url, "/for-sale/"),
            urljoin(ctx.source.base_url, "/for-sale/houses/"),
        ]

    def list_page_url(self, ctx: ScrapeContext, seed: str, page: int) -> str:
        return seed if page == 1 else with_params(seed, {"page": str(page)})

    def extract_listing_urls(self, html: str, page_url: str, origin: str) -> Iterable[str]:
        soup = h.soup_of(html)
        for u in h.same_origin(h.anchors(soup, _LIST_SELECTORS, page_url), origin):
            path = urlsplit(u).path
            if "/for-sale/" not in path and "/for-rent/" not in path:
                continue
            # category pages are shallow: /for-sale/houses/
            if len([s for s in path.split("/") if s]) < 3:
                continue
            yield u

    async def parse_listing(self, ctx: ScrapeContext, html: str, url: str) -> RawListing:
        external_id = self.guess_external_id(url)
        if not external_id:
            raise ParseError(f"no listing id in {url}")

        soup = h.soup_of(html)
        path = urlsplit(url).path
        listing_type = "rent" if re.search(r"/for-rent/", path, re.IGNORECASE) else "buy"

        title = h.pick_text(soup, 'h1.property-title, h1[itemprop="name"], h1.title, h1')

        address_line1 = None
        for sel in _ADDRESS_SELECTORS:
            t = h.pick_text(soup, sel)
            if t and len(t) >= 3:
                address_line1 = t
                break
        if not address_line1:
            for li in soup.select(".property-details li, .details li, .key-details li, .facts li"):
                label = (h.pick_text(li, ".name, .label, .title") or "").lower()
                val = h.pick_text(li, ".value, .text")
                if val and len(val) >= 3 and any(k in label for k in _ADDRESS_ROW_LABELS):
                    address_line1 = val
                    break

        price_text = h.pick_text(soup, '#price, .price, .property-price, [class*="price"]')

        crumbs = h.crumb_texts(soup, '.breadcrumb li, nav.breadcrumb li, [class*="breadcrumb"] li')
        neighborhood, city, state = h.breadcrumb_location(crumbs)

        ld = h.json_ld_facts(soup)
        if not address_line1:
            address_line1 = ld.address_line(neighborhood=neighborhood)

        meta_text = " • ".join(
            li.get_text(" ", strip=True) for li in soup.select(".property-meta li, .facts li, ul.meta li")
        )
        body = h.body_text(soup)

        listed_at = h.attr_of(soup, "time[datetime]", "datetime") or h.pick_text(soup, ".date-posted, .listed-date")

        return {
            "external_id": external_id,
            "url": url,
            "title": title,
            "description": h.meta_content(soup, 'meta[name="description"]'),
            "price": h.first_number(price_text),
            "currency": "NGN",
            "size": h.size_in(meta_text, body),
            "bedrooms": h.bedrooms_in(meta_text, body),
            "bathrooms": h.bathrooms_in(meta_text, body),
            "images": ld.images + h.page_images(soup),
            "address_line1": address_line1,
            "address_line2": None,
            "neighborhood": neighborhood,
            "city": city or ld.locality,
            "state": state or ld.region,
            "postal_code": ld.postal_code,
            "listing_type": listing_type,
            "country": "Nigeria",
            "latitude": ld.latitude,
            "longitude": ld.longitude,
            "listed_at": listed_at,
            "listing_updated_at": ld.date_modified,
            "is_active": True,
            "raw": {"source": self.name, "url": url},
        }
