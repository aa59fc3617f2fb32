import re
from contextlib import aclosing
from urllib.parse import parse_qs, urlsplit

import pytest

from app.adapters.scraping.base import PaginatedAdapter, ScrapeContext, SourceInfo
from app.adapters.scraping.registry import build_registry, default_adapters
from app.adapters.scraping.sites.nigeria_property_centre import NigeriaPropertyCentreAdapter
from app.adapters.scraping.sites.prime_location import PrimeLocationAdapter
from app.adapters.scraping.sites.properstar import ProperstarAdapter
from app.adapters.scraping.sites.zoopla import ZooplaAdapter
from app.domain.errors import ConfigError, ParseError
from conftest import FakeFetcher


def _ctx(adapter, *, fetcher=None, **kw):
    source = SourceInfo(id=1, name=adapter.name, base_url=adapter.default_base_url)
    return ScrapeContext(fetcher=fetcher or FakeFetcher(), source=source, **kw)


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


async def _collect(adapter, ctx, limit=None):
    out = []
    async with aclosing(adapter.discover_listing_urls(ctx)) as stream:
        async for u in stream:
            out.append(u)
            if limit is not None and len(out) >= limit:
                break
    return out


def test_default_registry_and_duplicates():
    assert list(default_adapters()) == ["NigeriaPropertyCentre", "Properstar", "Zoopla", "PrimeLocation"]
    with pytest.raises(ConfigError):
        build_registry([ZooplaAdapter(), ZooplaAdapter()])


# -------------------------
# Paginated discovery cursor
# -------------------------


class PagerAdapter(PaginatedAdapter):
    name = "Pager"
    default_base_url = "https://p.test/"

    def __init__(self, cap=None):
        self.cap = cap

    def page_cap(self):
        return self.cap

    def seeds(self, ctx):
        return ["https://p.test/search"]

    def list_page_url(self, ctx, seed, page):
        return f"{seed}?page={page}"

    def extract_listing_urls(self, html, page_url, origin):
        return re.findall(r"https://p\.test/item/\d+", html)

    async def parse_listing(self, ctx, html, url):
        return {"external_id": self.guess_external_id(url)}


def _pager_pages(n):
    pages = {f"https://p.test/search?page={i}": f'<a href="https://p.test/item/{i}">x</a>' for i in range(1, n + 1)}
    # duplicate on page 1
    pages["https://p.test/search?page=1"] *= 2
    return FakeFetcher(pages, default_html="<p>no results</p>")


async def test_cursor_advances_then_wraps_on_empty_page(state_store):
    adapter = PagerAdapter()
    fetcher = _pager_pages(3)

    first = await _collect(adapter, _ctx(adapter, fetcher=fetcher, max_pages=2, state=state_store))
    assert first == ["https://p.test/item/1", "https://p.test/item/2"]
    assert await state_store.get_cursor("https://p.test/search") == 3

    second = await _collect(adapter, _ctx(adapter, fetcher=fetcher, max_pages=2, state=state_store))
    assert second == ["https://p.test/item/3"]
    # page 4 was empty: start over next time
    assert await state_store.get_cursor("https://p.test/search") == 1


async def test_cursor_wraps_at_page_cap(state_store):
    adapter = PagerAdapter(cap=2)
    fetcher = _pager_pages(5)

    urls = await _collect(adapter, _ctx(adapter, fetcher=fetcher, max_pages=5, state=state_store))

    assert urls == ["https://p.test/item/1", "https://p.test/item/2"]
    assert fetcher.count("https://p.test/search?page=3") == 0
    assert await state_store.get_cursor("https://p.test/search") == 1


async def test_cursor_saved_when_consumer_stops_early(state_store):
    adapter = PagerAdapter()
    fetcher = _pager_pages(5)

    urls = await _collect(adapter, _ctx(adapter, fetcher=fetcher, max_pages=5, state=state_store), limit=1)

    assert urls == ["https://p.test/item/1"]
    assert fetcher.count("https://p.test/search?page=2") == 0
    assert await state_store.get_cursor("https://p.test/search") == 2


async def test_cursor_stays_on_page_left_unfinished(state_store):
    adapter = PagerAdapter()
    fetcher = FakeFetcher(
        {
            "https://p.test/search?page=1": '<a href="https://p.test/item/1">a</a><a href="https://p.test/item/2">b</a>',
            "https://p.test/search?page=2": '<a href="https://p.test/item/3">c</a>',
        },
        default_html="<p>no results</p>",
    )
    ctx = _ctx(adapter, fetcher=fetcher, max_pages=5, state=state_store)

    first = await _collect(adapter, ctx, limit=1)
    assert first == ["https://p.test/item/1"]
    assert await state_store.get_cursor("https://p.test/search") == 1

    # next pass rescans page 1 so item/2 is not lost
    second = await _collect(adapter, ctx, limit=2)
    assert second == ["https://p.test/item/1", "https://p.test/item/2"]
    assert await state_store.get_cursor("https://p.test/search") == 2


async def test_no_state_store_always_starts_at_page_one():
    adapter = PagerAdapter()
    fetcher = _pager_pages(3)

    for _ in range(2):
        urls = await _collect(adapter, _ctx(adapter, fetcher=fetcher, max_pages=1))
        assert urls == ["https://p.test/item/1"]


# -------------------------
# NigeriaPropertyCentre
# -------------------------

NPC_LIST = """
<ul class="property-list">
  <li><a href="/for-sale/flats/lagos/lekki/123-2-bedroom-flat">2 bed</a></li>
  <li><a href="/for-rent/houses/lagos/ikoyi/456-duplex">duplex</a></li>
  <li><a href="/for-sale/houses/">All houses</a></li>
  <li><a href="https://other.test/for-sale/flats/lagos/x/1">elsewhere</a></li>
</ul>
"""

NPC_DETAIL = """
<html><head>
<meta name="description" content="Serviced flat in Chevron">
<script type="application/ld+json">
{"@type": "Residence", "address": {"@type": "PostalAddress", "postalCode": "106104"},
 "geo": {"latitude": "6.44", "longitude": "3.47"}}
</script>
</head><body>
<ul class="breadcrumb"><li>Home</li><li>Lagos</li><li>Lekki</li><li>Chevron</li></ul>
<h1 class="property-title">3 Bedroom Flat</h1>
<span class="price">&#8358; 5,000,000</span>
<div class="address">12 Admiralty Way</div>
<ul class="property-meta"><li>3 beds</li><li>2 baths</li><li>250 sqm</li></ul>
</body></html>
"""


def test_npc_extracts_only_deep_same_origin_listing_links():
    adapter = NigeriaPropertyCentreAdapter()
    origin = "https://nigeriapropertycentre.com"
    urls = list(adapter.extract_listing_urls(NPC_LIST, origin + "/for-sale/", origin))
    assert urls == [
        "https://nigeriapropertycentre.com/for-sale/flats/lagos/lekki/123-2-bedroom-flat",
        "https://nigeriapropertycentre.com/for-rent/houses/lagos/ikoyi/456-duplex",
    ]


def test_npc_seeds_and_page_urls():
    adapter = NigeriaPropertyCentreAdapter()
    ctx = _ctx(adapter, start_urls=["https://other.test/for-sale/"])
    assert adapter.seeds(ctx) == [
        "https://nigeriapropertycentre.com/for-sale/",
        "https://nigeriapropertycentre.com/for-sale/houses/",
    ]
    seed = "https://nigeriapropertycentre.com/for-sale/flats/lagos/"
    assert adapter.list_page_url(ctx, seed, 1) == seed
    assert adapter.list_page_url(ctx, seed, 2) == seed + "?page=2"


async def test_npc_parse_listing():
    adapter = NigeriaPropertyCentreAdapter()
    url = "https://nigeriapropertycentre.com/for-rent/flats/lagos/lekki/987-luxury-flat"
    raw = await adapter.parse_listing(_ctx(adapter), NPC_DETAIL, url)

    assert raw["external_id"] == "987-luxury-flat"
    assert raw["listing_type"] == "rent"
    assert raw["title"] == "3 Bedroom Flat"
    assert raw["price"] == 5_000_000.0
    assert raw["currency"] == "NGN"
    assert (raw["bedrooms"], raw["bathrooms"], raw["size"]) == (3, 2, "250 sqm")
    assert raw["address_line1"] == "12 Admiralty Way"
    assert (raw["neighborhood"], raw["city"], raw["state"]) == ("Chevron", "Lekki", "Lagos")
    assert raw["postal_code"] == "106104"
    assert (raw["latitude"], raw["longitude"]) == (6.44, 3.47)
    assert raw["country"] == "Nigeria"
    assert raw["description"] == "Serviced flat in Chevron"


async def test_npc_parse_without_id_raises():
    adapter = NigeriaPropertyCentreAdapter()
    with pytest.raises(ParseError):
        await adapter.parse_listing(_ctx(adapter), NPC_DETAIL, "https://nigeriapropertycentre.com/")


# -------------------------
# Zoopla
# -------------------------

ZOOPLA_LIST = """
<a href="/for-sale/details/6712345/?search_identifier=abc">flat</a>
<a href="/for-sale/property/london/">more</a>
<script>window.__data = {"next": "https://www.zoopla.co.uk/for-sale/details/6799999"}</script>
<p>see https://evil.test/details/1</p>
"""

ZOOPLA_DETAIL = """
<html><head>
<link rel="canonical" href="https://www.zoopla.co.uk/to-rent/details/6712345/">
<script type="application/ld+json">
{"@type": "Residence", "datePublished": "2024-05-01",
 "address": {"@type": "PostalAddress", "streetAddress": "Camden Road", "addressLocality": "London", "postalCode": "NW1 9LQ"}}
</script>
</head><body>
<h1>2 bed flat to rent</h1>
<p data-testid="price">&#163;1,850 pcm</p>
<p>1 bathroom</p>
</body></html>
"""


def test_zoopla_extracts_details_links():
    adapter = ZooplaAdapter()
    urls = adapter.extract_listing_urls(ZOOPLA_LIST, "https://www.zoopla.co.uk/for-sale/property/", "https://www.zoopla.co.uk")
    assert {adapter.guess_external_id(u) for u in urls} == {"6712345", "6799999"}
    assert all(u.startswith("https://www.zoopla.co.uk/") for u in urls)


def test_zoopla_page_url_keeps_caller_sort():
    adapter = ZooplaAdapter()
    seed = "https://www.zoopla.co.uk/for-sale/property/london/?q=London&results_sort=highest_price"
    assert _query(adapter.list_page_url(_ctx(adapter), seed, 2)) == {
        "q": "London",
        "results_sort": "highest_price",
        "pn": "2",
    }
    assert _query(adapter.list_page_url(_ctx(adapter), "https://www.zoopla.co.uk/for-sale/property/", 1)) == {
        "pn": "1",
        "results_sort": "newest_listings",
    }


async def test_zoopla_parse_listing():
    adapter = ZooplaAdapter()
    raw = await adapter.parse_listing(_ctx(adapter), ZOOPLA_DETAIL, "https://www.zoopla.co.uk/to-rent/details/6712345/")

    assert raw["external_id"] == "6712345"
    assert raw["listing_type"] == "rent"
    assert raw["price"] == 1850.0
    assert raw["currency"] == "GBP"
    assert raw["bedrooms"] == 2
    assert raw["bathrooms"] == 1
    assert raw["address_line1"] == "Camden Road, London"
    assert raw["postal_code"] == "NW1 9LQ"
    assert raw["listed_at"] == "2024-05-01"
    assert raw["url_canonical"] == "https://www.zoopla.co.uk/to-rent/details/6712345/"
    assert raw["country"] == "United Kingdom"


async def test_zoopla_parse_without_id_raises():
    adapter = ZooplaAdapter()
    with pytest.raises(ParseError):
        await adapter.parse_listing(_ctx(adapter), ZOOPLA_DETAIL, "https://www.zoopla.co.uk/for-sale/property/london/")


# -------------------------
# Properstar
# -------------------------

PROPERSTAR_LIST = r"""
<a href="/listing/a1">one</a>
<div>https://www.properstar.co.uk/listing/b2</div>
<script type="application/json">{"results": [{"link": "\/listing\/d4"}]}</script>
<a href="https://other.test/listing/zz">elsewhere</a>
"""

PROPERSTAR_DETAIL = """
<html><body>
<nav class="breadcrumb"><a href="/">Home</a><a href="/nigeria/">Lagos</a><a href="#">Ikoyi</a></nav>
<h1>Penthouse with river view</h1>
<div class="price">&#8358; 120,000,000</div>
<p>4 bedrooms, 5 bathrooms, 420 sqm</p>
<p>Added On: 12 March 2024 | Ref 9</p>
</body></html>
"""


def test_properstar_direct_urls_and_seeds():
    adapter = ProperstarAdapter()
    ctx = _ctx(
        adapter,
        start_urls=[
            "https://www.properstar.co.uk/listing/abc123",
            "https://www.properstar.co.uk/nigeria/lagos/sale",
            "https://other.test/nigeria/sale",
        ],
    )
    assert adapter.direct_listing_urls(ctx) == ["https://www.properstar.co.uk/listing/abc123"]
    assert adapter.seeds(ctx) == ["https://www.properstar.co.uk/nigeria/lagos/sale"]

    defaults = adapter.seeds(_ctx(adapter))
    assert len(defaults) == 4
    assert "https://www.properstar.co.uk/nigeria/sale" in defaults


def test_properstar_mines_anchors_html_and_embedded_json():
    adapter = ProperstarAdapter()
    urls = adapter.extract_listing_urls(PROPERSTAR_LIST, "https://www.properstar.co.uk/nigeria/sale", "https://www.properstar.co.uk")
    assert {adapter.guess_external_id(u) for u in urls} == {"a1", "b2", "d4"}


async def test_properstar_parse_listing():
    adapter = ProperstarAdapter()
    url = "https://www.properstar.co.uk/nigeria/lagos/listing/xyz9"
    raw = await adapter.parse_listing(_ctx(adapter), PROPERSTAR_DETAIL, url)

    assert raw["external_id"] == "xyz9"
    assert raw["currency"] == "NGN"
    assert raw["price"] == 120_000_000.0
    assert raw["country"] == "Nigeria"
    assert (raw["bedrooms"], raw["bathrooms"], raw["size"]) == (4, 5, "420 sqm")
    assert (raw["city"], raw["neighborhood"]) == ("Lagos", "Ikoyi")
    assert raw["listed_at"] == "12 March 2024"
    assert raw["listing_updated_at"] is None


async def test_properstar_parse_without_id_raises():
    adapter = ProperstarAdapter()
    with pytest.raises(ParseError):
        await adapter.parse_listing(_ctx(adapter), PROPERSTAR_DETAIL, "https://www.properstar.co.uk/nigeria/")


# -------------------------
# PrimeLocation
# -------------------------

PRIME_DETAIL = """
<html><head>
<script type="application/ld+json">
{"@type": "SingleFamilyResidence", "propertyType": "Terraced house",
 "address": {"@type": "PostalAddress", "streetAddress": "Elm Street", "addressLocality": "Islington, London N1 2AB"},
 "floorSize": {"@type": "QuantitativeValue", "value": 1076, "unitCode": "FTK"}}
</script>
</head><body>
<h1>3 bed terraced house for sale</h1>
<p data-testid="price">&#163;650,000</p>
<ul class="key-features"><li>Freehold</li><li>Garden</li><li>garden</li></ul>
<dl><dt>EPC rating</dt><dd>C</dd><dt>Council tax</dt><dd>Band E</dd></dl>
<p>Listed on 3rd March 2024</p>
</body></html>
"""


def test_prime_location_rent_seeds_swap_path_and_source():
    adapter = PrimeLocationAdapter()
    ctx = _ctx(
        adapter,
        listing_type="rent",
        start_urls=["https://www.primelocation.com/for-sale/property/london/?search_source=for-sale"],
    )
    (seed,) = adapter.seeds(ctx)
    assert urlsplit(seed).path == "/to-rent/property/london/"
    assert _query(seed) == {"search_source": "to-rent"}

    assert adapter.seeds(_ctx(adapter, listing_type="rent")) == ["https://www.primelocation.com/to-rent/property/"]
    assert adapter.seeds(_ctx(adapter)) == ["https://www.primelocation.com/for-sale/property/"]


def test_prime_location_page_url():
    adapter = PrimeLocationAdapter()
    url = adapter.list_page_url(_ctx(adapter, listing_type="rent"), "https://www.primelocation.com/to-rent/property/london/", 3)
    assert _query(url) == {"pn": "3", "results_sort": "newest_listings", "search_source": "to-rent"}


async def test_prime_location_parse_listing():
    adapter = PrimeLocationAdapter()
    raw = await adapter.parse_listing(_ctx(adapter), PRIME_DETAIL, "https://www.primelocation.com/for-sale/details/55501234/")

    assert raw["external_id"] == "55501234"
    assert raw["price"] == 650_000.0
    assert raw["currency"] == "GBP"
    assert raw["bedrooms"] == 3
    assert raw["size_sqm"] == pytest.approx(99.96, abs=0.01)
    assert "size" not in raw
    assert raw["property_type"] == "Terraced house"
    assert raw["listed_at"] == "2024-03-03"
    assert (raw["postal_code"], raw["city"], raw["neighborhood"]) == ("N1", "London", "Islington")
    assert raw["raw"]["features"] == ["Freehold", "Garden"]
    assert raw["raw"]["tenure"] == "Freehold"
    assert raw["raw"]["epc_rating"] == "C"
    assert raw["raw"]["council_tax_band"] == "E"


async def test_prime_location_parse_without_id_raises():
    adapter = PrimeLocationAdapter()
    with pytest.raises(ParseError):
        await adapter.parse_listing(_ctx(adapter), PRIME_DETAIL, "https://www.primelocation.com/for-sale/property/")
