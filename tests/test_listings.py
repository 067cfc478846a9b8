import json

import httpx
import pytest

from estate_advisor.config import BASE_DIR
from estate_advisor.listings import (
    JsonListingSource,
    ListingCatalog,
    ListingSourceError,
    ListingType,
    SearchCriteria,
    SupabaseListingSource,
    listing_from_record,
    parse_price,
)


def test_spanish_and_english_records_normalize_alike():
    spanish = listing_from_record(
        {"id": 1, "titulo": "Casa", "ubicacion": "Escobedo", "precio": "$4,750,000", "tipopropiedad": "casa"}
    )
    english = listing_from_record({"id": "1", "title": "Casa", "location": "Escobedo", "price": 4750000, "type": "house"})
    assert spanish.id == english.id == "1"
    assert spanish.price == english.price == 4_750_000
    assert spanish.type == english.type == ListingType.HOUSE


def test_parse_price_variants():
    assert parse_price("$1,800,000.00 MXN") == 1_800_000
    assert parse_price(3_700_000.0) == 3_700_000
    assert parse_price(None) == 0
    assert parse_price("consultar") == 0


@pytest.mark.asyncio
async def test_bundled_inventory_loads():
    source = JsonListingSource(BASE_DIR / "data" / "listings.json")
    listings = await source.fetch_active_listings()
    assert len(listings) == 7
    assert {listing.type for listing in listings} >= {ListingType.HOUSE, ListingType.APARTMENT, ListingType.LAND}
    assert await source.fetch_instructions()


@pytest.mark.asyncio
async def test_json_source_skips_inactive_and_reports_bad_files(tmp_path):
    path = tmp_path / "listings.json"
    path.write_text(
        json.dumps({"items": [{"id": 1, "title": "A", "activa": False}, {"id": 2, "title": "B"}]}),
        encoding="utf-8",
    )
    listings = await JsonListingSource(path).fetch_active_listings()
    assert [listing.id for listing in listings] == ["2"]

    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ListingSourceError):
        await JsonListingSource(path).fetch_active_listings()


class FlakySource:
    def __init__(self, listings):
        self.listings = listings
        self.fail = False

    async def fetch_active_listings(self):
        if self.fail:
            raise ListingSourceError("down")
        return list(self.listings)

    async def search_listings(self, criteria):
        raise ListingSourceError("down")

    async def fetch_instructions(self):
        raise ListingSourceError("down")


@pytest.mark.asyncio
async def test_catalog_falls_back_to_last_good_snapshot(sample_listings):
    source = FlakySource(sample_listings)
    catalog = ListingCatalog(source)
    assert len(await catalog.fetch_active_listings()) == 4

    source.fail = True
    assert len(await catalog.fetch_active_listings()) == 4
    cheap = await catalog.search_listings(SearchCriteria(max_price=1_000_000))
    assert [listing.id for listing in cheap] == ["4"]
    assert await catalog.fetch_instructions() == []


@pytest.mark.asyncio
async def test_catalog_without_any_success_returns_empty():
    source = FlakySource([])
    source.fail = True
    assert await ListingCatalog(source).fetch_active_listings() == []


@pytest.mark.asyncio
async def test_supabase_search_pushes_filters_down():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": 9, "titulo": "Casa", "precio": 1500000, "tipopropiedad": "casa"}])

    source = SupabaseListingSource("https://db.example", "key", transport=httpx.MockTransport(handler))
    results = await source.search_listings(SearchCriteria(property_type=ListingType.HOUSE, max_price=2_000_000))

    assert [listing.id for listing in results] == ["9"]
    params = seen[0].url.params
    assert seen[0].url.path == "/rest/v1/propiedades"
    assert params["activa"] == "eq.true"
    assert params["tipopropiedad"] == "eq.casa"
    assert params["precio"] == "lte.2000000"
    assert seen[0].headers["apikey"] == "key"


@pytest.mark.asyncio
async def test_supabase_http_error_raises_source_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"message": "down"}))
    source = SupabaseListingSource("https://db.example", "key", transport=transport)
    with pytest.raises(ListingSourceError):
        await source.fetch_active_listings()
