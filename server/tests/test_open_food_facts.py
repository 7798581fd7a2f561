"""
Tests for the Open Food Facts product fetcher.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from halalscan.core.errors import UpstreamUnavailable
from halalscan.core.side_effects import SideChannel
from halalscan.services.open_food_facts import OpenFoodFactsClient, to_product_record

BARCODE = "5000159407236"


def product_response(product):
    return httpx.Response(200, json={"code": BARCODE, "status": 1, "product": product})


class TestProductMapping:
    def test_full_product(self, off_product):
        record = to_product_record(BARCODE, off_product())

        assert record.barcode == BARCODE
        assert record.name == "Chocolate Wafer"
        assert record.brand == "Crunchy Co"
        assert record.ingredients_list == ["sugar", "wheat flour", "cocoa butter", "en:emulsifier"]
        assert record.region == "united-kingdom"
        assert record.labels == ["en:vegetarian"]
        assert record.allergens == ["en:gluten"]
        assert record.has_ingredients is True

    def test_name_fallbacks(self, off_product):
        assert to_product_record(BARCODE, off_product(product_name="", product_name_en="Wafer EN")).name == "Wafer EN"
        assert to_product_record(BARCODE, off_product(product_name=None, generic_name="Wafer")).name == "Wafer"
        assert to_product_record(BARCODE, {}).name == "Unknown Product"

    def test_sparse_product(self):
        record = to_product_record(BARCODE, {"product_name": "Water"})

        assert record.brand == "Unknown Brand"
        assert record.ingredients_text == ""
        assert record.ingredients_list == []
        assert record.region == "global"
        assert record.labels == []
        assert record.has_ingredients is False

    def test_raw_source_not_serialized(self, off_product):
        record = to_product_record(BARCODE, off_product())
        assert "raw_source" not in record.model_dump()
        assert record.raw_source["brands"] == "Crunchy Co"

    def test_record_is_frozen(self, off_product):
        record = to_product_record(BARCODE, off_product())
        with pytest.raises(PydanticValidationError):
            record.name = "Renamed"


class TestFetchProduct:
    @pytest.mark.asyncio
    async def test_found(self, mock_client, off_product):
        seen = []

        def handler(request):
            seen.append(request)
            return product_response(off_product())

        fetcher = OpenFoodFactsClient(mock_client(handler), base_url="https://off.test/")
        lookup = await fetcher.fetch_product(BARCODE)

        assert lookup.found is True
        assert lookup.product.name == "Chocolate Wafer"
        assert str(seen[0].url) == f"https://off.test/api/v2/product/{BARCODE}.json"

    @pytest.mark.asyncio
    async def test_unknown_barcode_is_not_found(self, mock_client):
        def handler(request):
            return httpx.Response(404, json={"code": BARCODE, "status": 0, "status_verbose": "product not found"})

        lookup = await OpenFoodFactsClient(mock_client(handler)).fetch_product(BARCODE)
        assert lookup.found is False
        assert lookup.product is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self, mock_client):
        fetcher = OpenFoodFactsClient(mock_client(lambda r: httpx.Response(500, text="oops")))
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await fetcher.fetch_product(BARCODE)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self, mock_client):
        def handler(request):
            raise httpx.ConnectError("dns failure", request=request)

        with pytest.raises(UpstreamUnavailable):
            await OpenFoodFactsClient(mock_client(handler)).fetch_product(BARCODE)

    @pytest.mark.asyncio
    async def test_product_cached_in_background(self, mock_client, off_product, store, cached_product):
        side_channel = SideChannel()
        fetcher = OpenFoodFactsClient(
            mock_client(lambda r: product_response(off_product())),
            store=store,
            side_channel=side_channel,
        )
        await fetcher.fetch_product(BARCODE)
        await side_channel.drain()

        cached = await cached_product(BARCODE)
        assert cached["product_name"] == "Chocolate Wafer"

    @pytest.mark.asyncio
    async def test_cache_failure_does_not_fail_fetch(self, mock_client, off_product):
        store = MagicMock()
        store.upsert_product_cache = AsyncMock(side_effect=RuntimeError("database is locked"))
        side_channel = SideChannel()
        fetcher = OpenFoodFactsClient(
            mock_client(lambda r: product_response(off_product())),
            store=store,
            side_channel=side_channel,
        )

        lookup = await fetcher.fetch_product(BARCODE)
        await side_channel.drain()

        assert lookup.found is True
        store.upsert_product_cache.assert_awaited_once()


class TestSearchProducts:
    @pytest.mark.asyncio
    async def test_regional_search(self, mock_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"products": [
                {"code": "3017620422003", "product_name": "Nutella", "brands": "Ferrero", "ingredients_text": "sugar"},
                {"product_name": "No barcode"},
                {"code": "12345678"},
            ]})

        results = await OpenFoodFactsClient(mock_client(handler)).search_products("Nutella", "fr")

        assert seen[0].url.host == "fr.openfoodfacts.org"
        assert seen[0].url.params["search_terms"] == "Nutella"
        assert [r.barcode for r in results] == ["3017620422003", "12345678"]
        assert results[0].has_ingredients is True
        assert results[1].name == "Unknown Product"
        assert results[1].brand == "Unknown Brand"

    @pytest.mark.asyncio
    async def test_world_search(self, mock_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"products": []})

        assert await OpenFoodFactsClient(mock_client(handler)).search_products("Nutella") == []
        assert seen[0].url.host == "world.openfoodfacts.org"

    @pytest.mark.asyncio
    async def test_search_failure(self, mock_client):
        fetcher = OpenFoodFactsClient(mock_client(lambda r: httpx.Response(503)))
        with pytest.raises(UpstreamUnavailable):
            await fetcher.search_products("Nutella")
