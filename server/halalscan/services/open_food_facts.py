import logging
from typing import Any, Dict, List, Optional

import httpx

from halalscan.core.config import settings
from halalscan.core.errors import UpstreamUnavailable
from halalscan.core.side_effects import SideChannel
from halalscan.db.crud import VerdictStore
from halalscan.schemas.schemas import ProductLookup, ProductRecord, ProductSummary

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "code,product_name,brands,image_url,ingredients_text"


def _first(*values: Any) -> Optional[Any]:
    for value in values:
        if value:
            return value
    return None


def to_product_record(barcode: str, product: Dict[str, Any]) -> ProductRecord:
    ingredients_list = []
    for ingredient in product.get("ingredients") or []:
        if isinstance(ingredient, dict):
            text = _first(ingredient.get("text"), ingredient.get("id"))
            if text:
                ingredients_list.append(str(text).strip())

    countries = product.get("countries_tags") or []
    region = countries[0].replace("en:", "") if countries else "global"

    return ProductRecord(
        barcode=barcode,
        name=_first(product.get("product_name"), product.get("product_name_en"), product.get("generic_name")) or "Unknown Product",
        brand=_first(product.get("brands")) or "Unknown Brand",
        ingredients_text=_first(product.get("ingredients_text"), product.get("ingredients_text_en")) or "",
        ingredients_list=[i for i in ingredients_list if i],
        image_url=_first(product.get("image_url"), product.get("image_front_url")),
        region=region or "global",
        labels=list(product.get("labels_tags") or []),
        categories=list(product.get("categories_tags") or []),
        allergens=list(product.get("allergens_tags") or []),
        raw_source=product,
    )


class OpenFoodFactsClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        store: Optional[VerdictStore] = None,
        side_channel: Optional[SideChannel] = None,
        base_url: str = settings.OPEN_FOOD_FACTS_URL,
    ):
        self._client = client
        self._store = store
        self._side_channel = side_channel or SideChannel()
        self._base_url = base_url.rstrip("/")

    async def fetch_product(self, barcode: str) -> ProductLookup:
        logger.info(f"Fetching product data for barcode: {barcode}")
        url = f"{self._base_url}/api/v2/product/{barcode}.json"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Open Food Facts request failed: {e}") from e

        data = _json_or_none(response)
        # v2 answers unknown barcodes with 404 and status 0 in the body
        if data is not None and data.get("status") == 0:
            logger.info(f"Product not found for barcode: {barcode}")
            return ProductLookup(found=False)

        if not response.is_success or data is None:
            logger.error(f"Open Food Facts API error: {response.status_code}")
            raise UpstreamUnavailable(
                f"Open Food Facts returned {response.status_code}",
                status_code=response.status_code,
            )

        product = data.get("product") or {}
        record = to_product_record(barcode, product)
        logger.info(f"Successfully fetched product: {record.name}")

        if self._store is not None:
            self._side_channel.submit(
                f"Caching product {barcode}",
                self._store.upsert_product_cache(barcode, product),
            )
        return ProductLookup(found=True, product=record)

    async def search_products(self, product_name: str, region: str = "world") -> List[ProductSummary]:
        subdomain = "world" if region in ("world", "global") else region
        logger.info(f"Searching for product: {product_name} in region: {subdomain}")
        params = {
            "search_terms": product_name,
            "search_simple": "1",
            "action": "process",
            "json": "1",
            "page_size": "10",
            "fields": SEARCH_FIELDS,
        }
        try:
            response = await self._client.get(f"https://{subdomain}.openfoodfacts.org/cgi/search.pl", params=params)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Open Food Facts search failed: {e}") from e

        if not response.is_success:
            logger.error(f"Open Food Facts search error: {response.status_code}")
            raise UpstreamUnavailable("Failed to search products", status_code=response.status_code)

        data = _json_or_none(response) or {}
        results = []
        for item in data.get("products") or []:
            code = item.get("code")
            if not code:
                continue
            results.append(ProductSummary(
                barcode=str(code),
                name=item.get("product_name") or "Unknown Product",
                brand=item.get("brands") or "Unknown Brand",
                image_url=item.get("image_url"),
                has_ingredients=bool(item.get("ingredients_text")),
            ))
        logger.info(f"Search results count: {len(results)}")
        return results


def _json_or_none(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
