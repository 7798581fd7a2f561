from fastapi import APIRouter, Depends

from halalscan.api.v1.deps import get_fetcher, get_orchestrator, rate_limit, stage_admission
from halalscan.schemas.schemas import BarcodeLookupRequest, LookupResponse, NameSearchRequest, SearchResponse
from halalscan.services.open_food_facts import OpenFoodFactsClient
from halalscan.services.orchestrator import Admission, VerdictOrchestrator

router = APIRouter()


@router.post("/lookup", response_model=LookupResponse, dependencies=[Depends(rate_limit("fetch-product-data"))])
async def lookup_product(
    payload: BarcodeLookupRequest,
    orchestrator: VerdictOrchestrator = Depends(get_orchestrator),
    admit: Admission = Depends(stage_admission),
):
    """
    Resolve the halal verdict for a barcode.
    """
    result = await orchestrator.lookup(payload.barcode, admit=admit)
    if not result.found:
        return LookupResponse(
            found=False,
            status=result.status.value,
            message="Product not found in Open Food Facts database",
        )
    return LookupResponse(
        found=True,
        status=result.status.value,
        product=result.product,
        verdict=result.verdict,
    )


@router.post("/search", response_model=SearchResponse, dependencies=[Depends(rate_limit("search-products-by-name"))])
async def search_products(
    payload: NameSearchRequest,
    fetcher: OpenFoodFactsClient = Depends(get_fetcher),
):
    """
    Search products by name and return candidates with barcodes.
    """
    products = await fetcher.search_products(payload.product_name, payload.region)
    return SearchResponse(products=products, count=len(products))
