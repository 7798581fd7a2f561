from fastapi import APIRouter

from halalscan.api.v1 import analysis, products

router = APIRouter()

router.include_router(products.router, prefix="/products", tags=["products"])
router.include_router(analysis.router, tags=["analysis"])
