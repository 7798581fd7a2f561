from fastapi import APIRouter, Depends

from halalscan.api.v1.deps import get_certification_checker, get_classifier, rate_limit
from halalscan.schemas.schemas import CertificationCheckRequest, CertificationOutcome, IngredientAnalysisRequest
from halalscan.services.ai_classifier import IngredientClassifier
from halalscan.services.certification import CertificationChecker

router = APIRouter()


@router.post(
    "/certifications/check",
    response_model=CertificationOutcome,
    dependencies=[Depends(rate_limit("check-halal-certifications"))],
)
async def check_certifications(
    payload: CertificationCheckRequest,
    checker: CertificationChecker = Depends(get_certification_checker),
):
    """
    Check product labels and external halal registries for a certification.
    """
    return await checker.check(
        product_name=payload.product_name,
        barcode=payload.barcode,
        brand=payload.brand,
        labels=payload.labels,
    )


@router.post("/analysis/ingredients", dependencies=[Depends(rate_limit("analyze-ingredients-ai"))])
async def analyze_ingredients(
    payload: IngredientAnalysisRequest,
    classifier: IngredientClassifier = Depends(get_classifier),
):
    analysis = await classifier.analyze(
        payload.ingredients,
        product_name=payload.product_name,
        brand=payload.brand,
        region=payload.region,
    )
    return {
        **analysis.model_dump(mode="json", exclude={"raw_model_output"}),
        "ai_explanation": analysis.raw_model_output,
        "analysis_method": "ai_analysis",
    }
