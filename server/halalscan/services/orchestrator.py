"""
Verdict resolution pipeline.

fetch product -> stored verdict? -> certification fan-out -> ingredients
available? -> AI analysis -> merge -> persist. Steps run strictly in order.
A stored verdict is returned untouched, so a barcode is analysed at most once
as long as its verdict was persisted.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from halalscan.core.errors import GatewayUnreachable, RateLimitExceeded
from halalscan.core.side_effects import best_effort
from halalscan.db.crud import VerdictStore
from halalscan.schemas.schemas import (
    AIAnalysis,
    AIVerdict,
    AnalysisMethod,
    CertificationOutcome,
    ProductRecord,
    RulesAnalysis,
    VerdictRecord,
    VerdictValue,
)
from halalscan.services import rules_engine
from halalscan.services.ai_classifier import IngredientClassifier
from halalscan.services.certification import CertificationChecker
from halalscan.services.open_food_facts import OpenFoodFactsClient

logger = logging.getLogger(__name__)

# raises RateLimitExceeded when the named stage is over budget
Admission = Callable[[str], None]

CERTIFICATION_STAGE = "check-halal-certifications"
AI_STAGE = "analyze-ingredients-ai"

PRODUCT_SOURCE = "open_food_facts"

INSUFFICIENT_DATA_NOTES = (
    "Ingredients data not available in the Open Food Facts database. "
    "Please check the product packaging or contact the manufacturer for ingredient information."
)

AI_TO_VERDICT = {
    AIVerdict.HALAL: VerdictValue.HALAL,
    AIVerdict.NOT_HALAL: VerdictValue.NOT_HALAL,
    AIVerdict.QUESTIONABLE: VerdictValue.UNCLEAR,
}


class PipelineState(str, Enum):
    START = "start"
    FETCHING = "fetching"
    NOT_FOUND = "not_found"
    FETCHED = "fetched"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CERT_CHECKING = "cert_checking"
    INSUFFICIENT_DATA = "insufficient_data"
    AI_ANALYZING = "ai_analyzing"
    MERGING = "merging"
    PERSISTING = "persisting"
    DONE = "done"


STAGE_BUDGETS = {
    PipelineState.CERT_CHECKING: CERTIFICATION_STAGE,
    PipelineState.AI_ANALYZING: AI_STAGE,
}


def charged_stages(trail: List[PipelineState]) -> List[str]:
    return [STAGE_BUDGETS[state] for state in trail if state in STAGE_BUDGETS]


class LookupStatus(str, Enum):
    NOT_FOUND = "not_found"
    CACHED = "cached"
    COMPUTED = "computed"


@dataclass
class LookupResult:
    status: LookupStatus
    product: Optional[ProductRecord] = None
    verdict: Optional[VerdictRecord] = None
    trail: List[PipelineState] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status != LookupStatus.NOT_FOUND


def resolve_verdict(
    product: ProductRecord,
    certification: CertificationOutcome,
    analysis: Optional[AIAnalysis] = None,
) -> VerdictRecord:
    """Merge evidence: certification, then AI, then insufficient data, then rules."""
    if certification.is_certified:
        return VerdictRecord(
            barcode=product.barcode,
            verdict=VerdictValue.HALAL,
            confidence_score=certification.confidence_score,
            analysis_notes=(
                f"Product is certified halal by {certification.cert_body} "
                f"in {certification.cert_country or 'the region'}."
            ),
            flagged_ingredients=None,
            is_certified=True,
            cert_body=certification.cert_body,
            cert_country=certification.cert_country,
            cert_link=certification.cert_link,
            analysis_method=AnalysisMethod.CERTIFICATION_VERIFIED,
            external_source=certification.external_source or PRODUCT_SOURCE,
            check_details=certification.check_details,
        )

    if analysis is not None and not isinstance(analysis, RulesAnalysis):
        method = AnalysisMethod.AI_ANALYSIS
    elif not product.has_ingredients:
        return VerdictRecord(
            barcode=product.barcode,
            verdict=VerdictValue.UNCLEAR,
            confidence_score=0,
            analysis_notes=INSUFFICIENT_DATA_NOTES,
            flagged_ingredients=None,
            is_certified=False,
            analysis_method=AnalysisMethod.INSUFFICIENT_DATA,
            external_source=PRODUCT_SOURCE,
            check_details=certification.check_details,
        )
    else:
        method = AnalysisMethod.RULES_ENGINE
        if analysis is None:
            analysis = rules_engine.evaluate(product.ingredients_list or product.ingredients_text)

    return VerdictRecord(
        barcode=product.barcode,
        verdict=AI_TO_VERDICT[analysis.verdict],
        confidence_score=analysis.confidence_score,
        analysis_notes=analysis.analysis_notes or "Automated analysis",
        flagged_ingredients=list(analysis.flagged_ingredients),
        is_certified=False,
        analysis_method=method,
        external_source=PRODUCT_SOURCE,
        ai_explanation=analysis.raw_model_output or None,
        check_details=certification.check_details,
    )


class VerdictOrchestrator:
    def __init__(
        self,
        fetcher: OpenFoodFactsClient,
        store: VerdictStore,
        certification_checker: CertificationChecker,
        classifier: Optional[IngredientClassifier] = None,
    ):
        self._fetcher = fetcher
        self._store = store
        self._checker = certification_checker
        self._classifier = classifier
        self._in_flight: Dict[str, "asyncio.Future[LookupResult]"] = {}

    async def lookup(self, barcode: str, admit: Optional[Admission] = None) -> LookupResult:
        """
        Resolve the verdict for ``barcode``.

        Concurrent lookups of one barcode share a single pipeline run. The run
        is admitted on the budget of the caller that started it; every caller
        that joins is charged on its own budget for the stages the run went
        through, and a run refused on someone else's budget is retried.
        """
        admit = admit or _admit_all
        task = self._in_flight.get(barcode)
        if task is None or task.done():
            task = asyncio.ensure_future(self._resolve(barcode, admit))
            self._in_flight[barcode] = task
            task.add_done_callback(lambda done, key=barcode: self._forget(key, done))
            return await asyncio.shield(task)

        logger.info(f"Joining in-flight lookup for {barcode}")
        try:
            result = await asyncio.shield(task)
        except RateLimitExceeded:
            logger.info(f"Shared lookup for {barcode} was refused, retrying on the caller's budget")
            return await self.lookup(barcode, admit)

        for stage in charged_stages(result.trail):
            admit(stage)
        return result

    def _forget(self, barcode: str, task: "asyncio.Future[LookupResult]"):
        if self._in_flight.get(barcode) is task:
            del self._in_flight[barcode]

    async def _resolve(self, barcode: str, admit: Admission) -> LookupResult:
        trail = [PipelineState.START, PipelineState.FETCHING]

        lookup = await self._fetcher.fetch_product(barcode)
        if not lookup.found:
            trail.append(PipelineState.NOT_FOUND)
            return LookupResult(status=LookupStatus.NOT_FOUND, trail=trail)
        product = lookup.product
        trail.extend([PipelineState.FETCHED, PipelineState.CACHE_CHECK])

        cached = await best_effort(f"Reading stored verdict for {barcode}", self._store.get_verdict(barcode))
        if cached.ok and cached.value is not None:
            trail.extend([PipelineState.CACHE_HIT, PipelineState.DONE])
            return LookupResult(status=LookupStatus.CACHED, product=product, verdict=cached.value, trail=trail)

        admit(CERTIFICATION_STAGE)
        trail.append(PipelineState.CERT_CHECKING)
        certification = await self._checker.check(
            product_name=product.name,
            barcode=barcode,
            brand=product.brand,
            labels=product.labels,
        )

        analysis = None
        if not certification.is_certified:
            if product.has_ingredients:
                admit(AI_STAGE)
                trail.append(PipelineState.AI_ANALYZING)
                analysis = await self._analyze(product)
                trail.append(PipelineState.MERGING)
            else:
                logger.info(f"No ingredient data for {barcode}, skipping AI analysis")
                trail.append(PipelineState.INSUFFICIENT_DATA)

        verdict = resolve_verdict(product, certification, analysis)

        trail.append(PipelineState.PERSISTING)
        verdict = await self._persist(verdict)
        trail.append(PipelineState.DONE)
        return LookupResult(status=LookupStatus.COMPUTED, product=product, verdict=verdict, trail=trail)

    async def _analyze(self, product: ProductRecord) -> AIAnalysis:
        ingredients = product.ingredients_list or product.ingredients_text
        if self._classifier is None:
            return rules_engine.evaluate(ingredients)
        try:
            return await self._classifier.analyze(
                ingredients,
                product_name=product.name,
                brand=product.brand,
                region=product.region,
            )
        except GatewayUnreachable as e:
            logger.warning(f"AI gateway unreachable for {product.barcode}, using rules engine: {e}")
            return rules_engine.evaluate(ingredients)

    async def _persist(self, verdict: VerdictRecord) -> VerdictRecord:
        result = await best_effort(
            f"Persisting verdict for {verdict.barcode}",
            self._store.insert_verdict_if_absent(verdict),
        )
        # the computed verdict still answers this request when the write fails
        return result.value if result.ok else verdict


def _admit_all(stage: str):
    return None
