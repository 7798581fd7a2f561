import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from halalscan.api.v1 import api_v1
from halalscan.core.config import settings
from halalscan.core.errors import (
    AIGatewayError,
    ConfigurationError,
    QuotaExhausted,
    RateLimited,
    RateLimitExceeded,
    UpstreamUnavailable,
    ValidationError,
)
from halalscan.core.side_effects import SideChannel
from halalscan.core.validation import first_error
from halalscan.db.crud import VerdictStore
from halalscan.db.db import SessionLocal, init_models
from halalscan.services.ai_classifier import IngredientClassifier
from halalscan.services.certification import CertificationChecker
from halalscan.services.open_food_facts import OpenFoodFactsClient
from halalscan.services.orchestrator import VerdictOrchestrator

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    side_channel = SideChannel()
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        store = VerdictStore(SessionLocal)
        app.state.fetcher = OpenFoodFactsClient(client, store=store, side_channel=side_channel)
        app.state.certification_checker = CertificationChecker(client)
        app.state.classifier = IngredientClassifier(client)
        app.state.orchestrator = VerdictOrchestrator(
            fetcher=app.state.fetcher,
            store=store,
            certification_checker=app.state.certification_checker,
            classifier=app.state.classifier,
        )
        if not settings.LLM_GATEWAY_KEY:
            logger.warning("LLM_GATEWAY_KEY is not set, AI analysis requests will fail")
        yield
        await side_channel.drain()


app = FastAPI(
    title="HalalScan Verdict API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(api_v1.router, prefix="/api/v1")


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error(400, str(exc), field=exc.field)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return await validation_error_handler(request, first_error(exc.errors()))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    reset_at = datetime.fromtimestamp(exc.reset_at / 1000, tz=timezone.utc).isoformat()
    response = _error(429, "Rate limit exceeded. Please try again later.", resetAt=reset_at)
    response.headers["X-RateLimit-Remaining"] = "0"
    response.headers["X-RateLimit-Reset"] = str(exc.reset_at)
    return response


@app.exception_handler(AIGatewayError)
async def ai_gateway_error_handler(request: Request, exc: AIGatewayError):
    if isinstance(exc, RateLimited):
        return _error(429, "Rate limit exceeded. Please try again later.")
    if isinstance(exc, QuotaExhausted):
        return _error(402, "AI credits exhausted. Please add credits to continue.")
    return _error(502, str(exc))


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    return _error(502, str(exc))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc}")
    return _error(500, str(exc))


@app.get("/")
def health():
    return {"message": "HalalScan Verdict API is running."}
