from typing import Callable

from fastapi import Depends, Request, Response

from halalscan.core.errors import RateLimitExceeded
from halalscan.core.rate_limit import Decision, RateLimiter, get_client_ip, limit_for, rate_limiter
from halalscan.services.ai_classifier import IngredientClassifier
from halalscan.services.certification import CertificationChecker
from halalscan.services.open_food_facts import OpenFoodFactsClient
from halalscan.services.orchestrator import Admission, VerdictOrchestrator


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_orchestrator(request: Request) -> VerdictOrchestrator:
    return request.app.state.orchestrator


def get_fetcher(request: Request) -> OpenFoodFactsClient:
    return request.app.state.fetcher


def get_certification_checker(request: Request) -> CertificationChecker:
    return request.app.state.certification_checker


def get_classifier(request: Request) -> IngredientClassifier:
    return request.app.state.classifier


def rate_limit(endpoint: str) -> Callable[..., Decision]:
    config = limit_for(endpoint)

    def dependency(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> Decision:
        decision = limiter.check_rate_limit(get_client_ip(request), endpoint, config)
        if not decision.allowed:
            raise RateLimitExceeded(endpoint, decision.reset_at)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(decision.reset_at)
        return decision

    return dependency


def stage_admission(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Admission:
    """Charge the certification and AI budgets when a lookup reaches those stages."""
    client_key = get_client_ip(request)

    def admit(stage: str):
        decision = limiter.check_rate_limit(client_key, stage, limit_for(stage))
        if not decision.allowed:
            raise RateLimitExceeded(stage, decision.reset_at)

    return admit
