import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request

from halalscan.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 30
    window_ms: int = 60000


@dataclass(frozen=True)
class Decision:
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds


@dataclass
class _Window:
    count: int
    reset_at: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Fixed-window request counter keyed by ``client:endpoint``.

    State lives in process memory, so counters reset on restart and are not
    shared between workers. Expired windows are swept lazily once every
    ``sweep_interval_ms``.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], int]] = None,
        sweep_interval_ms: int = 5 * 60 * 1000,
    ):
        self._clock = clock or _now_ms
        self._sweep_interval_ms = sweep_interval_ms
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_sweep_at = self._clock() + sweep_interval_ms

    def check(self, key: str, config: RateLimitConfig) -> Decision:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep_at:
                self._sweep(now)

            window = self._windows.get(key)
            if window is None or window.reset_at < now:
                reset_at = now + config.window_ms
                self._windows[key] = _Window(count=1, reset_at=reset_at)
                return Decision(allowed=True, remaining=config.max_requests - 1, reset_at=reset_at)

            if window.count >= config.max_requests:
                return Decision(allowed=False, remaining=0, reset_at=window.reset_at)

            window.count += 1
            return Decision(
                allowed=True,
                remaining=config.max_requests - window.count,
                reset_at=window.reset_at,
            )

    def check_rate_limit(self, client_key: str, endpoint: str, config: RateLimitConfig) -> Decision:
        return self.check(f"{client_key}:{endpoint}", config)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: int) -> int:
        expired = [key for key, window in self._windows.items() if window.reset_at < now]
        for key in expired:
            del self._windows[key]
        self._next_sweep_at = now + self._sweep_interval_ms
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit windows")
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


def get_client_ip(request: Request) -> str:
    headers = request.headers
    cf_ip = headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# endpoint name -> per-minute request budget
ENDPOINT_LIMITS: Dict[str, int] = {
    "fetch-product-data": settings.RATE_LIMIT_PRODUCT_FETCH,
    "check-halal-certifications": settings.RATE_LIMIT_CERTIFICATION_CHECK,
    "analyze-ingredients-ai": settings.RATE_LIMIT_AI_ANALYSIS,
    "search-products-by-name": settings.RATE_LIMIT_NAME_SEARCH,
}


def limit_for(endpoint: str) -> RateLimitConfig:
    return RateLimitConfig(
        max_requests=ENDPOINT_LIMITS.get(endpoint, 30),
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
    )


rate_limiter = RateLimiter(sweep_interval_ms=settings.RATE_LIMIT_SWEEP_INTERVAL_MS)
