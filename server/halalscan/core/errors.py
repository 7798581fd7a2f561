from typing import Optional


class HalalScanError(Exception):
    """Base error for the verdict pipeline."""


class ValidationError(HalalScanError):
    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Validation error for {field}: {reason}")


class RateLimitExceeded(HalalScanError):
    def __init__(self, endpoint: str, reset_at: int):
        self.endpoint = endpoint
        self.reset_at = reset_at
        super().__init__(f"Rate limit exceeded for {endpoint}")


class ConfigurationError(HalalScanError):
    pass


class UpstreamUnavailable(HalalScanError):
    """The product database could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AIGatewayError(HalalScanError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimited(AIGatewayError):
    pass


class QuotaExhausted(AIGatewayError):
    pass


class UpstreamError(AIGatewayError):
    pass


class GatewayUnreachable(AIGatewayError):
    """The language-model gateway could not be contacted at all."""
