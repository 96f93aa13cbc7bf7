"""
Error Taxonomy
==============
Domain errors raised by the insights pipeline.

Each error carries the HTTP status it maps to and a generic client-facing
detail. Internal context belongs in logs, never in ``detail``.
"""


class InsightsError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class UnauthorizedError(InsightsError):
    """Missing, malformed, unknown or inactive credential."""

    status_code = 401
    detail = "Unauthorized"


class RateLimitExceededError(InsightsError):
    """Daily call allowance used up."""

    status_code = 429
    detail = "Daily API call limit reached"

    def __init__(self, limit: int, retry_after: int, detail: str | None = None):
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(detail)


class BadRequestError(InsightsError):
    """Query parameters failed validation."""

    status_code = 400
    detail = "Invalid query parameters"


class InternalError(InsightsError):
    """Observation store or ledger failure."""

    status_code = 500
    detail = "Failed to compute insights"
