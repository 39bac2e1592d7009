"""Error taxonomy of the prediction market engine.

Engine functions raise these and never return sentinel values for
failures. Each class carries the HTTP status the API maps it to, so the
single handler in main.py needs no per-class branching:

    MarketValidationError     422  bad confidence / points / ids / source
    NotFoundError             404  poll, option or user missing
    PollInactiveError         409  poll closed or resolved
    PollExpiredError          409  poll past its expiry time
    AlreadyResolvedError      409  second resolution attempt
    InsufficientBalanceError  402  stake above the user's reputation
"""

from __future__ import annotations

from pollmarket.common.logging import redact


class PollMarketError(Exception):
    """Base exception for all prediction market errors.

    Args:
        message: Human-readable error description, safe to return to callers.
        context: Optional structured data for logs. Never sent to clients.
    """

    status_code: int = 400

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={redact(self.context)}"
        return self.message

    def to_body(self) -> dict[str, str]:
        """The JSON error body returned by the API."""
        return {"error": type(self).__name__, "message": self.message}


class MarketValidationError(PollMarketError):
    status_code = 422


class NotFoundError(PollMarketError):
    status_code = 404


class PollInactiveError(PollMarketError):
    status_code = 409


class PollExpiredError(PollMarketError):
    status_code = 409


class AlreadyResolvedError(PollMarketError):
    """Resolution was attempted on a poll that is already resolved.

    Callers must treat this as a conflict and never re-apply payouts.
    """

    status_code = 409


class InsufficientBalanceError(PollMarketError):
    status_code = 402
