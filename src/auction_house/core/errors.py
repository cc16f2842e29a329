"""Error taxonomy shared by services and the HTTP layer.

Each error carries a machine ``code`` and the HTTP ``status_code`` the API
answers with. Services raise these; routes and the global exception handler
turn them into ``{"detail": {"code", "message", ...}}`` responses.
"""

from datetime import datetime
from enum import Enum
from typing import Any


class AuctionError(Exception):
    """Base class for every expected failure in the auction engine."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.details.items():
            detail[key] = value.isoformat() if isinstance(value, datetime) else value
        return detail


class ValidationError(AuctionError):
    """Raised when input is malformed or out of range. Never retried."""

    code = "validation"
    status_code = 400


class NotFoundError(AuctionError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"
    status_code = 404


class StateConflictError(AuctionError):
    """Raised when an operation is illegal for the entity's current status."""

    code = "state_conflict"
    status_code = 409


class IllegalTransitionError(StateConflictError):
    """Raised when a status pair is not in the transition table."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Illegal {entity} transition: {current} -> {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class GuardFailedError(StateConflictError):
    """Raised when a legal transition's guard does not hold yet."""

    def __init__(self, current: str, target: str, reason: str):
        super().__init__(
            f"Transition {current} -> {target} not allowed: {reason}",
            current=current,
            target=target,
            reason=reason,
        )
        self.current = current
        self.target = target
        self.reason = reason


class ConcurrencyConflictError(AuctionError):
    """Raised when a compare-and-swap lost its race. Safe to retry with fresh state."""

    code = "concurrency_conflict"
    status_code = 409


class BidErrorCode(str, Enum):
    """Typed rejection reasons of bid placement, each with its own HTTP status."""

    AUCTION_NOT_FOUND = "auction_not_found"
    AUCTION_NOT_ACTIVE = "auction_not_active"
    ENDED = "ended"
    INVALID_AMOUNT = "invalid_amount"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


BID_ERROR_STATUS = {
    BidErrorCode.AUCTION_NOT_FOUND: 404,
    BidErrorCode.AUCTION_NOT_ACTIVE: 403,
    BidErrorCode.ENDED: 410,
    BidErrorCode.INVALID_AMOUNT: 400,
    BidErrorCode.RATE_LIMITED: 429,
    BidErrorCode.INTERNAL_ERROR: 500,
}


class BidRejected(AuctionError):
    """Raised when a bid is not accepted.

    ``min_amount`` is always reported when it is known so the client can
    immediately re-offer a valid amount. ``reset_at`` and ``reasons`` are set
    for rate-limit rejections.
    """

    def __init__(
        self,
        error_code: BidErrorCode,
        message: str,
        *,
        min_amount: int | None = None,
        reset_at: datetime | None = None,
        reasons: list[str] | None = None,
    ):
        details: dict[str, Any] = {}
        if min_amount is not None:
            details["min_amount"] = min_amount
        if reset_at is not None:
            details["reset_at"] = reset_at
        if reasons:
            details["reasons"] = reasons
        super().__init__(message, **details)
        self.error_code = error_code
        self.code = error_code.value
        self.status_code = BID_ERROR_STATUS[error_code]
        self.min_amount = min_amount
        self.reset_at = reset_at
        self.reasons = reasons or []
