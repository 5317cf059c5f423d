"""
Error taxonomy for the receipt and reward pipeline.

Rule violations, fraud vetoes and review needs are *outcomes* stored on
the receipt. Only the conditions below are raised to the caller.
"""
from __future__ import annotations

from typing import Any, Optional


class LoyaltyError(Exception):
    """Base class for errors returned to the caller as JSON."""

    status_code: int = 400
    code: str = "loyalty_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class NotFound(LoyaltyError):
    status_code = 404
    code = "not_found"


class AlreadyProcessed(LoyaltyError):
    """A control action hit a receipt that is already approved or rejected."""

    status_code = 409
    code = "already_processed"

    def __init__(self, receipt_id: str, status: str):
        super().__init__(
            f"Receipt {receipt_id} is already {status}",
            receipt_id=receipt_id,
            status=status,
        )
        self.receipt_id = receipt_id
        self.status = status


class InvalidTransition(LoyaltyError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, receipt_id: str, current: str, target: str):
        super().__init__(
            f"Receipt {receipt_id} cannot move from {current} to {target}",
            receipt_id=receipt_id,
            status=current,
        )


class DuplicateVisit(LoyaltyError):
    status_code = 409
    code = "duplicate_visit"

    def __init__(self, receipt_id: str):
        super().__init__(
            f"A visit already exists for receipt {receipt_id}",
            receipt_id=receipt_id,
        )
        self.receipt_id = receipt_id


class DuplicateReward(LoyaltyError):
    status_code = 409
    code = "duplicate_reward"


class RewardStateError(LoyaltyError):
    status_code = 409
    code = "reward_state"


class Unauthorized(LoyaltyError):
    status_code = 403
    code = "unauthorized"


class UpstreamUnavailable(LoyaltyError):
    """Extractor or fraud scorer failed; the receipt stays pending."""

    status_code = 503
    code = "upstream_unavailable"

    def __init__(self, message: str, receipt_id: Optional[str] = None):
        super().__init__(message, receipt_id=receipt_id, retryable=True)
        self.receipt_id = receipt_id


class StoreUnavailable(LoyaltyError):
    """Store is inactive or does not accept this kind of check-in."""

    status_code = 400
    code = "store_unavailable"


class InvalidRequest(LoyaltyError):
    status_code = 400
    code = "invalid_request"
