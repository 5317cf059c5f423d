"""
Canonical schemas for the receipt verification pipeline.

Every pipeline stage produces and consumes these Pydantic v2 models.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

class ReceiptStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"
    FLAGGED_MANUAL_REQUESTED = "flagged_manual_requested"

    @property
    def is_terminal(self) -> bool:
        return self in (ReceiptStatus.APPROVED, ReceiptStatus.REJECTED)

    @property
    def is_reviewable(self) -> bool:
        return self in (ReceiptStatus.FLAGGED, ReceiptStatus.FLAGGED_MANUAL_REQUESTED)


# ---------------------------------------------------------------------------
# External collaborator outputs
# ---------------------------------------------------------------------------

class ExtractionResult(BaseModel):
    """Best-effort fields read from a receipt image."""
    raw_text: str = ""
    tax_id: Optional[str] = None
    invoice_number: Optional[str] = None
    branch_text: Optional[str] = None
    date_on_receipt: Optional[datetime] = None
    total_amount: Optional[float] = None
    barcode: Optional[str] = None
    image_hash: Optional[str] = None
    confidence: str = Field(default="high", description="high | medium | low")
    flags: list[str] = Field(default_factory=list)


class FraudScore(BaseModel):
    overall: int = Field(default=0, ge=0, le=100)
    tampering: int = Field(default=0, ge=0, le=100)
    ai_generated: int = Field(default=0, ge=0, le=100)
    indicators: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Store rules
# ---------------------------------------------------------------------------

class StoreReceiptConfig(BaseModel):
    """Read-only receipt rules for one store."""
    store_id: str
    name: str = ""
    tin: Optional[str] = None
    branch_name: Optional[str] = None
    min_receipt_amount: float = 0
    receipt_validity_hours: int = 24
    allow_receipt_uploads: bool = True


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class FieldFailure(BaseModel):
    field: str = Field(..., description="tax_id | branch | amount | date | duplicate | visit_limit | ...")
    issue: str
    found: Optional[Union[str, float, int]] = None
    expected: Optional[Union[str, float, int]] = None
    message: str


class ValidationOutcome(BaseModel):
    passed: bool = True
    failures: list[FieldFailure] = Field(default_factory=list)

    def has(self, field: str, issue: Optional[str] = None) -> bool:
        return any(
            f.field == field and (issue is None or f.issue == issue)
            for f in self.failures
        )


class DuplicateMatches(BaseModel):
    """Ids of earlier non-rejected receipts sharing an identifier."""
    invoice_number: Optional[str] = None
    barcode: Optional[str] = None
    image_hash: Optional[str] = None


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

class Decision(BaseModel):
    """Closed status variant with its reason payload."""
    status: ReceiptStatus
    reason: str
    rule: str = Field(..., description="Name of the policy rule that matched")
    details: list[FieldFailure] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API envelopes
# ---------------------------------------------------------------------------

class ReceiptOutcome(BaseModel):
    """Response for uploads, reviews and status lookups."""
    status: ReceiptStatus
    receipt_id: str
    reason: str = ""
    rejection_details: list[FieldFailure] = Field(default_factory=list)
    visit_id: Optional[str] = None
    visit_count: Optional[int] = None
    reward_earned: bool = False
    reward_id: Optional[str] = None
    reward_code: Optional[str] = None
    can_request_review: bool = False
    replayed: bool = False


class CustomerActionRequest(BaseModel):
    """Body for customer-initiated actions on their own receipt."""
    phone: str


class LinkStoreRequest(BaseModel):
    phone: str
    store_id: str
