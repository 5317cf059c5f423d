"""
Admin review schemas.
"""
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from receiptrewards.receipts.schemas.base import (
    ExtractionResult,
    FieldFailure,
    FraudScore,
    ReceiptStatus,
    StoreReceiptConfig,
)


class ReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = None
    notes: Optional[str] = None
    store_id: Optional[str] = Field(default=None, description="Store to assign to a storeless receipt")


class StoreComparison(BaseModel):
    """Receipt values side by side with the store's rules."""
    field: str
    receipt_value: Optional[str] = None
    store_value: Optional[str] = None
    matches: Optional[bool] = None


class CustomerSummary(BaseModel):
    phone: str
    name: Optional[str] = None
    total_visits: int = 0


class ReviewDetail(BaseModel):
    receipt_id: str
    status: ReceiptStatus
    reason: str = ""
    image_ref: str
    customer: CustomerSummary
    store: Optional[StoreReceiptConfig] = None
    extraction: ExtractionResult
    fraud: FraudScore
    validation_flags: list[str] = Field(default_factory=list)
    rejection_details: list[FieldFailure] = Field(default_factory=list)
    comparison: list[StoreComparison] = Field(default_factory=list)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime


class ReceiptSummary(BaseModel):
    receipt_id: str
    status: ReceiptStatus
    customer_phone: str
    store_id: Optional[str] = None
    total_amount: Optional[float] = None
    fraud_score: Optional[int] = None
    reason: str = ""
    created_at: datetime
