"""
Loyalty schemas: eligibility, visits and rewards.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Eligibility(BaseModel):
    """Where a customer stands in the current reward period at one store."""
    customer_id: str
    store_id: str
    visits_in_period: int = 0
    visits_needed: int
    can_claim: bool = False
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    period_expired: bool = False


class QRVisitRequest(BaseModel):
    phone: str = Field(..., min_length=3)
    store_id: str
    name: Optional[str] = None


class VisitResponse(BaseModel):
    visit_id: str
    store_id: str
    method: str
    visit_count: int
    visits_in_period: int
    visits_needed: int
    reward_earned: bool = False
    reward_id: Optional[str] = None
    reward_code: Optional[str] = None


class RewardResponse(BaseModel):
    id: str
    customer_id: str
    store_id: str
    code: str
    reward_type: str
    status: str = Field(..., description="claimed|redeemed|used|expired")
    period_start: datetime
    issued_at: datetime
    expires_at: datetime
    redeemed_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    discount_code: Optional[str] = None
    used_by: Optional[str] = None
    used_at_store_id: Optional[str] = None


class RedeemRequest(BaseModel):
    phone: str


class UseRewardRequest(BaseModel):
    discount_code: Optional[str] = None
