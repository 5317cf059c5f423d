"""
Loyalty endpoints.

POST /api/visits/qr                              QR check-in
GET  /api/customers/{phone}/eligibility          current period (?store_id=)
GET  /api/customers/{phone}/rewards              rewards, expiry applied
POST /api/rewards/{id}/redeem                    claimed → redeemed
POST /api/admin/rewards/{id}/use                 redeemed → used
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from receiptrewards.auth import Reviewer, get_reviewer
from receiptrewards.clock import utcnow
from receiptrewards.database import get_db
from receiptrewards.errors import NotFound, StoreUnavailable, Unauthorized
from receiptrewards.loyalty.accrual import credit_visit, evaluate_eligibility
from receiptrewards.loyalty.ledger import last_visit_at
from receiptrewards.loyalty.models import CustomerModel, RewardModel
from receiptrewards.loyalty.rewards import list_customer_rewards, redeem_reward, use_reward
from receiptrewards.loyalty.schemas import (
    Eligibility,
    QRVisitRequest,
    RedeemRequest,
    RewardResponse,
    UseRewardRequest,
    VisitResponse,
)
from receiptrewards.notifications import Notifier, credit_events, get_notifier
from receiptrewards.receipts.models.store import StoreModel
from receiptrewards.receipts.pipeline import Policies, get_policies
from receiptrewards.receipts.pipeline.validator import check_visit_limit

logger = logging.getLogger(__name__)
router = APIRouter()


def transform_reward(reward: RewardModel) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        customer_id=reward.customer_id,
        store_id=reward.store_id,
        code=reward.code,
        reward_type=reward.reward_type,
        status=reward.status,
        period_start=reward.period_start,
        issued_at=reward.issued_at,
        expires_at=reward.expires_at,
        redeemed_at=reward.redeemed_at,
        used_at=reward.used_at,
        discount_code=reward.discount_code,
        used_by=reward.used_by,
        used_at_store_id=reward.used_at_store_id,
    )


# ── POST /api/visits/qr ──────────────────────────────────────────────────
@router.post("/visits/qr", response_model=VisitResponse)
def qr_visit(
    req: QRVisitRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    policies: Policies = Depends(get_policies),
):
    store = db.query(StoreModel).filter(StoreModel.id == req.store_id).first()
    if store is None:
        raise NotFound(f"Store {req.store_id} not found")
    if not store.is_active or not store.allow_qr_scanning:
        raise StoreUnavailable(f"Store {store.name} does not accept QR check-ins")

    now = utcnow()
    too_soon = check_visit_limit(last_visit_at(db, req.phone, store.id), policies.validation, now)
    if too_soon is not None:
        raise StoreUnavailable(too_soon.message, field=too_soon.field)

    credit = credit_visit(
        db,
        phone=req.phone,
        store_id=store.id,
        method="qr",
        name=req.name,
        policy=policies.accrual,
        now=now,
    )
    db.commit()
    logger.info("QR visit %s for %s at %s", credit.visit.id, req.phone, store.id)

    events = credit_events(req.phone, credit)
    if events:
        background_tasks.add_task(notifier.dispatch, events)

    return VisitResponse(
        visit_id=credit.visit.id,
        store_id=store.id,
        method="qr",
        visit_count=credit.customer.total_visits,
        visits_in_period=credit.eligibility.visits_in_period,
        visits_needed=credit.eligibility.visits_needed,
        reward_earned=credit.reward is not None,
        reward_id=credit.reward.id if credit.reward else None,
        reward_code=credit.reward.code if credit.reward else None,
    )


# ── GET /api/customers/{phone}/eligibility ───────────────────────────────
@router.get("/customers/{phone}/eligibility", response_model=Eligibility)
def get_eligibility(
    phone: str,
    store_id: str,
    db: Session = Depends(get_db),
    policies: Policies = Depends(get_policies),
):
    customer = db.query(CustomerModel).filter(CustomerModel.phone == phone).first()
    if customer is None:
        raise NotFound(f"Customer {phone} not found")
    return evaluate_eligibility(db, customer, store_id, policies.accrual)


# ── GET /api/customers/{phone}/rewards ───────────────────────────────────
@router.get("/customers/{phone}/rewards", response_model=list[RewardResponse])
def get_customer_rewards(phone: str, db: Session = Depends(get_db)):
    rewards = list_customer_rewards(db, phone)
    db.commit()
    return [transform_reward(r) for r in rewards]


# ── POST /api/rewards/{reward_id}/redeem ─────────────────────────────────
@router.post("/rewards/{reward_id}/redeem", response_model=RewardResponse)
def redeem(reward_id: str, req: RedeemRequest, db: Session = Depends(get_db)):
    reward = redeem_reward(db, reward_id, req.phone)
    db.commit()
    return transform_reward(reward)


# ── POST /api/admin/rewards/{reward_id}/use ──────────────────────────────
@router.post("/admin/rewards/{reward_id}/use", response_model=RewardResponse)
def mark_used(
    reward_id: str,
    req: UseRewardRequest,
    db: Session = Depends(get_db),
    reviewer: Reviewer = Depends(get_reviewer),
):
    if not reviewer.is_superadmin and reviewer.store_id is None:
        raise Unauthorized("Store-scoped reviewer has no store")
    store_id = None if reviewer.is_superadmin else reviewer.store_id
    reward = use_reward(db, reward_id, reviewer.id, store_id, discount_code=req.discount_code)
    db.commit()
    return transform_reward(reward)
