"""
Reward accrual: rolling-period eligibility and idempotent reward issue.

A cycle starts after the last reward issued to the customer at the store.
Visits in the cycle are replayed in time order: a period opens on the
first visit and lasts ``period_days``; a visit that falls after the
period end opens a fresh period and the count restarts from one.
"""
from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from receiptrewards.clock import utcnow
from receiptrewards.config import settings
from receiptrewards.errors import DuplicateReward
from receiptrewards.loyalty.ledger import record_visit
from receiptrewards.loyalty.models import CustomerModel, RewardModel, RewardRuleModel, VisitModel
from receiptrewards.loyalty.schemas import Eligibility

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 3


@dataclass(frozen=True)
class AccrualPolicy:
    period_days: int = 45
    default_visits_needed: int = 5
    default_reward_value: str = "10% Discount on Next Purchase"
    reward_expiration_days: int = 30

    @classmethod
    def from_settings(cls) -> "AccrualPolicy":
        return cls(
            period_days=settings.REWARD_PERIOD_DAYS,
            default_visits_needed=settings.DEFAULT_VISITS_NEEDED,
            default_reward_value=settings.DEFAULT_REWARD_VALUE,
            reward_expiration_days=settings.REWARD_EXPIRATION_DAYS,
        )


@dataclass
class CycleState:
    period_start: Optional[datetime] = None
    visits: list[VisitModel] = field(default_factory=list)
    resets: int = 0


def active_rule(db: Session, store_id: str) -> Optional[RewardRuleModel]:
    return (
        db.query(RewardRuleModel)
        .filter(RewardRuleModel.store_id == store_id, RewardRuleModel.is_active.is_(True))
        .order_by(RewardRuleModel.created_at.desc())
        .first()
    )


def _cycle_floor(db: Session, customer_id: str, store_id: str) -> Optional[datetime]:
    return (
        db.query(RewardModel.cycle_closed_at)
        .filter(RewardModel.customer_id == customer_id, RewardModel.store_id == store_id)
        .order_by(RewardModel.cycle_closed_at.desc())
        .limit(1)
        .scalar()
    )


def current_cycle(
    db: Session, customer_id: str, store_id: str, policy: AccrualPolicy
) -> CycleState:
    """Replay visits since the last reward to find the open period."""
    query = db.query(VisitModel).filter(
        VisitModel.customer_id == customer_id, VisitModel.store_id == store_id
    )
    floor = _cycle_floor(db, customer_id, store_id)
    if floor is not None:
        query = query.filter(VisitModel.timestamp > floor)

    state = CycleState()
    length = timedelta(days=policy.period_days)
    for visit in query.order_by(VisitModel.timestamp, VisitModel.id).all():
        if state.period_start is None:
            state.period_start = visit.timestamp
        elif visit.timestamp > state.period_start + length:
            state.period_start = visit.timestamp
            state.visits = []
            state.resets += 1
        state.visits.append(visit)
    return state


def evaluate_eligibility(
    db: Session,
    customer: CustomerModel,
    store_id: str,
    policy: AccrualPolicy = AccrualPolicy(),
    now: Optional[datetime] = None,
) -> Eligibility:
    now = now or utcnow()
    rule = active_rule(db, store_id)
    needed = rule.visits_needed if rule else policy.default_visits_needed

    state = current_cycle(db, customer.id, store_id, policy)
    if state.period_start is None:
        return Eligibility(
            customer_id=customer.id, store_id=store_id,
            visits_in_period=0, visits_needed=needed, can_claim=False,
        )

    period_end = state.period_start + timedelta(days=policy.period_days)
    expired = now > period_end
    # a lapsed period no longer counts; the next visit opens a new one
    count = 0 if expired else len(state.visits)
    return Eligibility(
        customer_id=customer.id,
        store_id=store_id,
        visits_in_period=count,
        visits_needed=needed,
        can_claim=not expired and count >= needed,
        period_start=state.period_start,
        period_end=period_end,
        period_expired=expired,
    )


def _cycle_reward(
    db: Session, customer_id: str, store_id: str, period_start: datetime
) -> Optional[RewardModel]:
    return (
        db.query(RewardModel)
        .filter(
            RewardModel.customer_id == customer_id,
            RewardModel.store_id == store_id,
            RewardModel.period_start == period_start,
        )
        .first()
    )


def generate_reward_code() -> str:
    return "RW-" + secrets.token_hex(4).upper()


def issue_reward_if_eligible(
    db: Session,
    customer: CustomerModel,
    store_id: str,
    policy: AccrualPolicy = AccrualPolicy(),
    now: Optional[datetime] = None,
) -> Optional[RewardModel]:
    """Issue the reward for the open cycle, at most once per cycle.

    Returns the existing reward when this cycle was already rewarded and
    ``None`` when the customer is not eligible yet. If a concurrent
    transaction closes the same cycle first, the insert only unwinds its
    savepoint and ``None`` is returned.
    """
    now = now or utcnow()
    eligibility = evaluate_eligibility(db, customer, store_id, policy, now)
    if not eligibility.can_claim:
        return None

    existing = _cycle_reward(db, customer.id, store_id, eligibility.period_start)
    if existing is not None:
        return existing

    state = current_cycle(db, customer.id, store_id, policy)
    trigger = state.visits[-1]
    rule = active_rule(db, store_id)
    for attempt in range(1, CODE_ATTEMPTS + 1):
        reward = RewardModel(
            id=str(uuid.uuid4()),
            customer_id=customer.id,
            store_id=store_id,
            code=generate_reward_code(),
            reward_type=rule.reward_value if rule else policy.default_reward_value,
            period_start=eligibility.period_start,
            trigger_visit_id=trigger.id,
            cycle_closed_at=trigger.timestamp,
            status="claimed",
            issued_at=now,
            claimed_at=now,
            expires_at=now + timedelta(days=policy.reward_expiration_days),
        )
        try:
            with db.begin_nested():
                db.add(reward)
                db.flush()
            break
        except IntegrityError as exc:
            if _cycle_reward(db, customer.id, store_id, eligibility.period_start) is not None:
                # the cycle closed on another visit; this one opens the next
                logger.warning(
                    "Reward for %s/%s cycle %s issued concurrently",
                    customer.id, store_id, eligibility.period_start,
                )
                return None
            logger.warning("Reward code %s already taken (attempt %d)", reward.code, attempt)
            if attempt == CODE_ATTEMPTS:
                raise DuplicateReward("Could not allocate a unique reward code") from exc
    trigger.reward_earned = True
    db.flush()
    logger.info("Reward %s (%s) issued to customer %s at store %s", reward.id, reward.code, customer.id, store_id)
    return reward


@dataclass
class VisitCredit:
    """Everything that happened when a visit was credited."""
    visit: VisitModel
    customer: CustomerModel
    eligibility: Eligibility
    reward: Optional[RewardModel] = None
    period_reset: bool = False


def credit_visit(
    db: Session,
    *,
    phone: str,
    store_id: str,
    method: str,
    receipt_id: Optional[str] = None,
    name: Optional[str] = None,
    policy: AccrualPolicy = AccrualPolicy(),
    now: Optional[datetime] = None,
) -> VisitCredit:
    """Visit ledger followed by reward accrual, in one transaction."""
    now = now or utcnow()
    before = None
    existing = db.query(CustomerModel).filter(CustomerModel.phone == phone).first()
    if existing is not None:
        before = evaluate_eligibility(db, existing, store_id, policy, now)

    visit, customer = record_visit(
        db, phone=phone, store_id=store_id, method=method,
        receipt_id=receipt_id, name=name, now=now,
    )
    reward = issue_reward_if_eligible(db, customer, store_id, policy, now)
    eligibility = evaluate_eligibility(db, customer, store_id, policy, now)
    return VisitCredit(
        visit=visit,
        customer=customer,
        eligibility=eligibility,
        reward=reward,
        period_reset=bool(before and before.period_expired),
    )
