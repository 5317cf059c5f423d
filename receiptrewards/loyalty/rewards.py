"""
Reward lifecycle after issue.

    claimed -> redeemed -> used
    claimed | redeemed -> expired   (once now > expires_at)

Expiry is applied lazily whenever a reward is read or acted on; the
maintenance sweep applies it in bulk.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from receiptrewards.clock import utcnow
from receiptrewards.errors import NotFound, RewardStateError, Unauthorized
from receiptrewards.loyalty.models import CustomerModel, RewardModel

logger = logging.getLogger(__name__)

EXPIRABLE = ("claimed", "redeemed")


def apply_expiry(reward: RewardModel, now: Optional[datetime] = None) -> bool:
    """Mark *reward* expired if it lapsed. Returns True when it changed."""
    now = now or utcnow()
    if reward.status in EXPIRABLE and reward.expires_at is not None and now > reward.expires_at:
        reward.status = "expired"
        logger.info("Reward %s expired", reward.id)
        return True
    return False


def expire_overdue(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return (
        db.query(RewardModel)
        .filter(RewardModel.status.in_(EXPIRABLE), RewardModel.expires_at < now)
        .update({RewardModel.status: "expired"}, synchronize_session=False)
    )


def list_customer_rewards(db: Session, phone: str, now: Optional[datetime] = None) -> list[RewardModel]:
    customer = db.query(CustomerModel).filter(CustomerModel.phone == phone).first()
    if customer is None:
        raise NotFound(f"Customer {phone} not found")
    rewards = (
        db.query(RewardModel)
        .filter(RewardModel.customer_id == customer.id)
        .order_by(RewardModel.issued_at.desc())
        .all()
    )
    changed = [r for r in rewards if apply_expiry(r, now)]
    if changed:
        db.flush()
    return rewards


def _load(db: Session, reward_id: str) -> RewardModel:
    reward = db.query(RewardModel).filter(RewardModel.id == reward_id).first()
    if reward is None:
        raise NotFound(f"Reward {reward_id} not found")
    return reward


def _expired_error(reward: RewardModel) -> RewardStateError:
    return RewardStateError(f"Reward {reward.id} expired on {reward.expires_at.isoformat()}", reward_id=reward.id)


def redeem_reward(db: Session, reward_id: str, phone: str, now: Optional[datetime] = None) -> RewardModel:
    """Customer opens the reward; assigns the discount code shown at the till."""
    now = now or utcnow()
    reward = _load(db, reward_id)
    customer = db.query(CustomerModel).filter(CustomerModel.id == reward.customer_id).first()
    if customer is None or customer.phone != phone:
        raise Unauthorized("Reward belongs to another customer")

    if apply_expiry(reward, now):
        # the expiry stands even though the action fails
        db.commit()
        raise _expired_error(reward)
    if reward.status == "redeemed":
        return reward
    if reward.status != "claimed":
        raise RewardStateError(f"Reward {reward.id} is {reward.status} and cannot be redeemed", reward_id=reward.id)

    reward.status = "redeemed"
    reward.redeemed_at = now
    reward.discount_code = "DC-" + secrets.token_hex(4).upper()
    db.flush()
    logger.info("Reward %s redeemed by %s", reward.id, phone)
    return reward


def use_reward(
    db: Session,
    reward_id: str,
    staff_id: str,
    store_id: Optional[str],
    discount_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RewardModel:
    """Staff marks a redeemed reward as consumed."""
    now = now or utcnow()
    reward = _load(db, reward_id)
    if store_id is not None and reward.store_id != store_id:
        raise Unauthorized("Reward was issued by another store")

    if apply_expiry(reward, now):
        # the expiry stands even though the action fails
        db.commit()
        raise _expired_error(reward)
    if reward.status != "redeemed":
        raise RewardStateError(f"Reward {reward.id} is {reward.status} and cannot be used", reward_id=reward.id)
    if discount_code is not None and discount_code != reward.discount_code:
        raise RewardStateError("Discount code does not match", reward_id=reward.id)

    reward.status = "used"
    reward.used_at = now
    reward.used_by = staff_id
    reward.used_at_store_id = store_id or reward.store_id
    db.flush()
    logger.info("Reward %s used at store %s by %s", reward.id, reward.used_at_store_id, staff_id)
    return reward
