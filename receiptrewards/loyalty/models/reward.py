"""
Reward rule and issued reward models.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint

from receiptrewards.clock import utcnow
from receiptrewards.database import Base


class RewardRuleModel(Base):
    """Per-store threshold."""
    __tablename__ = "reward_rules"

    id = Column(String, primary_key=True)
    store_id = Column(String, nullable=False, index=True)
    visits_needed = Column(Integer, nullable=False, default=5)
    reward_value = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class RewardModel(Base):
    __tablename__ = "rewards"

    id = Column(String, primary_key=True)
    customer_id = Column(String, nullable=False, index=True)
    store_id = Column(String, nullable=False, index=True)
    code = Column(String, nullable=False, unique=True)
    reward_type = Column(String, nullable=False)

    # Cycle that produced this reward
    period_start = Column(DateTime, nullable=False)
    trigger_visit_id = Column(String)
    cycle_closed_at = Column(DateTime, nullable=False)

    status = Column(String, nullable=False, default="claimed")  # pending | claimed | redeemed | used | expired
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    claimed_at = Column(DateTime)
    redeemed_at = Column(DateTime)
    used_at = Column(DateTime)
    discount_code = Column(String, unique=True)
    used_by = Column(String)
    used_at_store_id = Column(String)

    __table_args__ = (
        UniqueConstraint("customer_id", "store_id", "period_start", name="uq_rewards_cycle"),
    )
