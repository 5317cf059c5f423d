"""
Tests for the reward lifecycle after issue.
"""
from datetime import datetime, timedelta

import pytest

from receiptrewards.errors import NotFound, RewardStateError, Unauthorized
from receiptrewards.loyalty.accrual import AccrualPolicy, credit_visit
from receiptrewards.loyalty.rewards import (
    expire_overdue,
    list_customer_rewards,
    redeem_reward,
    use_reward,
)
from receiptrewards.loyalty.models import RewardModel
from receiptrewards.maintenance import sweep
from receiptrewards.receipts.models.receipt import ReceiptModel

T0 = datetime(2026, 1, 1, 10, 0, 0)
ISSUED = T0 + timedelta(days=4)


@pytest.fixture()
def reward(db):
    credit = None
    for day in range(5):
        credit = credit_visit(
            db, phone="0911", store_id="s1", method="qr",
            policy=AccrualPolicy(), now=T0 + timedelta(days=day),
        )
    db.commit()
    return credit.reward


class TestLifecycle:
    def test_redeem_then_use(self, db, reward):
        redeemed = redeem_reward(db, reward.id, "0911", now=ISSUED + timedelta(days=1))
        assert redeemed.status == "redeemed"
        assert redeemed.discount_code.startswith("DC-")

        used = use_reward(db, reward.id, "staff-1", "s1", discount_code=redeemed.discount_code,
                          now=ISSUED + timedelta(days=2))
        db.commit()
        assert used.status == "used"
        assert used.used_by == "staff-1"
        assert used.used_at_store_id == "s1"

    def test_redeem_is_repeatable(self, db, reward):
        first = redeem_reward(db, reward.id, "0911", now=ISSUED)
        code = first.discount_code
        again = redeem_reward(db, reward.id, "0911", now=ISSUED)
        assert again.discount_code == code

    def test_use_requires_redeem(self, db, reward):
        with pytest.raises(RewardStateError):
            use_reward(db, reward.id, "staff-1", "s1", now=ISSUED)

    def test_used_reward_is_terminal(self, db, reward):
        redeem_reward(db, reward.id, "0911", now=ISSUED)
        use_reward(db, reward.id, "staff-1", "s1", now=ISSUED)
        with pytest.raises(RewardStateError):
            redeem_reward(db, reward.id, "0911", now=ISSUED)

    def test_other_customer_cannot_redeem(self, db, reward):
        with pytest.raises(Unauthorized):
            redeem_reward(db, reward.id, "0922", now=ISSUED)

    def test_other_store_cannot_use(self, db, reward):
        redeem_reward(db, reward.id, "0911", now=ISSUED)
        with pytest.raises(Unauthorized):
            use_reward(db, reward.id, "staff-9", "s9", now=ISSUED)

    def test_unknown_reward(self, db):
        with pytest.raises(NotFound):
            redeem_reward(db, "missing", "0911")


class TestExpiry:
    def test_expired_on_read(self, db, reward):
        rewards = list_customer_rewards(db, "0911", now=ISSUED + timedelta(days=31))
        assert [r.status for r in rewards] == ["expired"]

    def test_redeem_after_expiry_fails(self, db, reward):
        with pytest.raises(RewardStateError):
            redeem_reward(db, reward.id, "0911", now=ISSUED + timedelta(days=31))

    def test_redeemed_reward_can_expire(self, db, reward):
        redeem_reward(db, reward.id, "0911", now=ISSUED)
        with pytest.raises(RewardStateError):
            use_reward(db, reward.id, "staff-1", "s1", now=ISSUED + timedelta(days=31))

    def test_failed_redeem_keeps_expiry(self, db, reward):
        with pytest.raises(RewardStateError):
            redeem_reward(db, reward.id, "0911", now=ISSUED + timedelta(days=31))
        db.rollback()
        assert db.query(RewardModel).one().status == "expired"

    def test_failed_use_keeps_expiry(self, db, reward):
        redeem_reward(db, reward.id, "0911", now=ISSUED)
        db.commit()
        with pytest.raises(RewardStateError):
            use_reward(db, reward.id, "staff-1", "s1", now=ISSUED + timedelta(days=31))
        db.rollback()
        row = db.query(RewardModel).one()
        assert row.status == "expired"
        assert row.discount_code.startswith("DC-")

    def test_bulk_expiry(self, db, reward):
        assert expire_overdue(db, now=ISSUED + timedelta(days=29)) == 0
        assert expire_overdue(db, now=ISSUED + timedelta(days=31)) == 1
        db.commit()
        assert db.query(RewardModel).one().status == "expired"


class TestSweep:
    def test_sweep_rejects_stale_pending(self, db):
        db.add(ReceiptModel(id="old", image_ref="x", customer_phone="0911", status="pending",
                            created_at=T0))
        db.add(ReceiptModel(id="fresh", image_ref="y", customer_phone="0911", status="pending",
                            created_at=T0 + timedelta(hours=47)))
        db.commit()

        result = sweep(db, now=T0 + timedelta(hours=49), stale_hours=48)
        assert result.stale_receipts_rejected == 1
        statuses = {r.id: r.status for r in db.query(ReceiptModel).all()}
        assert statuses == {"old": "rejected", "fresh": "pending"}
