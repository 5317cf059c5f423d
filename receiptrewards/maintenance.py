"""
Periodic cleanup.

Nothing in the request path depends on this running: reward expiry is
also applied lazily on read. A scheduler (cron, k8s CronJob) can call
``sweep`` directly; admins can trigger it over HTTP.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from receiptrewards.clock import utcnow
from receiptrewards.config import settings
from receiptrewards.loyalty.rewards import expire_overdue
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.schemas import ReceiptStatus

logger = logging.getLogger(__name__)

STALE_REASON = "Receipt could not be processed in time; please upload it again"


class SweepResult(BaseModel):
    stale_receipts_rejected: int
    rewards_expired: int


def reject_stale_pending(db: Session, now: datetime, max_age_hours: int) -> int:
    cutoff = now - timedelta(hours=max_age_hours)
    return (
        db.query(ReceiptModel)
        .filter(
            ReceiptModel.status == ReceiptStatus.PENDING.value,
            ReceiptModel.created_at < cutoff,
        )
        .update(
            {
                ReceiptModel.status: ReceiptStatus.REJECTED.value,
                ReceiptModel.reason: STALE_REASON,
                ReceiptModel.processed_at: now,
                ReceiptModel.updated_at: now,
            },
            synchronize_session=False,
        )
    )


def sweep(db: Session, now: Optional[datetime] = None, stale_hours: Optional[int] = None) -> SweepResult:
    now = now or utcnow()
    stale = reject_stale_pending(db, now, stale_hours or settings.STALE_PENDING_HOURS)
    expired = expire_overdue(db, now)
    db.commit()
    logger.info("Sweep: %d stale receipts rejected, %d rewards expired", stale, expired)
    return SweepResult(stale_receipts_rejected=stale, rewards_expired=expired)
