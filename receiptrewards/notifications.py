"""
Customer notifications (fire-and-forget).

Events are built by the routers after the transaction commits and sent
from a FastAPI background task. A failing sink is logged and skipped;
nothing here ever raises into request handling.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from receiptrewards.loyalty.accrual import VisitCredit
from receiptrewards.receipts.schemas import ReceiptOutcome, ReceiptStatus

logger = logging.getLogger(__name__)


class NotificationEvent(BaseModel):
    event: str = Field(..., description="receiptAccepted|receiptRejected|manualReviewComplete|rewardMilestone|rewardAvailable|periodReset")
    phone: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)


Sink = Callable[[NotificationEvent], None]


def log_sink(event: NotificationEvent) -> None:
    logger.info("Notify %s [%s]: %s", event.phone, event.event, event.title)


class Notifier:
    def __init__(self, sinks: Optional[list[Sink]] = None):
        self.sinks: list[Sink] = sinks if sinks is not None else [log_sink]

    def dispatch(self, events: list[NotificationEvent]) -> None:
        for event in events:
            for sink in self.sinks:
                try:
                    sink(event)
                except Exception:
                    logger.warning("Notification %s to %s failed", event.event, event.phone, exc_info=True)


_notifier = Notifier()


def get_notifier() -> Notifier:
    return _notifier


# ---------------------------------------------------------------------------
# Event builders
# ---------------------------------------------------------------------------

def receipt_accepted(phone: str, receipt_id: str, visit_count: Optional[int]) -> NotificationEvent:
    return NotificationEvent(
        event="receiptAccepted", phone=phone,
        title="Receipt Accepted!",
        body="Your visit has been counted. You're one step closer to your reward!",
        data={"receipt_id": receipt_id, "visit_count": visit_count},
    )


def receipt_rejected(phone: str, receipt_id: str, reason: str) -> NotificationEvent:
    return NotificationEvent(
        event="receiptRejected", phone=phone,
        title="Receipt Not Accepted",
        body=f"We couldn't verify your receipt. {reason or 'Please try again or contact support.'}",
        data={"receipt_id": receipt_id, "reason": reason},
    )


def manual_review_complete(phone: str, receipt_id: str, status: ReceiptStatus) -> NotificationEvent:
    verdict = "accepted" if status == ReceiptStatus.APPROVED else "rejected"
    return NotificationEvent(
        event="manualReviewComplete", phone=phone,
        title="Receipt Reviewed",
        body=f"Your receipt has been reviewed and {verdict}.",
        data={"receipt_id": receipt_id, "status": status.value},
    )


def credit_events(phone: str, credit: VisitCredit) -> list[NotificationEvent]:
    """Milestone / reward / period-reset events for one credited visit."""
    events = []
    if credit.period_reset:
        events.append(NotificationEvent(
            event="periodReset", phone=phone,
            title="New Period Started",
            body="Your visit period has reset. Start earning rewards again!",
            data={"store_id": credit.visit.store_id},
        ))
    if credit.reward is not None:
        events.append(NotificationEvent(
            event="rewardMilestone", phone=phone,
            title="Congratulations!",
            body=f"You've reached {credit.eligibility.visits_needed} visits!",
            data={"store_id": credit.visit.store_id, "visit_id": credit.visit.id},
        ))
        events.append(NotificationEvent(
            event="rewardAvailable", phone=phone,
            title="Reward Ready!",
            body="You have a reward waiting for you. Visit us to use it!",
            data={"reward_id": credit.reward.id, "reward_code": credit.reward.code},
        ))
    return events


def outcome_events(
    phone: str, outcome: ReceiptOutcome, credit: Optional[VisitCredit] = None, reviewed: bool = False
) -> list[NotificationEvent]:
    events = []
    if reviewed and outcome.status.is_terminal:
        events.append(manual_review_complete(phone, outcome.receipt_id, outcome.status))
    elif outcome.status == ReceiptStatus.APPROVED:
        events.append(receipt_accepted(phone, outcome.receipt_id, outcome.visit_count))
    elif outcome.status == ReceiptStatus.REJECTED:
        events.append(receipt_rejected(phone, outcome.receipt_id, outcome.reason))
    if credit is not None:
        events.extend(credit_events(phone, credit))
    return events
