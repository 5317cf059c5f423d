"""
Receipt status state machine.

Transitions are conditional UPDATEs: the row only changes if it is still
in one of the allowed source states, and the affected row count decides
which of two concurrent writers wins.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from receiptrewards.clock import utcnow
from receiptrewards.errors import AlreadyProcessed, InvalidTransition, NotFound
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.schemas import ReceiptStatus

logger = logging.getLogger(__name__)

S = ReceiptStatus

TRANSITIONS: dict[ReceiptStatus, set[ReceiptStatus]] = {
    S.PENDING: {S.APPROVED, S.REJECTED, S.FLAGGED},
    S.FLAGGED: {S.APPROVED, S.REJECTED, S.FLAGGED_MANUAL_REQUESTED},
    S.FLAGGED_MANUAL_REQUESTED: {S.APPROVED, S.REJECTED},
    S.APPROVED: set(),
    S.REJECTED: set(),
}


def can_transition(current: ReceiptStatus, target: ReceiptStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_not_terminal(receipt: ReceiptModel) -> None:
    status = ReceiptStatus(receipt.status)
    if status.is_terminal:
        raise AlreadyProcessed(receipt.id, status.value)


def _raise_conflict(db: Session, receipt: ReceiptModel, target: ReceiptStatus) -> None:
    current = db.query(ReceiptModel.status).filter(ReceiptModel.id == receipt.id).scalar()
    if current is None:
        raise NotFound(f"Receipt {receipt.id} not found")
    if ReceiptStatus(current).is_terminal:
        raise AlreadyProcessed(receipt.id, current)
    raise InvalidTransition(receipt.id, current, target.value)


def transition(
    db: Session,
    receipt: ReceiptModel,
    target: ReceiptStatus,
    allowed_from: set[ReceiptStatus] | None = None,
    where: tuple = (),
    **values,
) -> ReceiptModel:
    """Move *receipt* to *target*, writing *values* in the same UPDATE.

    ``allowed_from`` narrows the legal source states (e.g. reviews only
    act on flagged receipts) and ``where`` adds SQL criteria the row must
    still meet. Raises ``AlreadyProcessed`` when the row is
    already terminal and ``InvalidTransition`` for any other mismatch.
    """
    sources = {s for s, targets in TRANSITIONS.items() if target in targets}
    if allowed_from is not None:
        sources &= allowed_from

    db.flush()
    values.update(status=target.value, updated_at=utcnow())
    rows = (
        db.query(ReceiptModel)
        .filter(
            ReceiptModel.id == receipt.id,
            ReceiptModel.status.in_([s.value for s in sources]),
            *where,
        )
        .update(values, synchronize_session=False)
    )
    if rows != 1:
        _raise_conflict(db, receipt, target)

    db.expire(receipt)
    logger.info("Receipt %s -> %s", receipt.id, target.value)
    return receipt


def update_in_state(
    db: Session,
    receipt: ReceiptModel,
    state: ReceiptStatus,
    where: tuple = (),
    **values,
) -> ReceiptModel:
    """Write *values* without a status change, only while the row is still
    in *state* and every ``where`` criterion holds.
    """
    db.flush()
    values.update(updated_at=utcnow())
    rows = (
        db.query(ReceiptModel)
        .filter(ReceiptModel.id == receipt.id, ReceiptModel.status == state.value, *where)
        .update(values, synchronize_session=False)
    )
    if rows != 1:
        _raise_conflict(db, receipt, state)

    db.expire(receipt)
    return receipt
