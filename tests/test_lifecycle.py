"""
Tests for the receipt status state machine.
"""
import pytest

from receiptrewards.errors import AlreadyProcessed, InvalidTransition
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.pipeline.lifecycle import can_transition, transition, update_in_state
from receiptrewards.receipts.schemas import ReceiptStatus as S


@pytest.fixture()
def receipt(db):
    row = ReceiptModel(id="r1", image_ref="x", customer_phone="0911", status=S.PENDING.value)
    db.add(row)
    db.commit()
    return row


def test_terminal_states_have_no_exits():
    for target in S:
        assert not can_transition(S.APPROVED, target)
        assert not can_transition(S.REJECTED, target)
    assert can_transition(S.FLAGGED, S.FLAGGED_MANUAL_REQUESTED)
    assert not can_transition(S.PENDING, S.FLAGGED_MANUAL_REQUESTED)


def test_transition_writes_values(db, receipt):
    transition(db, receipt, S.FLAGGED, reason="Needs review")
    db.commit()
    assert receipt.status == "flagged"
    assert receipt.reason == "Needs review"


def test_terminal_receipt_reports_already_processed(db, receipt):
    transition(db, receipt, S.APPROVED)
    with pytest.raises(AlreadyProcessed):
        transition(db, receipt, S.REJECTED)


def test_illegal_source_state(db, receipt):
    with pytest.raises(InvalidTransition):
        transition(db, receipt, S.FLAGGED_MANUAL_REQUESTED)


def test_stale_writer_loses(db, receipt):
    """Two writers read the same pending row; only the first UPDATE lands."""
    db.query(ReceiptModel).filter(ReceiptModel.id == "r1").update(
        {ReceiptModel.status: S.REJECTED.value}, synchronize_session=False
    )
    with pytest.raises(AlreadyProcessed):
        transition(db, receipt, S.APPROVED, allowed_from={S.PENDING})


def test_update_in_state_keeps_status(db, receipt):
    update_in_state(db, receipt, S.PENDING, where=(ReceiptModel.store_id.is_(None),), store_id="s1")
    db.commit()
    assert receipt.status == "pending"
    assert receipt.store_id == "s1"


def test_update_in_state_needs_matching_row(db, receipt):
    db.query(ReceiptModel).filter(ReceiptModel.id == "r1").update(
        {ReceiptModel.store_id: "s2"}, synchronize_session=False
    )
    with pytest.raises(InvalidTransition):
        update_in_state(db, receipt, S.PENDING, where=(ReceiptModel.store_id.is_(None),), store_id="s1")

    transition(db, receipt, S.APPROVED)
    with pytest.raises(AlreadyProcessed):
        update_in_state(db, receipt, S.PENDING, store_id="s1")
