"""
Pipeline behaviour when another request writes the same receipt first.

Each test reads the receipt, lets a competing write land behind that
read, then checks the pipeline gives up without touching the winner.
"""
import pytest
from sqlalchemy import insert

from receiptrewards.auth import Reviewer
from receiptrewards.clock import utcnow
from receiptrewards.errors import AlreadyProcessed, InvalidTransition
from receiptrewards.loyalty.models import VisitModel
from receiptrewards.receipts import pipeline
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.pipeline import link_store, process_upload
from receiptrewards.receipts.review import review_receipt
from receiptrewards.receipts.schemas import FraudScore

PHONE = "0911000000"


def _finish_elsewhere(db, receipt_id, **values):
    """A competing write that the already loaded receipt does not see."""
    values.setdefault("status", "approved")
    db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).update(values, synchronize_session=False)


def _winner_visit(db, receipt_id):
    db.execute(insert(VisitModel).values(
        id="winner", customer_id="c-winner", store_id="store-1",
        method="receipt", receipt_id=receipt_id, timestamp=utcnow(), reward_earned=False,
    ))


class TestUpload:
    def test_insert_lost_to_concurrent_upload(self, db, store, extractor, scorer, monkeypatch):
        real = pipeline.check_store_accepts_receipts

        def _gate(row, store_id):
            checked = real(row, store_id)
            db.execute(insert(ReceiptModel).values(
                id="r-1", image_ref="elsewhere", customer_phone=PHONE,
                store_id="store-1", status="approved", reason="Receipt verified",
            ))
            _winner_visit(db, "r-1")
            db.commit()
            return checked

        monkeypatch.setattr(pipeline, "check_store_accepts_receipts", _gate)
        result = process_upload(
            db, image=b"receipt", phone=PHONE, extractor=extractor, scorer=scorer,
            store_id="store-1", receipt_id="r-1",
        )
        assert result.outcome.replayed is True
        assert result.outcome.status.value == "approved"
        assert result.outcome.visit_id == "winner"
        assert db.query(ReceiptModel).one().image_ref == "elsewhere"
        assert extractor.calls == 0

    def test_decision_lost_to_concurrent_upload(self, db, store, extractor):
        class _Scorer:
            def score(self, image, extraction):
                _finish_elsewhere(db, "r-2", reason="Receipt verified")
                _winner_visit(db, "r-2")
                db.commit()
                return FraudScore(overall=10)

        result = process_upload(
            db, image=b"receipt", phone=PHONE, extractor=extractor, scorer=_Scorer(),
            store_id="store-1", receipt_id="r-2",
        )
        assert result.outcome.replayed is True
        assert result.outcome.visit_id == "winner"
        assert db.query(VisitModel).count() == 1

    def test_new_receipt_image_stored_once(self, db, store, extractor, scorer):
        saved = []
        process_upload(
            db, image=b"receipt", phone=PHONE, extractor=extractor, scorer=scorer,
            store_id="store-1", receipt_id="r-3", store_image=lambda rid: saved.append(rid) or f"mem://{rid}",
        )
        again = process_upload(
            db, image=b"receipt", phone=PHONE, extractor=extractor, scorer=scorer,
            store_id="store-1", receipt_id="r-3", store_image=lambda rid: saved.append(rid) or f"mem://{rid}",
        )
        assert again.outcome.replayed is True
        assert saved == ["r-3"]
        assert db.query(ReceiptModel).one().image_ref == "mem://r-3"


@pytest.fixture()
def storeless(db, store, other_store, extractor, scorer):
    """A flagged receipt with no store, already loaded into the session."""
    extractor.result.tax_id = "555"
    process_upload(
        db, image=b"receipt", phone=PHONE, extractor=extractor, scorer=scorer, receipt_id="r-race",
    )
    receipt = db.query(ReceiptModel).filter(ReceiptModel.id == "r-race").first()
    assert receipt.status == "flagged"
    assert receipt.store_id is None
    return receipt


class TestLinkStore:
    def test_approved_elsewhere_is_left_alone(self, db, storeless):
        _finish_elsewhere(db, "r-race", store_id="store-1", reason="Manually approved by admin")
        with pytest.raises(AlreadyProcessed):
            link_store(db, "r-race", PHONE, "store-2")
        db.commit()
        row = db.query(ReceiptModel).one()
        assert row.status == "approved"
        assert row.store_id == "store-1"
        assert row.reason == "Manually approved by admin"

    def test_linked_elsewhere_keeps_first_store(self, db, storeless):
        _finish_elsewhere(db, "r-race", status="flagged", store_id="store-1")
        with pytest.raises(InvalidTransition):
            link_store(db, "r-race", PHONE, "store-2")
        db.commit()
        assert db.query(ReceiptModel).one().store_id == "store-1"

    def test_link_without_race(self, db, storeless):
        result = link_store(db, "r-race", PHONE, "store-2")
        db.expire_all()
        row = db.query(ReceiptModel).one()
        assert row.store_id == "store-2"
        assert row.status == result.outcome.status.value


class TestReviewAssignsStore:
    def test_linked_elsewhere_blocks_assignment(self, db, storeless):
        _finish_elsewhere(db, "r-race", status="flagged", store_id="store-2")
        with pytest.raises(InvalidTransition):
            review_receipt(
                db, "r-race", Reviewer(id="root", role="superadmin"), "approve", store_id="store-1",
            )
        db.commit()
        row = db.query(ReceiptModel).one()
        assert row.status == "flagged"
        assert row.store_id == "store-2"
        assert db.query(VisitModel).count() == 0
