"""
Unit tests for the decision engine's ordered policy.
"""
import pytest

from receiptrewards.receipts.pipeline.decision import DecisionPolicy, decide
from receiptrewards.receipts.schemas import (
    ExtractionResult,
    FieldFailure,
    FraudScore,
    ReceiptStatus,
    ValidationOutcome,
)

EX = ExtractionResult()

AMOUNT_LOW = FieldFailure(field="amount", issue="below_minimum", found=300, expected=500,
                          message="Amount 300.00 is below minimum 500.00")
TAX_MISMATCH = FieldFailure(field="tax_id", issue="mismatch", found="456", expected="123",
                            message="Tax id 456 does not match store tax id 123")
DUP_INVOICE = FieldFailure(field="duplicate", issue="invoice_number", found="INV-1",
                           message="Duplicate invoice number: already submitted on receipt r-1")


def _outcome(*failures):
    return ValidationOutcome(passed=not failures, failures=list(failures))


class TestOrderedPolicy:
    def test_clean_receipt_approved(self):
        decision = decide(EX, FraudScore(overall=10), _outcome())
        assert decision.status == ReceiptStatus.APPROVED
        assert decision.rule == "approved"

    def test_fraud_veto_wins_over_everything(self):
        decision = decide(EX, FraudScore(overall=70), _outcome(TAX_MISMATCH), has_store=False)
        assert decision.status == ReceiptStatus.REJECTED
        assert decision.reason == "high fraud risk"
        assert decision.details[0].field == "fraud"

    def test_hard_failure_rejects(self):
        decision = decide(EX, FraudScore(overall=10), _outcome(AMOUNT_LOW, TAX_MISMATCH))
        assert decision.status == ReceiptStatus.REJECTED
        assert "below minimum" in decision.reason
        assert "Tax id" not in decision.reason
        assert len(decision.details) == 2

    def test_hard_failure_beats_storeless(self):
        decision = decide(EX, FraudScore(overall=0), _outcome(DUP_INVOICE), has_store=False)
        assert decision.status == ReceiptStatus.REJECTED
        assert decision.rule == "hard_failure"

    def test_storeless_flagged(self):
        decision = decide(EX, FraudScore(overall=0), _outcome(), has_store=False)
        assert decision.status == ReceiptStatus.FLAGGED
        assert decision.rule == "storeless"

    def test_storeless_beats_fraud_review(self):
        decision = decide(EX, FraudScore(overall=55), _outcome(), has_store=False)
        assert decision.rule == "storeless"

    @pytest.mark.parametrize("score", [40, 55, 69])
    def test_mid_fraud_flagged_with_indicators(self, score):
        fraud = FraudScore(overall=score, indicators=["Compression anomalies detected"])
        decision = decide(EX, fraud, _outcome())
        assert decision.status == ReceiptStatus.FLAGGED
        assert "Compression anomalies detected" in decision.reason

    def test_soft_mismatch_flagged(self):
        decision = decide(EX, FraudScore(overall=5), _outcome(TAX_MISMATCH))
        assert decision.status == ReceiptStatus.FLAGGED
        assert decision.rule == "soft_failure"

    def test_thresholds_come_from_policy(self):
        policy = DecisionPolicy(reject_threshold=90, review_threshold=80)
        assert decide(EX, FraudScore(overall=75), _outcome(), policy=policy).status == ReceiptStatus.APPROVED
        assert decide(EX, FraudScore(overall=85), _outcome(), policy=policy).status == ReceiptStatus.FLAGGED
        assert decide(EX, FraudScore(overall=95), _outcome(), policy=policy).status == ReceiptStatus.REJECTED
