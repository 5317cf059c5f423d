"""
Decision engine: validator outcome + fraud score -> receipt status.

Rules are evaluated in order and the first match wins. The order is
customer-visible and must not change.
"""
from __future__ import annotations

from dataclasses import dataclass

from receiptrewards.config import settings
from receiptrewards.receipts.pipeline.validator import is_hard
from receiptrewards.receipts.schemas import (
    Decision,
    ExtractionResult,
    FieldFailure,
    FraudScore,
    ReceiptStatus,
    ValidationOutcome,
)


@dataclass(frozen=True)
class DecisionPolicy:
    reject_threshold: int = 70
    review_threshold: int = 40

    @classmethod
    def from_settings(cls) -> "DecisionPolicy":
        return cls(
            reject_threshold=settings.FRAUD_REJECT_THRESHOLD,
            review_threshold=settings.FRAUD_REVIEW_THRESHOLD,
        )


def _fraud_failure(fraud: FraudScore, policy: DecisionPolicy) -> FieldFailure:
    return FieldFailure(
        field="fraud", issue="high_risk", found=fraud.overall,
        expected=f"below {policy.reject_threshold}",
        message=f"Fraud score {fraud.overall} at or above {policy.reject_threshold}",
    )


def decide(
    extraction: ExtractionResult,
    fraud: FraudScore,
    validation: ValidationOutcome,
    has_store: bool = True,
    policy: DecisionPolicy = DecisionPolicy(),
) -> Decision:
    # 1. fraud veto, regardless of validation
    if fraud.overall >= policy.reject_threshold:
        return Decision(
            status=ReceiptStatus.REJECTED,
            reason="high fraud risk",
            rule="fraud_veto",
            details=[_fraud_failure(fraud, policy)] + validation.failures,
        )

    # 2. objective rule violations
    hard = [f for f in validation.failures if is_hard(f)]
    if hard:
        return Decision(
            status=ReceiptStatus.REJECTED,
            reason="; ".join(f.message for f in hard),
            rule="hard_failure",
            details=validation.failures,
        )

    # 3. no store to credit the visit to
    if not has_store:
        return Decision(
            status=ReceiptStatus.FLAGGED,
            reason="Store could not be identified from the receipt; a store must be assigned",
            rule="storeless",
            details=validation.failures,
        )

    # 4. elevated but not conclusive fraud score
    if fraud.overall >= policy.review_threshold:
        indicators = ", ".join(fraud.indicators) or f"fraud score {fraud.overall}"
        return Decision(
            status=ReceiptStatus.FLAGGED,
            reason=f"Needs review: {indicators}",
            rule="fraud_review",
            details=validation.failures,
        )

    # 5. soft failures (identity mismatch, unreadable fields)
    if validation.failures:
        return Decision(
            status=ReceiptStatus.FLAGGED,
            reason="Needs review: " + "; ".join(f.message for f in validation.failures),
            rule="soft_failure",
            details=validation.failures,
        )

    return Decision(status=ReceiptStatus.APPROVED, reason="Receipt verified", rule="approved")
