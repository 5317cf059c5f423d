"""
Receipt rule validator.

Pure function of its inputs: the extraction, the store's receipt rules,
an explicit policy value, duplicate matches looked up by the caller and
the customer's last visit time. It only *reports* failures; triage is
left to the decision engine.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from receiptrewards.clock import utcnow
from receiptrewards.config import settings
from receiptrewards.receipts.pipeline.stores import normalize_tax_id
from receiptrewards.receipts.schemas import (
    DuplicateMatches,
    ExtractionResult,
    FieldFailure,
    StoreReceiptConfig,
    ValidationOutcome,
)


@dataclass(frozen=True)
class ValidationPolicy:
    default_min_amount: float = 500.0
    default_validity_hours: int = 24
    visit_limit_hours: int = 24  # 0 disables
    future_tolerance_hours: int = 24

    @classmethod
    def from_settings(cls) -> "ValidationPolicy":
        return cls(
            default_min_amount=settings.DEFAULT_MIN_RECEIPT_AMOUNT,
            default_validity_hours=settings.DEFAULT_RECEIPT_VALIDITY_HOURS,
            visit_limit_hours=settings.VISIT_LIMIT_HOURS,
        )


# (field, issue) pairs that are objective enough to auto-reject
HARD_ISSUES: set[tuple[str, str]] = {
    ("duplicate", "invoice_number"),
    ("duplicate", "barcode"),
    ("duplicate", "image_hash"),
    ("amount", "below_minimum"),
    ("date", "expired"),
    ("visit_limit", "too_soon"),
}


def is_hard(failure: FieldFailure) -> bool:
    return (failure.field, failure.issue) in HARD_ISSUES


def _norm(value: str) -> str:
    return re.sub(r"[\s\-]+", "", value).upper()


def tax_ids_match(found: str, expected: str) -> bool:
    if _norm(found) == _norm(expected):
        return True
    digits = normalize_tax_id(found)
    return bool(digits) and digits == normalize_tax_id(expected)


def _fmt_amount(value: float) -> str:
    return f"{value:,.2f}"


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

def check_tax_id(ex: ExtractionResult, store: Optional[StoreReceiptConfig]) -> Optional[FieldFailure]:
    # Storeless receipts use the tax id for lookup instead
    if store is None or not store.tin:
        return None
    if not ex.tax_id:
        return FieldFailure(
            field="tax_id", issue="missing", expected=store.tin,
            message="Tax id could not be read from the receipt",
        )
    if not tax_ids_match(ex.tax_id, store.tin):
        return FieldFailure(
            field="tax_id", issue="mismatch", found=ex.tax_id, expected=store.tin,
            message=f"Tax id {ex.tax_id} does not match store tax id {store.tin}",
        )
    return None


def check_branch(ex: ExtractionResult, store: Optional[StoreReceiptConfig]) -> Optional[FieldFailure]:
    if store is None or not store.branch_name or not ex.branch_text:
        return None
    if store.branch_name.lower() not in ex.branch_text.lower():
        return FieldFailure(
            field="branch", issue="mismatch", found=ex.branch_text, expected=store.branch_name,
            message=f"Branch '{ex.branch_text}' does not mention '{store.branch_name}'",
        )
    return None


def check_amount(
    ex: ExtractionResult, store: Optional[StoreReceiptConfig], policy: ValidationPolicy
) -> Optional[FieldFailure]:
    minimum = store.min_receipt_amount if store else policy.default_min_amount
    if ex.total_amount is None:
        return FieldFailure(
            field="amount", issue="missing", expected=minimum,
            message="Total amount could not be read from the receipt",
        )
    if ex.total_amount < minimum:
        return FieldFailure(
            field="amount", issue="below_minimum", found=ex.total_amount, expected=minimum,
            message=f"Amount {_fmt_amount(ex.total_amount)} is below minimum {_fmt_amount(minimum)}",
        )
    return None


def check_date(
    ex: ExtractionResult,
    store: Optional[StoreReceiptConfig],
    policy: ValidationPolicy,
    now: datetime,
) -> Optional[FieldFailure]:
    hours = store.receipt_validity_hours if store else policy.default_validity_hours
    if ex.date_on_receipt is None:
        return FieldFailure(
            field="date", issue="missing", expected=f"within {hours} hours",
            message="Receipt date could not be read",
        )
    age = now - ex.date_on_receipt
    if age > timedelta(hours=hours):
        return FieldFailure(
            field="date", issue="expired",
            found=ex.date_on_receipt.isoformat(), expected=f"within {hours} hours",
            message=f"Receipt is older than {hours} hours",
        )
    if -age > timedelta(hours=policy.future_tolerance_hours):
        return FieldFailure(
            field="date", issue="future", found=ex.date_on_receipt.isoformat(),
            message="Receipt date is in the future",
        )
    return None


_DUPLICATE_LABELS = {
    "invoice_number": "invoice number",
    "barcode": "barcode",
    "image_hash": "receipt image",
}


def check_duplicates(ex: ExtractionResult, duplicates: DuplicateMatches) -> list[FieldFailure]:
    failures = []
    for key, label in _DUPLICATE_LABELS.items():
        other = getattr(duplicates, key)
        if other is None:
            continue
        failures.append(FieldFailure(
            field="duplicate", issue=key, found=getattr(ex, key), expected=None,
            message=f"Duplicate {label}: already submitted on receipt {other}",
        ))
    return failures


def check_visit_limit(
    last_visit_at: Optional[datetime], policy: ValidationPolicy, now: datetime
) -> Optional[FieldFailure]:
    if not policy.visit_limit_hours or last_visit_at is None:
        return None
    if now - last_visit_at < timedelta(hours=policy.visit_limit_hours):
        return FieldFailure(
            field="visit_limit", issue="too_soon", found=last_visit_at.isoformat(),
            expected=f"one visit per {policy.visit_limit_hours} hours",
            message=f"A visit was already recorded in the last {policy.visit_limit_hours} hours",
        )
    return None


def check_confidence(ex: ExtractionResult) -> Optional[FieldFailure]:
    if ex.confidence != "low":
        return None
    return FieldFailure(
        field="confidence", issue="low", found=ex.confidence, expected="medium",
        message="Receipt could not be read reliably",
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate(
    extraction: ExtractionResult,
    store: Optional[StoreReceiptConfig],
    policy: ValidationPolicy,
    duplicates: Optional[DuplicateMatches] = None,
    last_visit_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> ValidationOutcome:
    """Run every rule and collect failures. ``now`` defaults to utcnow."""
    if now is None:
        now = utcnow()

    failures: list[FieldFailure] = []
    for failure in (
        check_tax_id(extraction, store),
        check_branch(extraction, store),
        check_amount(extraction, store, policy),
        check_date(extraction, store, policy, now),
    ):
        if failure is not None:
            failures.append(failure)
    failures.extend(check_duplicates(extraction, duplicates or DuplicateMatches()))
    for failure in (
        check_visit_limit(last_visit_at, policy, now),
        check_confidence(extraction),
    ):
        if failure is not None:
            failures.append(failure)

    return ValidationOutcome(passed=not failures, failures=failures)
