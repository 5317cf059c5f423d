"""
Manual review workflow for flagged receipts.

Approval runs the same ledger and accrual path as an automatic approval.
Two reviewers racing on one receipt both issue a conditional UPDATE; the
loser gets ``AlreadyProcessed``.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from receiptrewards.auth import Reviewer
from receiptrewards.clock import utcnow
from receiptrewards.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from receiptrewards.loyalty.models import CustomerModel
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.models.store import StoreModel
from receiptrewards.receipts.pipeline import (
    Policies,
    UploadResult,
    check_store_accepts_receipts,
    outcome_with_credit,
    receipt_outcome,
    settle,
    stored_extraction,
    stored_fraud,
)
from receiptrewards.receipts.pipeline.lifecycle import ensure_not_terminal, transition
from receiptrewards.receipts.pipeline.stores import to_store_config
from receiptrewards.receipts.pipeline.validator import tax_ids_match
from receiptrewards.receipts.schemas import (
    CustomerSummary,
    Decision,
    FieldFailure,
    ReceiptStatus,
    ReceiptSummary,
    ReviewDetail,
    StoreComparison,
    StoreReceiptConfig,
)

logger = logging.getLogger(__name__)

REVIEWABLE = {ReceiptStatus.FLAGGED, ReceiptStatus.FLAGGED_MANUAL_REQUESTED}


def _load(db: Session, receipt_id: str) -> ReceiptModel:
    receipt = db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).first()
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found")
    return receipt


def check_scope(reviewer: Reviewer, receipt: ReceiptModel) -> None:
    if reviewer.is_superadmin:
        return
    if receipt.store_id is None:
        raise Unauthorized("Only super admin can review receipts without store assignment")
    if not reviewer.can_access_store(receipt.store_id):
        raise Unauthorized("You can only review receipts from your store")


def review_receipt(
    db: Session,
    receipt_id: str,
    reviewer: Reviewer,
    action: str,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    store_id: Optional[str] = None,
    policies: Optional[Policies] = None,
    now: Optional[datetime] = None,
) -> UploadResult:
    policies = policies or Policies()
    now = now or utcnow()

    receipt = _load(db, receipt_id)
    check_scope(reviewer, receipt)
    ensure_not_terminal(receipt)
    status = ReceiptStatus(receipt.status)
    target = ReceiptStatus.APPROVED if action == "approve" else ReceiptStatus.REJECTED
    if not status.is_reviewable:
        raise InvalidTransition(receipt.id, status.value, target.value)

    audit = dict(reviewed_by=reviewer.id, reviewed_at=now, review_notes=notes)
    phone = receipt.customer_phone

    if action == "reject":
        if not reason or not reason.strip():
            raise InvalidRequest("A reason is required to reject a receipt")
        transition(
            db, receipt, ReceiptStatus.REJECTED, allowed_from=REVIEWABLE,
            reason=reason.strip(), processed_at=now, **audit,
        )
        db.commit()
        logger.info("Receipt %s rejected by %s", receipt.id, reviewer.id)
        return UploadResult(outcome=receipt_outcome(db, receipt), phone=phone)

    if action != "approve":
        raise InvalidRequest(f"Unknown review action {action}")

    assigned = receipt.store_id
    pinned = (
        ReceiptModel.store_id.is_(None) if assigned is None else ReceiptModel.store_id == assigned,
    )
    if assigned is None:
        if not store_id:
            raise InvalidRequest(
                "Receipt has no store assigned; include store_id in the approval"
            )
        if not reviewer.is_superadmin:
            raise Unauthorized("Only super admin can assign store to receipts")
        check_store_accepts_receipts(
            db.query(StoreModel).filter(StoreModel.id == store_id).first(), store_id
        )
        assigned = store_id
        logger.info("Store %s assigned to receipt %s by %s", store_id, receipt.id, reviewer.id)

    decision = Decision(
        status=ReceiptStatus.APPROVED, reason="Manually approved by admin", rule="manual_review"
    )
    credit = settle(
        db, receipt, decision, policies, now,
        allowed_from=REVIEWABLE, where=pinned, store_id=assigned, **audit,
    )
    db.commit()
    logger.info("Receipt %s approved by %s, visit %s", receipt.id, reviewer.id, credit.visit.id)
    return UploadResult(outcome=outcome_with_credit(db, receipt, credit), phone=phone, credit=credit)


def request_review(db: Session, receipt_id: str, phone: str) -> UploadResult:
    """Customer escalates a flagged receipt to the manual queue."""
    receipt = _load(db, receipt_id)
    if receipt.customer_phone != phone:
        raise Unauthorized(f"Receipt {receipt_id} belongs to another customer")
    transition(
        db, receipt, ReceiptStatus.FLAGGED_MANUAL_REQUESTED,
        allowed_from={ReceiptStatus.FLAGGED},
    )
    db.commit()
    logger.info("Manual review requested for receipt %s", receipt.id)
    return UploadResult(outcome=receipt_outcome(db, receipt), phone=phone)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def compare_with_store(receipt: ReceiptModel, store: StoreReceiptConfig) -> list[StoreComparison]:
    rows = [
        StoreComparison(
            field="tax_id",
            receipt_value=receipt.tax_id,
            store_value=store.tin,
            matches=tax_ids_match(receipt.tax_id, store.tin) if receipt.tax_id and store.tin else None,
        ),
        StoreComparison(
            field="branch",
            receipt_value=receipt.branch_text,
            store_value=store.branch_name,
            matches=(
                store.branch_name.lower() in receipt.branch_text.lower()
                if receipt.branch_text and store.branch_name else None
            ),
        ),
        StoreComparison(
            field="amount",
            receipt_value=_text(receipt.total_amount),
            store_value=_text(store.min_receipt_amount),
            matches=(
                receipt.total_amount >= store.min_receipt_amount
                if receipt.total_amount is not None else None
            ),
        ),
        StoreComparison(
            field="date",
            receipt_value=_text(receipt.date_on_receipt),
            store_value=f"within {store.receipt_validity_hours} hours",
        ),
    ]
    return rows


def review_detail(db: Session, receipt_id: str, reviewer: Reviewer) -> ReviewDetail:
    receipt = _load(db, receipt_id)
    check_scope(reviewer, receipt)

    store_config = None
    comparison: list[StoreComparison] = []
    if receipt.store_id:
        store = db.query(StoreModel).filter(StoreModel.id == receipt.store_id).first()
        if store is not None:
            store_config = to_store_config(store)
            comparison = compare_with_store(receipt, store_config)

    customer = db.query(CustomerModel).filter(CustomerModel.phone == receipt.customer_phone).first()
    return ReviewDetail(
        receipt_id=receipt.id,
        status=ReceiptStatus(receipt.status),
        reason=receipt.reason or "",
        image_ref=receipt.image_ref,
        customer=CustomerSummary(
            phone=receipt.customer_phone,
            name=customer.name if customer else None,
            total_visits=customer.total_visits if customer else 0,
        ),
        store=store_config,
        extraction=stored_extraction(receipt),
        fraud=stored_fraud(receipt),
        validation_flags=receipt.validation_flags or [],
        rejection_details=[FieldFailure.model_validate(d) for d in (receipt.rejection_details_json or [])],
        comparison=comparison,
        reviewed_by=receipt.reviewed_by,
        reviewed_at=receipt.reviewed_at,
        review_notes=receipt.review_notes,
        created_at=receipt.created_at,
    )


def list_receipts(
    db: Session, reviewer: Reviewer, status: Optional[ReceiptStatus] = None, limit: int = 100
) -> list[ReceiptSummary]:
    """Review queue; defaults to receipts awaiting a human."""
    query = db.query(ReceiptModel)
    if status is not None:
        query = query.filter(ReceiptModel.status == status.value)
    else:
        query = query.filter(ReceiptModel.status.in_([s.value for s in REVIEWABLE]))
    if not reviewer.is_superadmin:
        if reviewer.store_id is None:
            return []
        query = query.filter(ReceiptModel.store_id == reviewer.store_id)

    rows = query.order_by(ReceiptModel.created_at.desc()).limit(limit).all()
    return [
        ReceiptSummary(
            receipt_id=r.id,
            status=ReceiptStatus(r.status),
            customer_phone=r.customer_phone,
            store_id=r.store_id,
            total_amount=r.total_amount,
            fraud_score=r.fraud_score,
            reason=r.reason or "",
            created_at=r.created_at,
        )
        for r in rows
    ]
