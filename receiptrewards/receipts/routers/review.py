"""
Admin review endpoints.

GET  /api/admin/receipts                         review queue (?status=)
GET  /api/admin/receipts/{id}/review             receipt detail for review
POST /api/admin/receipts/{id}/review             approve / reject
POST /api/admin/maintenance/sweep                stale pending + reward expiry
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from receiptrewards.auth import Reviewer, get_reviewer, require_superadmin
from receiptrewards.database import get_db
from receiptrewards.maintenance import SweepResult, sweep
from receiptrewards.notifications import Notifier, get_notifier
from receiptrewards.receipts.pipeline import Policies, get_policies
from receiptrewards.receipts.review import list_receipts, review_detail, review_receipt
from receiptrewards.receipts.routers.receipts import respond
from receiptrewards.receipts.schemas import (
    ReceiptOutcome,
    ReceiptStatus,
    ReceiptSummary,
    ReviewDetail,
    ReviewRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ── GET /api/admin/receipts ──────────────────────────────────────────────
@router.get("/admin/receipts", response_model=list[ReceiptSummary])
def list_review_queue(
    status: Optional[ReceiptStatus] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    reviewer: Reviewer = Depends(get_reviewer),
):
    return list_receipts(db, reviewer, status=status, limit=min(limit, 500))


# ── GET /api/admin/receipts/{receipt_id}/review ─────────────────────────
@router.get("/admin/receipts/{receipt_id}/review", response_model=ReviewDetail)
def get_review(
    receipt_id: str,
    db: Session = Depends(get_db),
    reviewer: Reviewer = Depends(get_reviewer),
):
    return review_detail(db, receipt_id, reviewer)


# ── POST /api/admin/receipts/{receipt_id}/review ────────────────────────
@router.post("/admin/receipts/{receipt_id}/review", response_model=ReceiptOutcome)
def post_review(
    receipt_id: str,
    req: ReviewRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    reviewer: Reviewer = Depends(get_reviewer),
    notifier: Notifier = Depends(get_notifier),
    policies: Policies = Depends(get_policies),
):
    logger.info("Admin review: %s receipt %s by %s", req.action, receipt_id, reviewer.id)
    result = review_receipt(
        db,
        receipt_id,
        reviewer,
        req.action,
        reason=req.reason,
        notes=req.notes,
        store_id=req.store_id,
        policies=policies,
    )
    return respond(result, background_tasks, notifier, reviewed=True, status_code=200)


# ── POST /api/admin/maintenance/sweep ───────────────────────────────────
@router.post("/admin/maintenance/sweep", response_model=SweepResult)
def run_sweep(
    db: Session = Depends(get_db),
    reviewer: Reviewer = Depends(get_reviewer),
):
    require_superadmin(reviewer)
    return sweep(db)
