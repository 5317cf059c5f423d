"""
Customer receipt endpoints.

POST /api/receipts/upload                        upload + verify a receipt
GET  /api/receipts/{id}                          stored outcome
POST /api/receipts/{id}/request-review           escalate a flagged receipt
POST /api/receipts/{id}/link-store               pick the store for a storeless receipt
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from receiptrewards.config import settings
from receiptrewards.database import get_db
from receiptrewards.errors import NotFound
from receiptrewards.notifications import Notifier, get_notifier, outcome_events
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.pipeline import (
    Policies,
    UploadResult,
    get_policies,
    link_store,
    process_upload,
    receipt_outcome,
)
from receiptrewards.receipts.pipeline.extraction import FieldExtractor, get_extractor
from receiptrewards.receipts.pipeline.fraud import FraudScorer, get_fraud_scorer
from receiptrewards.receipts.review import request_review
from receiptrewards.receipts.schemas import (
    CustomerActionRequest,
    LinkStoreRequest,
    ReceiptOutcome,
    ReceiptStatus,
)
from receiptrewards.receipts.storage import ImageStore, get_image_store

logger = logging.getLogger(__name__)
router = APIRouter()

HTTP_STATUS = {
    ReceiptStatus.APPROVED: 200,
    ReceiptStatus.REJECTED: 400,
    ReceiptStatus.FLAGGED: 202,
    ReceiptStatus.FLAGGED_MANUAL_REQUESTED: 202,
    ReceiptStatus.PENDING: 202,
}

# Client-chosen ids also name the stored image file
RECEIPT_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def respond(
    result: UploadResult,
    background_tasks: BackgroundTasks,
    notifier: Notifier,
    reviewed: bool = False,
    status_code: Optional[int] = None,
) -> JSONResponse:
    """Queue notifications and map the outcome to its HTTP status."""
    outcome = result.outcome
    if not outcome.replayed:
        events = outcome_events(result.phone, outcome, result.credit, reviewed=reviewed)
        if events:
            background_tasks.add_task(notifier.dispatch, events)
    return JSONResponse(
        status_code=status_code or HTTP_STATUS[outcome.status],
        content=outcome.model_dump(mode="json"),
    )


# ── POST /api/receipts/upload ────────────────────────────────────────────
@router.post("/receipts/upload", response_model=ReceiptOutcome)
def upload_receipt(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    phone: str = Form(...),
    store_id: Optional[str] = Form(default=None),
    receipt_id: Optional[str] = Form(default=None),
    db: Session = Depends(get_db),
    extractor: FieldExtractor = Depends(get_extractor),
    scorer: FraudScorer = Depends(get_fraud_scorer),
    image_store: ImageStore = Depends(get_image_store),
    notifier: Notifier = Depends(get_notifier),
    policies: Policies = Depends(get_policies),
):
    phone = phone.strip()
    if not phone:
        raise HTTPException(status_code=400, detail="phone must not be empty")
    if receipt_id and not RECEIPT_ID.match(receipt_id):
        raise HTTPException(status_code=400, detail="receipt_id may only contain letters, digits, - and _")
    content_type = file.content_type or "application/octet-stream"
    if content_type not in settings.ALLOWED_UPLOAD_TYPES:
        raise HTTPException(status_code=415, detail=f"Unsupported file type {content_type}")
    image = file.file.read()
    if not image:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(image) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Uploaded file is too large")

    logger.info("Upload: phone=%s store=%s size=%d", phone, store_id or "-", len(image))

    result = process_upload(
        db,
        image=image,
        phone=phone,
        extractor=extractor,
        scorer=scorer,
        store_image=lambda rid: image_store.save(rid, image, content_type),
        filename=file.filename or "",
        store_id=store_id or None,
        receipt_id=receipt_id,
        policies=policies,
    )
    return respond(result, background_tasks, notifier)


# ── GET /api/receipts/{receipt_id} ───────────────────────────────────────
@router.get("/receipts/{receipt_id}", response_model=ReceiptOutcome)
def get_receipt_status(receipt_id: str, db: Session = Depends(get_db)):
    receipt = db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).first()
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found")
    return receipt_outcome(db, receipt)


# ── POST /api/receipts/{receipt_id}/request-review ──────────────────────
@router.post("/receipts/{receipt_id}/request-review", response_model=ReceiptOutcome)
def request_manual_review(
    receipt_id: str,
    req: CustomerActionRequest,
    db: Session = Depends(get_db),
):
    result = request_review(db, receipt_id, req.phone)
    return result.outcome


# ── POST /api/receipts/{receipt_id}/link-store ──────────────────────────
@router.post("/receipts/{receipt_id}/link-store", response_model=ReceiptOutcome)
def link_receipt_store(
    receipt_id: str,
    req: LinkStoreRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    policies: Policies = Depends(get_policies),
):
    result = link_store(db, receipt_id, req.phone, req.store_id, policies=policies)
    return respond(result, background_tasks, notifier)
