"""
Receipt verification pipeline.

Orchestrates: extract fields → score fraud → resolve store → validate →
decide → (approved) visit ledger + reward accrual.

Every upload is one transaction. The receipt row is written as
``pending`` first so an upstream failure leaves a retryable record.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from receiptrewards.clock import utcnow
from receiptrewards.errors import (
    AlreadyProcessed,
    DuplicateVisit,
    NotFound,
    StoreUnavailable,
    Unauthorized,
    UpstreamUnavailable,
)
from receiptrewards.loyalty.accrual import AccrualPolicy, VisitCredit, credit_visit
from receiptrewards.loyalty.ledger import last_visit_at
from receiptrewards.loyalty.models import CustomerModel, RewardModel, VisitModel
from receiptrewards.receipts.models.receipt import ReceiptModel
from receiptrewards.receipts.models.store import StoreModel
from receiptrewards.receipts.pipeline.decision import DecisionPolicy, decide
from receiptrewards.receipts.pipeline.extraction import FieldExtractor
from receiptrewards.receipts.pipeline.fraud import FraudScorer
from receiptrewards.receipts.pipeline.lifecycle import transition, update_in_state
from receiptrewards.receipts.pipeline.stores import resolve_store, to_store_config
from receiptrewards.receipts.pipeline.validator import ValidationPolicy, validate
from receiptrewards.receipts.schemas import (
    Decision,
    DuplicateMatches,
    ExtractionResult,
    FieldFailure,
    FraudScore,
    ReceiptOutcome,
    ReceiptStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class Policies:
    validation: ValidationPolicy = field(default_factory=ValidationPolicy)
    decision: DecisionPolicy = field(default_factory=DecisionPolicy)
    accrual: AccrualPolicy = field(default_factory=AccrualPolicy)

    @classmethod
    def from_settings(cls) -> "Policies":
        return cls(
            validation=ValidationPolicy.from_settings(),
            decision=DecisionPolicy.from_settings(),
            accrual=AccrualPolicy.from_settings(),
        )


def get_policies() -> Policies:
    return Policies.from_settings()


@dataclass
class UploadResult:
    outcome: ReceiptOutcome
    phone: str
    credit: Optional[VisitCredit] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def check_store_accepts_receipts(store: Optional[StoreModel], store_id: str) -> StoreModel:
    if store is None:
        raise NotFound(f"Store {store_id} not found")
    if not store.is_active:
        raise StoreUnavailable(f"Store {store.name} is not active")
    if not store.allow_receipt_uploads:
        raise StoreUnavailable(f"Store {store.name} does not accept receipt uploads")
    return store


def find_duplicates(db: Session, extraction: ExtractionResult, receipt_id: str) -> DuplicateMatches:
    """Earlier non-rejected receipts sharing an invoice, barcode or image."""
    matches = DuplicateMatches()
    for key in ("invoice_number", "barcode", "image_hash"):
        value = getattr(extraction, key)
        if not value:
            continue
        column = getattr(ReceiptModel, key)
        other = (
            db.query(ReceiptModel.id)
            .filter(
                column == value,
                ReceiptModel.id != receipt_id,
                ReceiptModel.status != ReceiptStatus.REJECTED.value,
            )
            .order_by(ReceiptModel.created_at)
            .first()
        )
        if other is not None:
            setattr(matches, key, other[0])
    return matches


def _apply_extraction(receipt: ReceiptModel, extraction: ExtractionResult, fraud: FraudScore) -> None:
    receipt.tax_id = extraction.tax_id
    receipt.invoice_number = extraction.invoice_number
    receipt.branch_text = extraction.branch_text
    receipt.date_on_receipt = extraction.date_on_receipt
    receipt.total_amount = extraction.total_amount
    receipt.barcode = extraction.barcode
    receipt.raw_text = extraction.raw_text
    receipt.image_hash = extraction.image_hash
    receipt.extraction_json = extraction.model_dump(mode="json")
    receipt.fraud_score = fraud.overall
    receipt.tampering_score = fraud.tampering
    receipt.ai_detection_score = fraud.ai_generated
    receipt.fraud_flags = list(fraud.indicators)


def stored_extraction(receipt: ReceiptModel) -> ExtractionResult:
    if receipt.extraction_json:
        return ExtractionResult.model_validate(receipt.extraction_json)
    return ExtractionResult(
        raw_text=receipt.raw_text or "",
        tax_id=receipt.tax_id,
        invoice_number=receipt.invoice_number,
        branch_text=receipt.branch_text,
        date_on_receipt=receipt.date_on_receipt,
        total_amount=receipt.total_amount,
        barcode=receipt.barcode,
        image_hash=receipt.image_hash,
    )


def stored_fraud(receipt: ReceiptModel) -> FraudScore:
    return FraudScore(
        overall=receipt.fraud_score or 0,
        tampering=receipt.tampering_score or 0,
        ai_generated=receipt.ai_detection_score or 0,
        indicators=receipt.fraud_flags or [],
    )


def receipt_outcome(db: Session, receipt: ReceiptModel, replayed: bool = False) -> ReceiptOutcome:
    """Rebuild the caller-facing outcome from what is stored."""
    status = ReceiptStatus(receipt.status)
    outcome = ReceiptOutcome(
        status=status,
        receipt_id=receipt.id,
        reason=receipt.reason or "",
        rejection_details=[FieldFailure.model_validate(d) for d in (receipt.rejection_details_json or [])],
        can_request_review=status == ReceiptStatus.FLAGGED,
        replayed=replayed,
    )
    if status != ReceiptStatus.APPROVED:
        return outcome

    visit = db.query(VisitModel).filter(VisitModel.receipt_id == receipt.id).first()
    if visit is None:
        return outcome
    customer = db.query(CustomerModel).filter(CustomerModel.id == visit.customer_id).first()
    outcome.visit_id = visit.id
    outcome.visit_count = customer.total_visits if customer else None
    outcome.reward_earned = visit.reward_earned
    if visit.reward_earned:
        reward = db.query(RewardModel).filter(RewardModel.trigger_visit_id == visit.id).first()
        if reward is not None:
            outcome.reward_id = reward.id
            outcome.reward_code = reward.code
    return outcome


def settle(
    db: Session,
    receipt: ReceiptModel,
    decision: Decision,
    policies: Policies,
    now: datetime,
    allowed_from: Optional[set[ReceiptStatus]] = None,
    where: tuple = (),
    **values,
) -> Optional[VisitCredit]:
    """Write the decision and, for approvals, credit the visit."""
    values.update(
        reason=decision.reason,
        processed_at=now,
        rejection_details_json=[d.model_dump(mode="json") for d in decision.details],
    )
    transition(db, receipt, decision.status, allowed_from=allowed_from, where=where, **values)
    if decision.status != ReceiptStatus.APPROVED:
        return None

    credit = credit_visit(
        db,
        phone=receipt.customer_phone,
        store_id=receipt.store_id,
        method="receipt",
        receipt_id=receipt.id,
        policy=policies.accrual,
        now=now,
    )
    receipt.customer_id = credit.customer.id
    db.flush()
    return credit


def outcome_with_credit(db: Session, receipt: ReceiptModel, credit: Optional[VisitCredit]) -> ReceiptOutcome:
    outcome = receipt_outcome(db, receipt)
    if credit is not None:
        outcome.visit_id = credit.visit.id
        outcome.visit_count = credit.customer.total_visits
        outcome.reward_earned = credit.reward is not None
        if credit.reward is not None:
            outcome.reward_id = credit.reward.id
            outcome.reward_code = credit.reward.code
    return outcome


def _replay(db: Session, receipt_id: str, phone: str) -> UploadResult:
    db.rollback()
    receipt = db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).first()
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found")
    logger.info("Receipt %s was processed concurrently, returning stored outcome", receipt_id)
    return UploadResult(outcome=receipt_outcome(db, receipt, replayed=True), phone=phone)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def process_upload(
    db: Session,
    *,
    image: bytes,
    phone: str,
    extractor: FieldExtractor,
    scorer: FraudScorer,
    store_image: Optional[Callable[[str], str]] = None,
    filename: str = "",
    store_id: Optional[str] = None,
    receipt_id: Optional[str] = None,
    policies: Optional[Policies] = None,
    now: Optional[datetime] = None,
) -> UploadResult:
    """Run the full verification pipeline on one uploaded receipt.

    A ``receipt_id`` makes the call idempotent: a receipt that already
    left ``pending`` is not reprocessed and its stored outcome is
    returned with ``replayed=True``. ``store_image`` persists the upload
    and is only called for a new receipt that passed the store and
    ownership checks.
    """
    policies = policies or Policies()
    now = now or utcnow()

    receipt = None
    if receipt_id:
        receipt = db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).first()
        if receipt is not None:
            if receipt.customer_phone != phone:
                raise Unauthorized(f"Receipt {receipt_id} belongs to another customer")
            if receipt.status != ReceiptStatus.PENDING.value:
                logger.info("Receipt %s already %s, replaying", receipt_id, receipt.status)
                return UploadResult(outcome=receipt_outcome(db, receipt, replayed=True), phone=phone)

    store = None
    if store_id:
        store = check_store_accepts_receipts(
            db.query(StoreModel).filter(StoreModel.id == store_id).first(), store_id
        )

    if receipt is None:
        receipt = ReceiptModel(
            id=receipt_id or str(uuid.uuid4()),
            image_ref="",
            customer_phone=phone,
            store_id=store_id,
            status=ReceiptStatus.PENDING.value,
            created_at=now,
        )
        db.add(receipt)
        try:
            db.flush()
        except IntegrityError:
            return _replay(db, receipt.id, phone)
        if store_image is not None:
            receipt.image_ref = store_image(receipt.id)
    elif store_id:
        receipt.store_id = store_id

    try:
        logger.info("Pipeline start: extract fields (%s)", receipt.id)
        extraction = extractor.extract(image, filename)
        logger.info("Pipeline: score fraud (%s)", receipt.id)
        fraud = scorer.score(image, extraction)
    except Exception as exc:
        logger.warning("Upstream failure on receipt %s", receipt.id, exc_info=True)
        receipt.validation_flags = ["upstream_unavailable"]
        receipt.reason = "Receipt could not be processed yet; please retry"
        db.commit()
        raise UpstreamUnavailable(f"Receipt processing unavailable: {exc}", receipt_id=receipt.id) from exc

    _apply_extraction(receipt, extraction, fraud)
    logger.info("Fraud score %d for receipt %s", fraud.overall, receipt.id)

    if store is None:
        match = resolve_store(db, extraction.tax_id, extraction.branch_text)
        if match is not None:
            store = match.store
            receipt.store_id = store.id
            logger.info("Resolved store %s for receipt %s (%s)", store.id, receipt.id, match.method)
        else:
            logger.info("No store resolved for receipt %s", receipt.id)

    logger.info("Pipeline: validate (%s)", receipt.id)
    validation = validate(
        extraction,
        to_store_config(store) if store else None,
        policies.validation,
        duplicates=find_duplicates(db, extraction, receipt.id),
        last_visit_at=last_visit_at(db, phone, store.id) if store else None,
        now=now,
    )
    decision = decide(extraction, fraud, validation, has_store=store is not None, policy=policies.decision)
    logger.info("Decision for receipt %s: %s (%s)", receipt.id, decision.status.value, decision.rule)
    if decision.status != ReceiptStatus.APPROVED:
        logger.warning("Receipt %s %s: %s", receipt.id, decision.status.value, decision.reason)

    flags = list(extraction.flags) + [f"{f.field}:{f.issue}" for f in validation.failures]
    try:
        credit = settle(db, receipt, decision, policies, now, validation_flags=flags)
        db.commit()
    except (IntegrityError, DuplicateVisit, AlreadyProcessed):
        return _replay(db, receipt.id, phone)

    return UploadResult(outcome=outcome_with_credit(db, receipt, credit), phone=phone, credit=credit)


def link_store(
    db: Session,
    receipt_id: str,
    phone: str,
    store_id: str,
    policies: Optional[Policies] = None,
    now: Optional[datetime] = None,
) -> UploadResult:
    """Customer picks the store for a storeless flagged receipt.

    The stored extraction is re-validated against that store and decided
    again. If the result is still ``flagged`` the receipt only gains its
    store and a fresh reason.
    """
    policies = policies or Policies()
    now = now or utcnow()

    receipt = db.query(ReceiptModel).filter(ReceiptModel.id == receipt_id).first()
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found")
    if receipt.customer_phone != phone:
        raise Unauthorized(f"Receipt {receipt_id} belongs to another customer")
    status = ReceiptStatus(receipt.status)
    if status.is_terminal:
        raise AlreadyProcessed(receipt.id, status.value)
    if status != ReceiptStatus.FLAGGED or receipt.store_id is not None:
        raise StoreUnavailable("Only flagged receipts without a store can be linked to one")

    store = check_store_accepts_receipts(
        db.query(StoreModel).filter(StoreModel.id == store_id).first(), store_id
    )
    extraction = stored_extraction(receipt)
    fraud = stored_fraud(receipt)
    validation = validate(
        extraction,
        to_store_config(store),
        policies.validation,
        duplicates=find_duplicates(db, extraction, receipt.id),
        last_visit_at=last_visit_at(db, phone, store.id),
        now=now,
    )
    decision = decide(extraction, fraud, validation, has_store=True, policy=policies.decision)
    logger.info("Receipt %s linked to store %s: %s (%s)", receipt.id, store.id, decision.status.value, decision.rule)

    unlinked = (ReceiptModel.store_id.is_(None),)
    if decision.status == ReceiptStatus.FLAGGED:
        update_in_state(
            db, receipt, ReceiptStatus.FLAGGED, where=unlinked,
            store_id=store.id,
            reason=decision.reason,
            rejection_details_json=[d.model_dump(mode="json") for d in decision.details],
        )
        db.commit()
        return UploadResult(outcome=receipt_outcome(db, receipt), phone=phone)

    credit = settle(
        db, receipt, decision, policies, now,
        allowed_from={ReceiptStatus.FLAGGED}, where=unlinked, store_id=store.id,
    )
    db.commit()
    return UploadResult(outcome=outcome_with_credit(db, receipt, credit), phone=phone, credit=credit)
