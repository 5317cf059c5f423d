"""
Visit ledger.

Records exactly one visit per approved receipt and keeps the customer's
visit counter in step with the ledger. Runs inside the caller's
transaction; the caller commits or rolls back.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from receiptrewards.clock import utcnow
from receiptrewards.errors import DuplicateVisit
from receiptrewards.loyalty.models import CustomerModel, VisitModel

logger = logging.getLogger(__name__)


def get_or_create_customer(db: Session, phone: str, name: Optional[str] = None) -> CustomerModel:
    customer = db.query(CustomerModel).filter(CustomerModel.phone == phone).first()
    if customer is not None:
        return customer
    customer = CustomerModel(id=str(uuid.uuid4()), phone=phone, name=name or phone, total_visits=0)
    try:
        with db.begin_nested():
            db.add(customer)
            db.flush()
    except IntegrityError:
        customer = db.query(CustomerModel).filter(CustomerModel.phone == phone).first()
        if customer is None:
            raise
        return customer
    logger.info("Created customer %s for %s", customer.id, phone)
    return customer


def last_visit_at(db: Session, phone: str, store_id: str) -> Optional[datetime]:
    """Most recent visit of the customer at this store, if any."""
    return (
        db.query(VisitModel.timestamp)
        .join(CustomerModel, CustomerModel.id == VisitModel.customer_id)
        .filter(CustomerModel.phone == phone, VisitModel.store_id == store_id)
        .order_by(VisitModel.timestamp.desc())
        .limit(1)
        .scalar()
    )


def record_visit(
    db: Session,
    *,
    phone: str,
    store_id: str,
    method: str = "receipt",
    receipt_id: Optional[str] = None,
    name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[VisitModel, CustomerModel]:
    """Create the visit and bump the customer counter.

    Raises ``DuplicateVisit`` if a visit already references *receipt_id*.
    A losing insert only unwinds its own savepoint; the rest of the
    caller's transaction is untouched.
    """
    now = now or utcnow()

    if receipt_id is not None:
        existing = db.query(VisitModel.id).filter(VisitModel.receipt_id == receipt_id).first()
        if existing is not None:
            raise DuplicateVisit(receipt_id)

    customer = get_or_create_customer(db, phone, name)
    visit = VisitModel(
        id=str(uuid.uuid4()),
        customer_id=customer.id,
        store_id=store_id,
        method=method,
        receipt_id=receipt_id,
        timestamp=now,
        reward_earned=False,
    )
    try:
        with db.begin_nested():
            db.add(visit)
            db.flush()
    except IntegrityError as exc:
        logger.warning("Visit insert for receipt %s lost a race", receipt_id)
        raise DuplicateVisit(receipt_id) from exc

    # increment in SQL so concurrent visits do not lose updates
    db.query(CustomerModel).filter(CustomerModel.id == customer.id).update(
        {
            CustomerModel.total_visits: CustomerModel.total_visits + 1,
            CustomerModel.last_visit_at: now,
            CustomerModel.updated_at: now,
        },
        synchronize_session=False,
    )
    db.expire(customer)
    logger.info("Visit %s recorded for %s at store %s (%s)", visit.id, phone, store_id, method)
    return visit, customer
