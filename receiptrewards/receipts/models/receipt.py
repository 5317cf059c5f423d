"""
SQLAlchemy model for receipt persistence.

Receipts are never deleted: rejected rows stay for audit and the
non-rejected ones feed duplicate detection.
"""
from sqlalchemy import Column, DateTime, Float, Index, Integer, JSON, String, Text

from receiptrewards.clock import utcnow
from receiptrewards.database import Base
from receiptrewards.receipts.schemas import ReceiptStatus


class ReceiptModel(Base):
    __tablename__ = "receipts"

    id = Column(String, primary_key=True)
    image_ref = Column(String, nullable=False)
    customer_phone = Column(String, index=True)
    customer_id = Column(String, index=True)
    store_id = Column(String, index=True)  # null until resolved or assigned

    # Extracted fields
    tax_id = Column(String)
    invoice_number = Column(String, index=True)
    branch_text = Column(String)
    date_on_receipt = Column(DateTime)
    total_amount = Column(Float)
    barcode = Column(String, index=True)
    raw_text = Column(Text)
    image_hash = Column(String(64), index=True)
    extraction_json = Column(JSON)

    # Fraud fields
    fraud_score = Column(Integer)
    tampering_score = Column(Integer)
    ai_detection_score = Column(Integer)
    fraud_flags = Column(JSON, default=list)

    validation_flags = Column(JSON, default=list)
    rejection_details_json = Column(JSON, default=list)

    status = Column(String, nullable=False, default=ReceiptStatus.PENDING.value, index=True)
    reason = Column(Text)
    processed_at = Column(DateTime)

    reviewed_by = Column(String)
    reviewed_at = Column(DateTime)
    review_notes = Column(Text)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_receipts_store_status", "store_id", "status"),
    )
