"""
Visit ledger model.
"""
from sqlalchemy import Boolean, Column, DateTime, Index, String

from receiptrewards.clock import utcnow
from receiptrewards.database import Base


class VisitModel(Base):
    __tablename__ = "visits"

    id = Column(String, primary_key=True)
    customer_id = Column(String, nullable=False, index=True)
    store_id = Column(String, nullable=False, index=True)
    method = Column(String, nullable=False)  # qr | receipt
    # Unique: one receipt produces at most one visit. QR visits leave it null.
    receipt_id = Column(String, unique=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    reward_earned = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_visits_customer_store_ts", "customer_id", "store_id", "timestamp"),
    )
