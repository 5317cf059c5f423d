"""
Store model. Stores are managed elsewhere; this service only reads them.
"""
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from receiptrewards.clock import utcnow
from receiptrewards.database import Base


class StoreModel(Base):
    __tablename__ = "stores"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    address = Column(String)
    is_active = Column(Boolean, default=True, nullable=False)
    allow_qr_scanning = Column(Boolean, default=True, nullable=False)
    allow_receipt_uploads = Column(Boolean, default=True, nullable=False)

    # Receipt matching rules
    tin = Column(String, index=True)
    branch_name = Column(String)
    min_receipt_amount = Column(Float)
    receipt_validity_hours = Column(Integer)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
