"""
Customer model (identified by phone number).
"""
from sqlalchemy import Column, DateTime, Integer, String

from receiptrewards.clock import utcnow
from receiptrewards.database import Base


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(String, primary_key=True)
    phone = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    total_visits = Column(Integer, nullable=False, default=0)  # all-time, monotonic
    last_visit_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
