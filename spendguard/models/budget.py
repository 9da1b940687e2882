import uuid
from sqlalchemy import Column, String, DateTime, Float, Boolean, Text, func
from sqlalchemy.dialects.postgresql import UUID
from spendguard.core.database import Base

class Budget(Base):
    __tablename__ = "budgets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)
    amount = Column(Float, nullable=False)  # spending limit for the period
    period = Column(String, nullable=False, default="monthly")  # weekly, monthly, yearly
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    alert_threshold = Column(Float, default=80.0)  # percent of limit
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
