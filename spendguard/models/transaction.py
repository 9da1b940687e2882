import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, Float, String, Text, func, Index
from sqlalchemy.dialects.postgresql import UUID
from spendguard.core.database import Base

EXPENSE = "expense"
INCOME = "income"

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False, default=EXPENSE)  # expense, income
    title = Column(String, nullable=True)
    amount = Column(Float, nullable=False)  # positive magnitude, direction comes from kind
    category = Column(String, nullable=True, index=True)
    transaction_date = Column(DateTime, nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Python-side default keeps sub-second ordering between rapid writes
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Indexes for history lookups
    __table_args__ = (
        Index('idx_owner_kind_date', 'owner_id', 'kind', 'transaction_date'),
        Index('idx_owner_category', 'owner_id', 'category'),
    )

    @property
    def is_expense(self) -> bool:
        return (self.kind or EXPENSE) == EXPENSE
