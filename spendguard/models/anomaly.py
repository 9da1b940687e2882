import uuid
from sqlalchemy import Column, String, DateTime, Text, JSON, func
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from spendguard.core.database import Base

class Anomaly(Base):
    __tablename__ = "anomalies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String, nullable=False, index=True)
    transaction_id = Column(UUID(as_uuid=True), nullable=True, index=True)  # null for window findings (SILENT_LEAK)
    anomaly_type = Column(String, nullable=False)  # DUPLICATE_TRANSACTION, SPENDING_SPIKE, ...
    severity = Column(String, nullable=False)  # HIGH, MEDIUM, LOW
    status = Column(String, nullable=False, default="PENDING", index=True)  # PENDING, CONFIRMED, DISMISSED
    evidence = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    explanation = Column(Text, nullable=False)
    # Idempotency key, e.g. "<transaction id>:<type>"; retried detection cannot insert twice
    dedupe_key = Column(String, nullable=False, unique=True)
    detected_at = Column(DateTime, default=func.now())
    resolved_at = Column(DateTime, nullable=True)
    resolution_note = Column(Text, nullable=True)

    # No foreign key: anomalies are kept when their expense is deleted
    transaction = relationship(
        "Transaction",
        primaryjoin="foreign(Anomaly.transaction_id) == Transaction.id",
        viewonly=True,
    )
