import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Index, event
from sqlalchemy.dialects.postgresql import UUID, JSONB
from spendguard.core.database import Base

class AuditLog(Base):
    """Append-only record of state-changing actions."""
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)  # EXPENSE_CREATE, ANOMALY_RESOLVE, ...
    resource = Column(String, nullable=False)  # Expense, Income, Budget, Anomaly, User, System
    resource_id = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)

    __table_args__ = (
        Index('idx_audit_owner_timestamp', 'owner_id', 'timestamp'),
    )


@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target):
    raise ValueError("Audit logs are immutable and cannot be updated.")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ValueError("Audit logs are append-only and cannot be deleted.")
