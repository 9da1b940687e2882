from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


class AuditAction(str, Enum):
    EXPENSE_CREATE = "EXPENSE_CREATE"
    EXPENSE_UPDATE = "EXPENSE_UPDATE"
    EXPENSE_DELETE = "EXPENSE_DELETE"
    INCOME_CREATE = "INCOME_CREATE"
    INCOME_UPDATE = "INCOME_UPDATE"
    INCOME_DELETE = "INCOME_DELETE"
    BUDGET_CREATE = "BUDGET_CREATE"
    BUDGET_UPDATE = "BUDGET_UPDATE"
    BUDGET_DELETE = "BUDGET_DELETE"
    ANOMALY_RESOLVE = "ANOMALY_RESOLVE"
    AUTH_LOGIN = "AUTH_LOGIN"
    AUTH_LOGOUT = "AUTH_LOGOUT"
    SYSTEM_EVENT = "SYSTEM_EVENT"


class AuditResource(str, Enum):
    EXPENSE = "Expense"
    INCOME = "Income"
    BUDGET = "Budget"
    ANOMALY = "Anomaly"
    USER = "User"
    SYSTEM = "System"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TransactionSummary(_CamelModel):
    """The expense an anomaly points at, as shown on the anomaly card."""
    id: str = Field(..., description="Transaction ID")
    title: Optional[str] = Field(None, description="Title; null once the expense is deleted")
    amount: Optional[float] = Field(None, description="Amount")
    category: Optional[str] = Field(None, description="Category")
    transaction_date: Optional[datetime] = Field(None, description="When the expense happened")

    @classmethod
    def from_anomaly(cls, anomaly) -> Optional["TransactionSummary"]:
        if anomaly.transaction_id is None:
            return None
        transaction = anomaly.transaction
        if transaction is None:
            return cls(id=str(anomaly.transaction_id))
        return cls(
            id=str(transaction.id),
            title=transaction.title,
            amount=transaction.amount,
            category=transaction.category,
            transaction_date=transaction.transaction_date,
        )


class AnomalyResponse(_CamelModel):
    """Anomaly as rendered by the security dashboard."""
    id: str = Field(..., description="Anomaly ID")
    owner_id: str = Field(..., description="Owner of the anomaly")
    type: str = Field(..., description="Anomaly type")
    severity: str = Field(..., description="HIGH, MEDIUM or LOW")
    evidence: Dict[str, Any] = Field(default_factory=dict, description="Type-specific evidence")
    explanation: str = Field(..., description="Human-readable reason")
    transaction_id: Optional[TransactionSummary] = Field(None, description="Triggering transaction, if any")
    status: str = Field(..., description="PENDING, CONFIRMED or DISMISSED")
    detected_at: Optional[datetime] = Field(None, description="Detection timestamp")
    resolved_at: Optional[datetime] = Field(None, description="Resolution timestamp")
    resolution_note: Optional[str] = Field(None, description="Note stored on resolution")

    @classmethod
    def from_model(cls, anomaly) -> "AnomalyResponse":
        return cls(
            id=str(anomaly.id),
            owner_id=anomaly.owner_id,
            type=anomaly.anomaly_type,
            severity=anomaly.severity,
            evidence=anomaly.evidence or {},
            explanation=anomaly.explanation,
            transaction_id=TransactionSummary.from_anomaly(anomaly),
            status=anomaly.status,
            detected_at=anomaly.detected_at,
            resolved_at=anomaly.resolved_at,
            resolution_note=anomaly.resolution_note,
        )


class ResolveRequest(_CamelModel):
    """Request schema for resolving an anomaly."""
    action: Literal["CONFIRMED", "DISMISSED"] = Field(..., description="Resolution decision")
    resolution_note: Optional[str] = Field(None, max_length=500, description="Optional note")


class AuditLogResponse(_CamelModel):
    id: str = Field(..., description="Audit entry ID")
    owner_id: str = Field(..., description="Acting owner")
    action: str = Field(..., description="Action performed")
    resource: str = Field(..., description="Affected resource type")
    resource_id: Optional[str] = Field(None, description="Affected resource ID")
    timestamp: datetime = Field(..., description="When the action happened")
    details: Dict[str, Any] = Field(default_factory=dict, description="Small key/value summary")

    @classmethod
    def from_model(cls, entry) -> "AuditLogResponse":
        return cls(
            id=str(entry.id),
            owner_id=entry.owner_id,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            timestamp=entry.timestamp,
            details=entry.details or {},
        )


class AnomalyStats(BaseModel):
    total: int = Field(..., description="All anomalies")
    pending: int = Field(..., description="Awaiting a decision")
    resolved: int = Field(..., description="Confirmed or dismissed")


class DashboardResponse(_CamelModel):
    """Response schema for the security dashboard."""
    stats: AnomalyStats
    health_score: int = Field(..., ge=0, le=100, description="0-100 composite score")
    health_status: str = Field(..., description="secure, attention needed or critical")
    recent_alerts: List[AnomalyResponse] = Field(default_factory=list)
    recent_logs: List[AuditLogResponse] = Field(default_factory=list)


class LeakScanRequest(_CamelModel):
    as_of: Optional[datetime] = Field(None, description="End of the scan window, defaults to now")


class LeakScanResponse(_CamelModel):
    as_of: datetime
    anomalies_found: int
    anomalies: List[AnomalyResponse]
