import logging
from typing import Optional
from sqlalchemy.orm import Session
from spendguard.config import AuditConfig
from spendguard.core.database import SessionLocal
from spendguard.models.anomaly import Anomaly
from spendguard.schemas.evidence import AnomalyStatus
from spendguard.schemas.security import AuditAction, AuditResource
from spendguard.services.anomaly_service import AnomalyService
from spendguard.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class ResolutionService:
    """Applies a user's confirm/dismiss decision to a pending anomaly."""

    def __init__(self, db: Session = None, audit_config: Optional[AuditConfig] = None,
                 anomalies: Optional[AnomalyService] = None, audit: Optional[AuditService] = None):
        self.db = db or SessionLocal()
        self.anomalies = anomalies or AnomalyService(self.db)
        self.audit = audit or AuditService(self.db, audit_config)

    def resolve(self, anomaly_id, owner_id: str, action: str, note: Optional[str] = None) -> Anomaly:
        """Resolve an anomaly exactly once.

        Raises AnomalyNotFound or AlreadyResolved. The audit entry is written only
        by the call that won the transition; if it cannot be written the
        resolution still stands and the entry is spooled for replay.
        """
        status = AnomalyStatus(action)
        anomaly = self.anomalies.transition(anomaly_id, owner_id, status, note)
        logger.info(f"Anomaly {anomaly.id} ({anomaly.anomaly_type}) resolved as {anomaly.status}")

        self.audit.record(
            owner_id,
            AuditAction.ANOMALY_RESOLVE,
            AuditResource.ANOMALY,
            resource_id=anomaly.id,
            details={"action": anomaly.status, "note": anomaly.resolution_note},
            timestamp=anomaly.resolved_at,
        )
        return anomaly
