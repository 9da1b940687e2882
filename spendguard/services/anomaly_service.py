import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, case, desc, func, update
from sqlalchemy.exc import IntegrityError
from spendguard.core.database import SessionLocal
from spendguard.core.errors import AnomalyNotFound, AlreadyResolved
from spendguard.models.anomaly import Anomaly
from spendguard.schemas.evidence import AnomalyStatus, Severity
from spendguard.services.rules import AnomalyCandidate

logger = logging.getLogger(__name__)

DEFAULT_NOTES = {
    AnomalyStatus.CONFIRMED: "Confirmed irregularity",
    AnomalyStatus.DISMISSED: "False positive",
}

SEVERITY_ORDER = case(
    (Anomaly.severity == Severity.HIGH.value, 3),
    (Anomaly.severity == Severity.MEDIUM.value, 2),
    else_=1,
)


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def dedupe_key_for(candidate: AnomalyCandidate) -> str:
    if candidate.dedupe_key:
        return candidate.dedupe_key
    return f"{candidate.transaction_id}:{candidate.anomaly_type.value}"


class AnomalyService:
    """Persistence for anomalies and their single PENDING -> resolved transition."""

    def __init__(self, db: Session = None):
        self.db = db or SessionLocal()

    def _refresh_open(self, owner_id: str, candidate: AnomalyCandidate, key: str) -> bool:
        """Move the open PENDING anomaly of the candidate's group onto the new finding.

        Returns False when the group has no PENDING anomaly, so a new one is recorded.
        """
        open_id = self.db.query(Anomaly.id).filter(
            and_(Anomaly.owner_id == owner_id,
                 Anomaly.status == AnomalyStatus.PENDING.value,
                 Anomaly.dedupe_key.startswith(candidate.open_group, autoescape=True))
        ).order_by(desc(Anomaly.detected_at)).limit(1).scalar()
        if open_id is None:
            return False

        try:
            result = self.db.execute(
                update(Anomaly)
                .where(and_(Anomaly.id == open_id, Anomaly.status == AnomalyStatus.PENDING.value))
                .values(severity=candidate.severity.value,
                        evidence=candidate.evidence.to_payload(),
                        explanation=candidate.explanation,
                        dedupe_key=key)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except IntegrityError:
            # A concurrent run already moved the group onto this key
            self.db.rollback()
            return True
        if result.rowcount != 1:
            # Resolved between the read and the update
            return False
        logger.debug(f"Open anomaly {open_id} updated to {key}")
        return True

    def record(self, owner_id: str, candidate: AnomalyCandidate,
               detected_at: Optional[datetime] = None) -> Optional[Anomaly]:
        """Persist a candidate as a PENDING anomaly.

        Returns None when an anomaly with the same idempotency key already exists,
        or when the candidate updated the open anomaly of its group.
        """
        key = dedupe_key_for(candidate)
        if self.db.query(Anomaly.id).filter(Anomaly.dedupe_key == key).first() is not None:
            logger.debug(f"Anomaly {key} already recorded, skipping")
            return None
        if candidate.open_group and self._refresh_open(owner_id, candidate, key):
            return None

        anomaly = Anomaly(
            owner_id=owner_id,
            transaction_id=_as_uuid(candidate.transaction_id),
            anomaly_type=candidate.anomaly_type.value,
            severity=candidate.severity.value,
            status=AnomalyStatus.PENDING.value,
            evidence=candidate.evidence.to_payload(),
            explanation=candidate.explanation,
            dedupe_key=key,
            detected_at=detected_at or datetime.utcnow(),
        )
        self.db.add(anomaly)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent run committed the same key first
            self.db.rollback()
            logger.debug(f"Anomaly {key} recorded concurrently, skipping")
            return None
        self.db.refresh(anomaly)
        return anomaly

    def get(self, anomaly_id, owner_id: Optional[str] = None) -> Anomaly:
        anomaly_uuid = _as_uuid(anomaly_id)
        if anomaly_uuid is None:
            raise AnomalyNotFound(anomaly_id)
        query = self.db.query(Anomaly).filter(Anomaly.id == anomaly_uuid)
        if owner_id is not None:
            query = query.filter(Anomaly.owner_id == owner_id)
        anomaly = query.first()
        if anomaly is None:
            raise AnomalyNotFound(anomaly_id)
        return anomaly

    def get_anomalies(self, owner_id: str, status: Optional[str] = None, severity: Optional[str] = None,
                      anomaly_type: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Anomaly]:
        """Get anomalies with optional filtering, newest first."""
        query = self.db.query(Anomaly).filter(Anomaly.owner_id == owner_id)

        if status:
            query = query.filter(Anomaly.status == status)
        if severity:
            query = query.filter(Anomaly.severity == severity)
        if anomaly_type:
            query = query.filter(Anomaly.anomaly_type == anomaly_type)

        return query.order_by(desc(Anomaly.detected_at)).offset(offset).limit(limit).all()

    def recent_alerts(self, owner_id: str, limit: int = 5) -> List[Anomaly]:
        """Pending anomalies, HIGH before LOW, newest first."""
        return self.db.query(Anomaly).filter(
            and_(Anomaly.owner_id == owner_id,
                 Anomaly.status == AnomalyStatus.PENDING.value)
        ).order_by(desc(SEVERITY_ORDER), desc(Anomaly.detected_at)).limit(limit).all()

    def counts(self, owner_id: str) -> Dict[str, Dict[str, int]]:
        """Anomaly counts keyed by status, then severity."""
        rows = self.db.query(Anomaly.status, Anomaly.severity, func.count(Anomaly.id)).filter(
            Anomaly.owner_id == owner_id
        ).group_by(Anomaly.status, Anomaly.severity).all()

        counts: Dict[str, Dict[str, int]] = {}
        for status, severity, count in rows:
            counts.setdefault(status, {})[severity] = int(count)
        return counts

    def stats(self, owner_id: str) -> Dict[str, int]:
        counts = self.counts(owner_id)
        total = sum(sum(by_severity.values()) for by_severity in counts.values())
        pending = sum(counts.get(AnomalyStatus.PENDING.value, {}).values())
        return {"total": total, "pending": pending, "resolved": total - pending}

    def transition(self, anomaly_id, owner_id: str, status: AnomalyStatus,
                   note: Optional[str] = None, resolved_at: Optional[datetime] = None) -> Anomaly:
        """Move a PENDING anomaly to CONFIRMED or DISMISSED.

        The status check and the write are one conditional UPDATE, so of two
        concurrent calls exactly one matches the PENDING row.
        """
        status = AnomalyStatus(status)
        if status == AnomalyStatus.PENDING:
            raise ValueError("Anomalies cannot be moved back to PENDING")

        anomaly_uuid = _as_uuid(anomaly_id)
        if anomaly_uuid is None:
            raise AnomalyNotFound(anomaly_id)

        note = note.strip() if note and note.strip() else DEFAULT_NOTES[status]
        result = self.db.execute(
            update(Anomaly)
            .where(and_(Anomaly.id == anomaly_uuid,
                        Anomaly.owner_id == owner_id,
                        Anomaly.status == AnomalyStatus.PENDING.value))
            .values(status=status.value,
                    resolved_at=resolved_at or datetime.utcnow(),
                    resolution_note=note)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount != 1:
            current = self.db.query(Anomaly.status).filter(
                and_(Anomaly.id == anomaly_uuid, Anomaly.owner_id == owner_id)
            ).first()
            if current is None:
                raise AnomalyNotFound(anomaly_id)
            raise AlreadyResolved(anomaly_id, current[0])

        anomaly = self.get(anomaly_uuid, owner_id)
        self.db.refresh(anomaly)
        return anomaly

