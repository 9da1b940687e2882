from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from spendguard.api.deps import get_classifier, get_config, get_owner_id
from spendguard.config import AppConfig
from spendguard.core.database import get_db
from spendguard.core.errors import AlreadyResolved, AnomalyNotFound
from spendguard.schemas.evidence import AnomalyStatus, AnomalyType, Severity
from spendguard.schemas.security import (
    AnomalyResponse, AnomalyStats, AuditLogResponse, DashboardResponse,
    LeakScanRequest, LeakScanResponse, ResolveRequest
)
from spendguard.services.anomaly_service import AnomalyService
from spendguard.services.audit_service import AuditService
from spendguard.services.detection_service import DetectionService
from spendguard.services.health_service import HealthService, health_status
from spendguard.services.resolution_service import ResolutionService
from datetime import datetime, timezone
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/security")

RECENT_LOG_LIMIT = 10


def _naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps are naive UTC
    if moment is not None and moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    """Anomaly stats, health score, open alerts and the latest audit entries."""
    anomaly_service = AnomalyService(db)
    audit_service = AuditService(db, config.audit)
    health_service = HealthService(db, config.health)

    try:
        score = health_service.score(owner_id)
        return DashboardResponse(
            stats=AnomalyStats(**anomaly_service.stats(owner_id)),
            health_score=score,
            health_status=health_status(score, config.health),
            recent_alerts=[AnomalyResponse.from_model(a) for a in anomaly_service.recent_alerts(owner_id)],
            recent_logs=[AuditLogResponse.from_model(e)
                         for e in audit_service.query(owner_id, limit=RECENT_LOG_LIMIT)],
        )
    except Exception as e:
        logger.exception(f"Failed to build security dashboard for {owner_id}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/anomalies", response_model=List[AnomalyResponse])
def list_anomalies(
    status: Optional[AnomalyStatus] = None,
    severity: Optional[Severity] = None,
    anomaly_type: Optional[AnomalyType] = Query(None, alias="type"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db)
):
    anomaly_service = AnomalyService(db)
    anomalies = anomaly_service.get_anomalies(
        owner_id,
        status=status.value if status else None,
        severity=severity.value if severity else None,
        anomaly_type=anomaly_type.value if anomaly_type else None,
        limit=limit,
        offset=offset,
    )
    return [AnomalyResponse.from_model(a) for a in anomalies]


@router.post("/anomalies/{anomaly_id}/resolve", response_model=AnomalyResponse)
def resolve_anomaly(
    anomaly_id: str,
    request: ResolveRequest,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    """Confirm or dismiss a pending anomaly. A second resolution is rejected with 409."""
    service = ResolutionService(db, config.audit)
    try:
        anomaly = service.resolve(anomaly_id, owner_id, request.action, request.resolution_note)
    except AnomalyNotFound:
        raise HTTPException(status_code=404, detail={"error": "not_found", "id": anomaly_id})
    except AlreadyResolved as e:
        raise HTTPException(status_code=409, detail={"error": "already_resolved", "status": e.status})
    return AnomalyResponse.from_model(anomaly)


@router.get("/audit-logs", response_model=List[AuditLogResponse])
def get_audit_logs(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    start, end = _naive_utc(start), _naive_utc(end)
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    audit_service = AuditService(db, config.audit)
    entries = audit_service.query(owner_id, start=start, end=end, action=action, limit=limit)
    return [AuditLogResponse.from_model(e) for e in entries]


@router.post("/scan-leaks", response_model=LeakScanResponse)
def scan_leaks(
    request: Optional[LeakScanRequest] = None,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    classifier=Depends(get_classifier),
    db: Session = Depends(get_db)
):
    """Run the silent-leak scan for the caller."""
    as_of = _naive_utc(request.as_of if request else None) or datetime.utcnow()
    service = DetectionService(db, config=config.detection, classifier=classifier)
    created = service.detect_leaks(owner_id, as_of)
    return LeakScanResponse(
        as_of=as_of,
        anomalies_found=len(created),
        anomalies=[AnomalyResponse.from_model(a) for a in created],
    )
