from typing import Dict, Optional
from sqlalchemy.orm import Session
from spendguard.config import HealthScoreConfig
from spendguard.core.database import SessionLocal
from spendguard.schemas.evidence import AnomalyStatus, Severity
from spendguard.services.anomaly_service import AnomalyService

SECURE = "secure"
ATTENTION_NEEDED = "attention needed"
CRITICAL = "critical"


def _deduction(severity: str, config: HealthScoreConfig) -> float:
    if severity == Severity.HIGH.value:
        return config.high_deduction
    if severity == Severity.MEDIUM.value:
        return config.medium_deduction
    return config.low_deduction


def compute_health_score(counts: Dict[str, Dict[str, int]], config: Optional[HealthScoreConfig] = None) -> int:
    """Score 0-100 from anomaly counts keyed by status, then severity.

    Pending anomalies deduct their full severity weight, confirmed ones
    `confirmed_weight` of it, dismissed ones nothing. An empty history scores 100.
    """
    config = config or HealthScoreConfig()
    # Above 1 a confirmation would lower the score
    confirmed_weight = min(max(config.confirmed_weight, 0.0), 1.0)
    deduction = 0.0
    for severity, count in counts.get(AnomalyStatus.PENDING.value, {}).items():
        deduction += _deduction(severity, config) * count
    for severity, count in counts.get(AnomalyStatus.CONFIRMED.value, {}).items():
        deduction += _deduction(severity, config) * confirmed_weight * count
    return int(max(0, min(100, round(100 - deduction))))


def health_status(score: int, config: Optional[HealthScoreConfig] = None) -> str:
    config = config or HealthScoreConfig()
    if score > config.secure_above:
        return SECURE
    if score < config.critical_below:
        return CRITICAL
    return ATTENTION_NEEDED


class HealthService:
    """Derives the security health score from the current anomaly set on every read."""

    def __init__(self, db: Session = None, config: Optional[HealthScoreConfig] = None):
        self.db = db or SessionLocal()
        self.config = config or HealthScoreConfig()
        self.anomalies = AnomalyService(self.db)

    def score(self, owner_id: str) -> int:
        return compute_health_score(self.anomalies.counts(owner_id), self.config)

    def status(self, owner_id: str) -> str:
        return health_status(self.score(owner_id), self.config)
