import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from spendguard.config import DetectionConfig
from spendguard.core.database import SessionLocal
from spendguard.core.errors import HistoryUnavailable, RuleEvaluationError
from spendguard.models.anomaly import Anomaly
from spendguard.models.transaction import Transaction
from spendguard.schemas.evidence import AnomalyType
from spendguard.services.anomaly_service import AnomalyService
from spendguard.services.history_service import HistoryProvider, HistoryService
from spendguard.services.rules import AnomalyCandidate, AnomalyRule, SilentLeakRule, build_rules

logger = logging.getLogger(__name__)


class DetectionService:
    """Runs the anomaly rules and records what they find.

    Rules are evaluated independently: one failing rule is logged and skipped,
    the others still run. Nothing here raises into the caller's write path.
    """

    def __init__(self, db: Session = None, config: Optional[DetectionConfig] = None,
                 history: Optional[HistoryProvider] = None, classifier=None,
                 rules: Optional[Sequence[AnomalyRule]] = None):
        self.db = db or SessionLocal()
        self.config = config or DetectionConfig()
        self.history = history or HistoryService(self.db)
        self.anomalies = AnomalyService(self.db)
        self.rules = list(rules) if rules is not None else build_rules(self.config, classifier)

    @property
    def leak_rule(self) -> Optional[SilentLeakRule]:
        for rule in self.rules:
            if isinstance(rule, SilentLeakRule):
                return rule
        return None

    def _evaluate(self, rule: AnomalyRule, transaction: Transaction, **context) -> Optional[AnomalyCandidate]:
        try:
            return rule.evaluate(transaction, self.history, **context)
        except HistoryUnavailable as e:
            logger.warning(f"Skipping {rule.anomaly_type.value} for transaction {transaction.id}: {e}")
        except Exception as e:
            error = RuleEvaluationError(rule.anomaly_type.value, e)
            logger.exception(f"{error} (transaction {transaction.id})")
        return None

    def _collect(self, candidates: List[AnomalyCandidate], candidate: Optional[AnomalyCandidate],
                 transaction: Transaction) -> None:
        if candidate is not None:
            logger.info(f"{candidate.anomaly_type.value} detected for transaction {transaction.id}")
            candidates.append(candidate)

    def _persist(self, owner_id: str, candidates: List[AnomalyCandidate]) -> List[Anomaly]:
        detected_at = datetime.utcnow()
        created = []
        for candidate in candidates:
            try:
                anomaly = self.anomalies.record(owner_id, candidate, detected_at=detected_at)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to save {candidate.anomaly_type.value} anomaly for {owner_id}: {e}")
                continue
            if anomaly is not None:
                created.append(anomaly)
        return created

    def detect(self, transaction: Transaction) -> List[Anomaly]:
        """Evaluate every rule against the transaction and record the findings as PENDING anomalies.

        Reviewing rules run last and are given the other rules' findings.
        Re-running detection for the same transaction creates nothing new.
        """
        if not transaction.is_expense:
            logger.debug(f"Skipping detection for non-expense transaction {transaction.id}")
            return []

        logger.info(f"Checking transaction for anomalies: {transaction.title} ({transaction.amount})")
        candidates: List[AnomalyCandidate] = []
        for rule in [r for r in self.rules if not r.reviews_findings]:
            self._collect(candidates, self._evaluate(rule, transaction), transaction)
        for rule in [r for r in self.rules if r.reviews_findings]:
            self._collect(candidates, self._evaluate(rule, transaction, prior=tuple(candidates)), transaction)

        if not candidates:
            logger.info("No anomalies found")
            return []

        created = self._persist(transaction.owner_id, candidates)
        logger.info(f"Saved {len(created)} of {len(candidates)} anomalies for transaction {transaction.id}")
        return created

    def detect_leaks(self, owner_id: str, as_of: Optional[datetime] = None) -> List[Anomaly]:
        """Scan an owner's trailing window for silent leaks."""
        rule = self.leak_rule
        if rule is None:
            logger.debug(f"{AnomalyType.SILENT_LEAK.value} is disabled")
            return []

        as_of = as_of or datetime.utcnow()
        try:
            candidates = rule.scan(owner_id, as_of, self.history)
        except HistoryUnavailable as e:
            logger.warning(f"Skipping leak scan for {owner_id}: {e}")
            return []
        except Exception as e:
            logger.exception(f"{RuleEvaluationError(rule.anomaly_type.value, e)} (owner {owner_id})")
            return []

        created = self._persist(owner_id, candidates)
        logger.info(f"Leak scan for {owner_id} as of {as_of.isoformat()}: {len(created)} new anomalies")
        return created

    def detect_for_owners(self, as_of: Optional[datetime] = None,
                          owner_ids: Optional[Sequence[str]] = None) -> List[Anomaly]:
        """Run the leak scan for the given owners, or every owner active in the window."""
        as_of = as_of or datetime.utcnow()
        if owner_ids is None:
            since = as_of - timedelta(days=self.config.leak_window_days)
            try:
                owner_ids = self.history.owners_with_activity(since, as_of)
            except HistoryUnavailable as e:
                logger.warning(f"Leak scan skipped, owners unavailable: {e}")
                return []

        created: List[Anomaly] = []
        for owner_id in owner_ids:
            created.extend(self.detect_leaks(owner_id, as_of))
        return created


def run_detection(transaction_id, config: Optional[DetectionConfig] = None, classifier=None) -> int:
    """Background entry point after a transaction write.

    Opens its own session and never raises; returns the number of new anomalies.
    """
    db = SessionLocal()
    try:
        transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
        if transaction is None:
            logger.warning(f"Transaction {transaction_id} not found for detection")
            return 0
        service = DetectionService(db, config=config, classifier=classifier)
        return len(service.detect(transaction))
    except Exception as e:
        logger.exception(f"Anomaly detection failed for transaction {transaction_id}: {e}")
        return 0
    finally:
        db.close()
