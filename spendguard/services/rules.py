"""Anomaly detection rules.

Each rule is a pure evaluator over a transaction and a HistoryProvider and
returns at most one AnomalyCandidate. Rules never write; the detection service
persists what they return.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from spendguard.config import DetectionConfig
from spendguard.models.transaction import Transaction
from spendguard.schemas.evidence import (
    AnomalyType,
    Severity,
    Evidence,
    evidence_matches,
    DuplicateEvidence,
    SpendingSpikeEvidence,
    BudgetExceededEvidence,
    CategoryOveruseEvidence,
    OddTimeEvidence,
    SilentLeakEvidence,
    AiIrregularityEvidence,
)
from spendguard.services.history_service import HistoryProvider, month_bounds


@dataclass(frozen=True)
class AnomalyCandidate:
    anomaly_type: AnomalyType
    severity: Severity
    explanation: str
    evidence: Evidence
    transaction_id: Optional[object] = None
    # Only window rules set these; per-transaction candidates are keyed by the engine
    dedupe_key: Optional[str] = None
    # While a PENDING anomaly of this group is open, new findings update it instead
    open_group: Optional[str] = None

    def __post_init__(self):
        if not evidence_matches(self.anomaly_type, self.evidence):
            raise TypeError(f"{type(self.evidence).__name__} is not evidence for {self.anomaly_type}")


def _money(value: float) -> float:
    return round(float(value), 2)


def _normalize_title(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def levenshtein_distance(a: str, b: str) -> int:
    """Number of single-character edits turning a into b."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


class AnomalyRule:
    anomaly_type: AnomalyType
    # Reviewers run after the other rules and see what they found
    reviews_findings = False

    def __init__(self, config: DetectionConfig):
        self.config = config

    def evaluate(self, transaction: Transaction, history: HistoryProvider) -> Optional[AnomalyCandidate]:
        raise NotImplementedError

    def candidate(self, transaction: Transaction, severity: Severity, explanation: str,
                  evidence: Evidence) -> AnomalyCandidate:
        return AnomalyCandidate(
            anomaly_type=self.anomaly_type,
            severity=severity,
            explanation=explanation,
            evidence=evidence,
            transaction_id=transaction.id,
        )


class DuplicateTransactionRule(AnomalyRule):
    """Same amount and category recorded earlier inside the duplicate window."""

    anomaly_type = AnomalyType.DUPLICATE_TRANSACTION

    def _titles_match(self, a: Optional[str], b: Optional[str]) -> bool:
        if not self.config.duplicate_match_title:
            return True
        target, other = _normalize_title(a), _normalize_title(b)
        if not target or not other:
            return True
        if target == other:
            return True
        allowed = 1 if len(target) < 5 else self.config.duplicate_title_max_distance
        return levenshtein_distance(target, other) <= allowed

    def _recorded_before(self, candidate: Transaction, transaction: Transaction) -> bool:
        if candidate.created_at is None or transaction.created_at is None:
            return candidate.transaction_date <= transaction.transaction_date
        return candidate.created_at <= transaction.created_at

    def evaluate(self, transaction, history):
        window = timedelta(hours=self.config.duplicate_window_hours)
        candidates = history.recent_transactions(
            transaction.owner_id,
            transaction.category,
            since=transaction.transaction_date - window,
            until=transaction.transaction_date,
            exclude_id=transaction.id,
        )
        for earlier in candidates:
            if earlier.id == transaction.id:
                continue
            if abs(abs(earlier.amount) - abs(transaction.amount)) > self.config.duplicate_amount_tolerance:
                continue
            if not self._recorded_before(earlier, transaction):
                continue
            if not self._titles_match(transaction.title, earlier.title):
                continue
            return self.candidate(
                transaction,
                Severity.MEDIUM,
                "This appears to be a duplicate transaction.",
                DuplicateEvidence(duplicate_of=str(earlier.id)),
            )
        return None


class SpendingSpikeRule(AnomalyRule):
    """Amount far above the owner's trailing average."""

    anomaly_type = AnomalyType.SPENDING_SPIKE

    def evaluate(self, transaction, history):
        cfg = self.config
        stats = history.rolling_stats(
            transaction.owner_id,
            transaction.category if cfg.spike_per_category else None,
            until=transaction.transaction_date,
            window_days=cfg.stats_window_days,
            exclude_id=transaction.id,
        )
        if stats.count < cfg.spike_min_samples or stats.average <= 0:
            return None

        current = abs(transaction.amount)
        threshold = max(
            stats.average + cfg.spike_stddev_multiplier * stats.stddev,
            stats.average * cfg.spike_min_ratio,
        )
        if current <= threshold:
            return None

        severity = Severity.HIGH if current >= stats.average * cfg.spike_high_ratio else Severity.MEDIUM
        percentage = (current - stats.average) / stats.average * 100
        return self.candidate(
            transaction,
            severity,
            f"Transaction is {round(percentage)}% higher than your {cfg.stats_window_days}-day average.",
            SpendingSpikeEvidence(
                average=_money(stats.average),
                current=_money(current),
                threshold=_money(threshold),
            ),
        )


class BudgetExceededRule(AnomalyRule):
    """Category spend for the active budget period is over the limit."""

    anomaly_type = AnomalyType.BUDGET_EXCEEDED

    def evaluate(self, transaction, history):
        budget = history.active_budget(transaction.owner_id, transaction.category, transaction.transaction_date)
        if budget is None:
            return None

        # Periods are end-exclusive: the next period starts at end_date
        current_spend = history.category_spend(
            transaction.owner_id, budget.category,
            since=budget.start_date, until=budget.end_date - timedelta(microseconds=1),
        )
        if current_spend <= budget.amount:
            return None

        exceeded_by = current_spend - budget.amount
        overrun_percent = exceeded_by / budget.amount * 100 if budget.amount else 100.0
        severity = Severity.HIGH if overrun_percent >= self.config.budget_high_overrun_percent else Severity.MEDIUM
        return self.candidate(
            transaction,
            severity,
            f"Transaction exceeds your '{budget.name}' budget limit.",
            BudgetExceededEvidence(
                budget_limit=_money(budget.amount),
                current_spend=_money(current_spend),
                exceeded_by=_money(exceeded_by),
            ),
        )


class CategoryOveruseRule(AnomalyRule):
    """One category takes too large a share of the month's spending."""

    anomaly_type = AnomalyType.CATEGORY_OVERUSE

    def evaluate(self, transaction, history):
        cfg = self.config
        start, end = month_bounds(transaction.transaction_date)
        until = end - timedelta(microseconds=1)
        total = history.category_spend(transaction.owner_id, None, since=start, until=until)
        if total <= 0 or total < cfg.category_overuse_min_total:
            return None

        category_total = history.category_spend(transaction.owner_id, transaction.category, since=start, until=until)
        percentage = category_total / total * 100
        if percentage <= cfg.category_overuse_percent:
            return None

        severity = Severity.HIGH if percentage >= cfg.category_overuse_high_percent else Severity.MEDIUM
        return self.candidate(
            transaction,
            severity,
            f"Spending in '{transaction.category}' is {round(percentage)}% of your total monthly spend.",
            CategoryOveruseEvidence(
                category_total=_money(category_total),
                total_monthly=_money(total),
                percentage=round(percentage, 2),
            ),
        )


class OddTimePatternRule(AnomalyRule):
    anomaly_type = AnomalyType.ODD_TIME_PATTERN

    def _in_window(self, hour: int) -> bool:
        start, end = self.config.odd_hour_start, self.config.odd_hour_end
        if start <= end:
            return start <= hour < end
        return hour >= start or hour < end

    def evaluate(self, transaction, history):
        hour = transaction.transaction_date.hour
        if not self._in_window(hour):
            return None
        return self.candidate(
            transaction,
            Severity.LOW,
            f"Transaction occurred during unusual hours "
            f"({self.config.odd_hour_start:02d}:00 - {self.config.odd_hour_end:02d}:00).",
            OddTimeEvidence(hour=hour),
        )


def leak_group(owner_id: str, category: str) -> str:
    """Key prefix shared by every leak finding for one owner and category."""
    return f"{AnomalyType.SILENT_LEAK.value}:{owner_id}:{category}:"


class SilentLeakRule(AnomalyRule):
    """Many small charges in one category over the trailing window (subscription creep).

    Runs for each small expense and from the periodic scan. One PENDING finding
    per owner and category is kept open and follows the latest charge.
    """

    anomaly_type = AnomalyType.SILENT_LEAK

    def _finding(self, owner_id: str, category: str, charges: Sequence[Transaction]) -> Optional[AnomalyCandidate]:
        cfg = self.config
        if len(charges) < cfg.leak_min_count:
            return None
        count = len(charges)
        total_amount = sum(abs(c.amount) for c in charges)
        latest = max(charges, key=lambda c: (c.transaction_date, c.created_at or c.transaction_date))
        severity = Severity.MEDIUM if count >= cfg.leak_medium_count else Severity.LOW
        group = leak_group(owner_id, category)
        return AnomalyCandidate(
            anomaly_type=self.anomaly_type,
            severity=severity,
            explanation=(
                f"Preventive Warning: {count} small transactions in '{category}' "
                f"detected in the last {cfg.leak_window_days} days."
            ),
            evidence=SilentLeakEvidence(
                period=f"{cfg.leak_window_days} Days",
                count=count,
                total_amount=_money(total_amount),
            ),
            transaction_id=None,
            dedupe_key=f"{group}{latest.id}",
            open_group=group,
        )

    def _small_charges(self, owner_id: str, category: Optional[str], as_of: datetime,
                       history: HistoryProvider) -> List[Transaction]:
        since = as_of - timedelta(days=self.config.leak_window_days)
        charges = history.recent_transactions(owner_id, category, since=since, until=as_of)
        return [
            c for c in charges
            if c.transaction_date > since and abs(c.amount) <= self.config.leak_max_amount
        ]

    def evaluate(self, transaction, history):
        if abs(transaction.amount) > self.config.leak_max_amount:
            return None
        charges = self._small_charges(
            transaction.owner_id, transaction.category, transaction.transaction_date, history
        )
        return self._finding(transaction.owner_id, (transaction.category or "").lower(), charges)

    def scan(self, owner_id: str, as_of: datetime, history: HistoryProvider) -> List[AnomalyCandidate]:
        """Evaluate every category of an owner over the window ending at as_of."""
        by_category: Dict[str, List[Transaction]] = {}
        for charge in self._small_charges(owner_id, None, as_of, history):
            by_category.setdefault((charge.category or "").lower(), []).append(charge)

        findings = []
        for category in sorted(by_category):
            finding = self._finding(owner_id, category, by_category[category])
            if finding is not None:
                findings.append(finding)
        return findings


class AiIrregularityRule(AnomalyRule):
    """Defers to an external classifier for transactions that look suspicious."""

    anomaly_type = AnomalyType.AI_DETECTED_IRREGULARITY
    reviews_findings = True

    def __init__(self, config: DetectionConfig, classifier=None):
        super().__init__(config)
        self.classifier = classifier
        self._keywords = re.compile(config.ai_suspicious_keywords, re.IGNORECASE) if config.ai_suspicious_keywords else None

    def should_assess(self, transaction: Transaction, prior: Sequence[AnomalyCandidate] = ()) -> bool:
        cfg = self.config
        if cfg.ai_always_assess:
            return True
        if prior and cfg.ai_verify_findings:
            return True
        if abs(transaction.amount) >= cfg.ai_trigger_amount:
            return True
        suspicious = {c.lower() for c in cfg.ai_suspicious_categories}
        if (transaction.category or "").lower() in suspicious:
            return True
        text = " ".join(filter(None, [transaction.title, transaction.description]))
        return bool(self._keywords and text and self._keywords.search(text))

    def _severity(self, confidence: float) -> Severity:
        if confidence >= self.config.ai_high_confidence:
            return Severity.HIGH
        if confidence >= self.config.ai_medium_confidence:
            return Severity.MEDIUM
        return Severity.LOW

    def evaluate(self, transaction, history, prior: Sequence[AnomalyCandidate] = ()):
        """Ask the classifier about the transaction. prior holds what the other rules found for it."""
        if self.classifier is None or not self.should_assess(transaction, prior):
            return None

        assessment = self.classifier.assess(transaction)
        if assessment is None or assessment.confidence < self.config.ai_confidence_floor:
            return None

        confidence = round(float(assessment.confidence), 4)
        explanation = assessment.explanation or (
            f"AI review flagged this transaction as irregular ({round(confidence * 100)}% confidence)."
        )
        return self.candidate(
            transaction,
            self._severity(confidence),
            explanation,
            AiIrregularityEvidence(ai_confidence=confidence),
        )


RULE_CLASSES = (
    DuplicateTransactionRule,
    SpendingSpikeRule,
    BudgetExceededRule,
    CategoryOveruseRule,
    OddTimePatternRule,
    SilentLeakRule,
    AiIrregularityRule,
)


def build_rules(config: DetectionConfig, classifier=None) -> List[AnomalyRule]:
    """Instantiate every rule not switched off in config."""
    rules: List[AnomalyRule] = []
    for rule_class in RULE_CLASSES:
        if not config.is_enabled(rule_class.anomaly_type.value):
            continue
        if rule_class is AiIrregularityRule:
            rules.append(rule_class(config, classifier=classifier))
        else:
            rules.append(rule_class(config))
    return rules
