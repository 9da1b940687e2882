"""
Tests for the individual anomaly rules, run against an in-memory history.
"""

import uuid
from datetime import datetime, timedelta
from typing import List, Optional

import numpy as np
import pytest

from spendguard.config import DetectionConfig
from spendguard.models import Budget, Transaction
from spendguard.schemas.evidence import (
    AnomalyType,
    DuplicateEvidence,
    OddTimeEvidence,
    Severity,
    SpendingSpikeEvidence,
)
from spendguard.services.history_service import HistoryProvider, RollingStats
from spendguard.services.rules import (
    AiIrregularityRule,
    AnomalyCandidate,
    BudgetExceededRule,
    CategoryOveruseRule,
    DuplicateTransactionRule,
    OddTimePatternRule,
    SilentLeakRule,
    SpendingSpikeRule,
    build_rules,
    leak_group,
    levenshtein_distance,
)
from spendguard.services.classifier_service import ClassifierAssessment

OWNER = "user-1"
NOON = datetime(2024, 3, 10, 12, 0, 0)


def expense(amount: float, category: str = "food", title: str = "Lunch",
            when: Optional[datetime] = None, created: Optional[datetime] = None,
            description: Optional[str] = None) -> Transaction:
    when = when or NOON
    return Transaction(
        id=uuid.uuid4(),
        owner_id=OWNER,
        kind="expense",
        title=title,
        amount=amount,
        category=category,
        transaction_date=when,
        description=description,
        created_at=created or when,
    )


class MemoryHistory(HistoryProvider):
    """History over a plain list of transactions and budgets."""

    def __init__(self, transactions: List[Transaction] = None, budgets: List[Budget] = None):
        self.transactions = transactions or []
        self.budgets = budgets or []

    def _matching(self, owner_id, category, since, until, exclude_id=None):
        return [
            t for t in self.transactions
            if t.owner_id == owner_id
            and (category is None or t.category.lower() == category.lower())
            and since <= t.transaction_date <= until
            and t.id != exclude_id
        ]

    def recent_transactions(self, owner_id, category, since, until, exclude_id=None):
        return sorted(self._matching(owner_id, category, since, until, exclude_id),
                      key=lambda t: t.transaction_date, reverse=True)

    def active_budget(self, owner_id, category, at):
        for budget in self.budgets:
            if budget.owner_id == owner_id and budget.category == category and budget.start_date <= at < budget.end_date:
                return budget
        return None

    def rolling_stats(self, owner_id, category, until, window_days, exclude_id=None):
        amounts = [t.amount for t in self._matching(owner_id, category, until - timedelta(days=window_days),
                                                    until, exclude_id)]
        if not amounts:
            return RollingStats(0.0, 0.0, 0)
        return RollingStats(float(np.mean(amounts)), float(np.std(amounts)), len(amounts))

    def category_spend(self, owner_id, category, since, until):
        return float(sum(t.amount for t in self._matching(owner_id, category, since, until)))

    def owners_with_activity(self, since, until):
        return sorted({t.owner_id for t in self.transactions if since <= t.transaction_date <= until})


@pytest.fixture
def config() -> DetectionConfig:
    return DetectionConfig(disabled_rules=[])


class TestLevenshtein:
    """Tests for the title distance helper."""

    def test_identical(self):
        assert levenshtein_distance("burger", "burger") == 0

    def test_single_edit(self):
        assert levenshtein_distance("burger", "burgers") == 1
        assert levenshtein_distance("burger", "burgor") == 1

    def test_empty(self):
        assert levenshtein_distance("", "abc") == 3


class TestDuplicateTransactionRule:
    """Tests for duplicate detection."""

    def test_second_identical_expense_references_first(self, config):
        first = expense(100, title="Burger")
        second = expense(100, title="Burger", created=NOON + timedelta(seconds=5))
        history = MemoryHistory([first, second])

        candidate = DuplicateTransactionRule(config).evaluate(second, history)

        assert candidate is not None
        assert candidate.anomaly_type == AnomalyType.DUPLICATE_TRANSACTION
        assert candidate.severity == Severity.MEDIUM
        assert candidate.evidence.to_payload() == {"duplicateOf": str(first.id)}

    def test_first_expense_is_not_a_duplicate_of_later_one(self, config):
        first = expense(100, title="Burger")
        second = expense(100, title="Burger", created=NOON + timedelta(seconds=5))
        history = MemoryHistory([first, second])

        assert DuplicateTransactionRule(config).evaluate(first, history) is None

    def test_different_amount_is_not_duplicate(self, config):
        first = expense(100, title="Burger")
        second = expense(120, title="Burger", created=NOON + timedelta(seconds=5))

        assert DuplicateTransactionRule(config).evaluate(second, MemoryHistory([first, second])) is None

    def test_outside_window_is_not_duplicate(self, config):
        first = expense(100, title="Burger", when=NOON - timedelta(days=2))
        second = expense(100, title="Burger")

        assert DuplicateTransactionRule(config).evaluate(second, MemoryHistory([first, second])) is None

    def test_different_title_same_amount_and_category(self, config):
        first = expense(100, title="Burger")
        second = expense(100, title="Pizza", created=NOON + timedelta(seconds=5))

        candidate = DuplicateTransactionRule(config).evaluate(second, MemoryHistory([first, second]))

        assert candidate is not None
        assert candidate.evidence.duplicate_of == str(first.id)

    def test_fuzzy_title_match(self, config):
        config.duplicate_match_title = True
        first = expense(100, title="Burger King")
        second = expense(100, title="Burger Kng", created=NOON + timedelta(seconds=5))

        assert DuplicateTransactionRule(config).evaluate(second, MemoryHistory([first, second])) is not None

    def test_unrelated_titles_do_not_match_when_titles_are_compared(self, config):
        config.duplicate_match_title = True
        first = expense(100, title="Burger")
        second = expense(100, title="Groceries", created=NOON + timedelta(seconds=5))

        assert DuplicateTransactionRule(config).evaluate(second, MemoryHistory([first, second])) is None


class TestSpendingSpikeRule:
    """Tests for spike detection."""

    def _history(self, current: Transaction) -> MemoryHistory:
        past = [expense(100, when=NOON - timedelta(days=d)) for d in range(1, 6)]
        return MemoryHistory(past + [current])

    def test_spike_above_high_ratio_is_high(self, config):
        current = expense(400)
        candidate = SpendingSpikeRule(config).evaluate(current, self._history(current))

        assert candidate is not None
        assert candidate.severity == Severity.HIGH
        assert isinstance(candidate.evidence, SpendingSpikeEvidence)
        payload = candidate.evidence.to_payload()
        assert payload["average"] == 100.0
        assert payload["current"] == 400.0
        assert payload["threshold"] == 150.0

    def test_moderate_spike_is_medium(self, config):
        current = expense(200)
        candidate = SpendingSpikeRule(config).evaluate(current, self._history(current))

        assert candidate is not None
        assert candidate.severity == Severity.MEDIUM

    def test_normal_amount_does_not_fire(self, config):
        current = expense(120)
        assert SpendingSpikeRule(config).evaluate(current, self._history(current)) is None

    def test_too_little_history(self, config):
        current = expense(1000)
        history = MemoryHistory([expense(10, when=NOON - timedelta(days=1)), current])
        assert SpendingSpikeRule(config).evaluate(current, history) is None

    def test_multiplier_is_configurable(self):
        config = DetectionConfig(disabled_rules=[], spike_min_ratio=5.0, spike_stddev_multiplier=2.0)
        current = expense(400)
        assert SpendingSpikeRule(config).evaluate(current, self._history(current)) is None


class TestBudgetExceededRule:
    """Tests for budget overruns."""

    def _budget(self, amount: float) -> Budget:
        return Budget(
            id=uuid.uuid4(), owner_id=OWNER, name="Food", category="food", amount=amount,
            period="monthly", start_date=datetime(2024, 3, 1), end_date=datetime(2024, 4, 1), is_active=True,
        )

    def test_under_budget_does_not_fire(self, config):
        first = expense(100)
        history = MemoryHistory([first], [self._budget(1000)])

        assert BudgetExceededRule(config).evaluate(first, history) is None

    def test_over_budget_reports_spend_and_overrun(self, config):
        first = expense(100)
        second = expense(950, when=NOON + timedelta(hours=1))
        history = MemoryHistory([first, second], [self._budget(1000)])

        candidate = BudgetExceededRule(config).evaluate(second, history)

        assert candidate is not None
        assert candidate.severity == Severity.HIGH
        assert candidate.evidence.to_payload() == {
            "budgetLimit": 1000.0,
            "currentSpend": 1050.0,
            "exceededBy": 50.0,
        }

    def test_small_overrun_is_medium_when_configured(self):
        config = DetectionConfig(disabled_rules=[], budget_high_overrun_percent=20.0)
        first = expense(100)
        second = expense(950)
        history = MemoryHistory([first, second], [self._budget(1000)])

        assert BudgetExceededRule(config).evaluate(second, history).severity == Severity.MEDIUM

    def test_no_budget(self, config):
        current = expense(5000)
        assert BudgetExceededRule(config).evaluate(current, MemoryHistory([current])) is None

    def test_period_end_belongs_to_next_period(self, config):
        march = expense(900, when=datetime(2024, 3, 20, 12))
        april_first = expense(200, when=datetime(2024, 4, 1))
        history = MemoryHistory([march, april_first], [self._budget(1000)])

        assert BudgetExceededRule(config).evaluate(march, history) is None
        assert BudgetExceededRule(config).evaluate(april_first, history) is None


class TestCategoryOveruseRule:
    """Tests for category share of monthly spend."""

    def test_dominant_category_fires(self, config):
        food = expense(900)
        transport = expense(300, category="transport", when=NOON - timedelta(days=2))
        history = MemoryHistory([food, transport])

        candidate = CategoryOveruseRule(config).evaluate(food, history)

        assert candidate is not None
        assert candidate.severity == Severity.HIGH
        payload = candidate.evidence.to_payload()
        assert payload["categoryTotal"] == 900.0
        assert payload["totalMonthly"] == 1200.0
        assert payload["percentage"] == 75.0

    def test_balanced_spend_does_not_fire(self, config):
        food = expense(400)
        others = [expense(400, category=c, when=NOON - timedelta(days=1)) for c in ("transport", "rent")]
        assert CategoryOveruseRule(config).evaluate(food, MemoryHistory([food] + others)) is None

    def test_small_month_is_ignored(self, config):
        food = expense(90)
        assert CategoryOveruseRule(config).evaluate(food, MemoryHistory([food])) is None

    def test_other_months_do_not_count(self, config):
        food = expense(600)
        last_month = expense(5000, category="rent", when=datetime(2024, 2, 20, 12))
        transport = expense(500, category="transport", when=NOON - timedelta(days=1))
        candidate = CategoryOveruseRule(config).evaluate(food, MemoryHistory([food, last_month, transport]))

        assert candidate is not None
        assert candidate.evidence.to_payload()["totalMonthly"] == 1100.0


class TestOddTimePatternRule:
    """Tests for unusual hours."""

    def test_early_morning_fires_low(self, config):
        current = expense(20, when=datetime(2024, 3, 10, 3, 15))
        candidate = OddTimePatternRule(config).evaluate(current, MemoryHistory([current]))

        assert candidate is not None
        assert candidate.severity == Severity.LOW
        assert candidate.evidence == OddTimeEvidence(hour=3)

    def test_window_end_is_exclusive(self, config):
        current = expense(20, when=datetime(2024, 3, 10, 5, 0))
        assert OddTimePatternRule(config).evaluate(current, MemoryHistory([current])) is None

    def test_window_wrapping_midnight(self):
        config = DetectionConfig(disabled_rules=[], odd_hour_start=23, odd_hour_end=4)
        rule = OddTimePatternRule(config)

        assert rule.evaluate(expense(20, when=datetime(2024, 3, 10, 23, 30)), MemoryHistory()) is not None
        assert rule.evaluate(expense(20, when=datetime(2024, 3, 10, 1, 0)), MemoryHistory()) is not None
        assert rule.evaluate(expense(20, when=datetime(2024, 3, 10, 12, 0)), MemoryHistory()) is None


class TestSilentLeakRule:
    """Tests for small recurring charges."""

    def test_five_small_charges_over_ten_days(self, config):
        start = datetime(2024, 3, 1, 12)
        charges = [expense(50, category="entertainment", title="Stream", when=start + timedelta(days=2 * i))
                   for i in range(5)]
        as_of = start + timedelta(days=10)

        findings = SilentLeakRule(config).scan(OWNER, as_of, MemoryHistory(charges))

        assert len(findings) == 1
        finding = findings[0]
        assert finding.anomaly_type == AnomalyType.SILENT_LEAK
        assert finding.transaction_id is None
        assert finding.evidence.to_payload() == {"period": "30 Days", "count": 5, "totalAmount": 250.0}
        assert finding.dedupe_key.endswith(str(charges[-1].id))

    def test_large_charges_are_ignored(self, config):
        charges = [expense(500, category="entertainment", when=NOON - timedelta(days=i)) for i in range(5)]
        assert SilentLeakRule(config).scan(OWNER, NOON, MemoryHistory(charges)) == []

    def test_charges_outside_window_are_ignored(self, config):
        charges = [expense(20, category="entertainment", when=NOON - timedelta(days=40 + i)) for i in range(5)]
        assert SilentLeakRule(config).scan(OWNER, NOON, MemoryHistory(charges)) == []

    def test_categories_are_reported_separately(self, config):
        charges = [expense(10, category="entertainment", when=NOON - timedelta(days=i)) for i in range(3)]
        charges += [expense(10, category="coffee", when=NOON - timedelta(days=i)) for i in range(4)]
        findings = SilentLeakRule(config).scan(OWNER, NOON, MemoryHistory(charges))

        assert [f.evidence.count for f in findings] == [4, 3]

    def test_small_expense_sees_its_category_window(self, config):
        start = datetime(2024, 3, 1, 12)
        charges = [expense(50, category="entertainment", title="Stream", when=start + timedelta(days=2 * i))
                   for i in range(5)]
        history = MemoryHistory(charges + [expense(40, category="coffee", when=start)])

        candidate = SilentLeakRule(config).evaluate(charges[-1], history)

        assert candidate.evidence.to_payload() == {"period": "30 Days", "count": 5, "totalAmount": 250.0}
        assert candidate.transaction_id is None
        assert candidate.open_group == leak_group(OWNER, "entertainment")
        assert candidate.dedupe_key == candidate.open_group + str(charges[-1].id)

    def test_large_expense_is_not_checked(self, config):
        charges = [expense(20, category="entertainment", when=NOON - timedelta(days=i)) for i in range(4)]
        large = expense(500, category="entertainment")
        assert SilentLeakRule(config).evaluate(large, MemoryHistory(charges + [large])) is None


class FakeClassifier:
    def __init__(self, assessment):
        self.assessment = assessment
        self.calls = 0

    def assess(self, transaction):
        self.calls += 1
        return self.assessment


class TestAiIrregularityRule:
    """Tests for the classifier-backed rule."""

    def test_no_classifier_never_fires(self, config):
        current = expense(9000, title="Unknown transfer")
        assert AiIrregularityRule(config).evaluate(current, MemoryHistory()) is None

    def test_confident_flag_fires_high(self, config):
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.95, explanation="Looks like fraud"))
        candidate = AiIrregularityRule(config, classifier).evaluate(expense(9000), MemoryHistory())

        assert candidate.severity == Severity.HIGH
        assert candidate.explanation == "Looks like fraud"
        assert candidate.evidence.to_payload() == {"aiConfidence": 0.95}

    def test_low_confidence_is_low(self, config):
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.65))
        candidate = AiIrregularityRule(config, classifier).evaluate(expense(9000), MemoryHistory())

        assert candidate.severity == Severity.LOW

    def test_below_floor_is_dropped(self, config):
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.3))
        assert AiIrregularityRule(config, classifier).evaluate(expense(9000), MemoryHistory()) is None

    def test_ordinary_transaction_is_not_sent(self, config):
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.99))
        rule = AiIrregularityRule(config, classifier)

        assert rule.evaluate(expense(40, title="Lunch"), MemoryHistory()) is None
        assert classifier.calls == 0

    def test_suspicious_keyword_is_sent(self, config):
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.8))
        rule = AiIrregularityRule(config, classifier)

        candidate = rule.evaluate(expense(40, title="Cash withdrawal"), MemoryHistory())
        assert candidate.severity == Severity.MEDIUM
        assert classifier.calls == 1

    def test_transaction_flagged_by_another_rule_is_sent(self, config):
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.8))
        rule = AiIrregularityRule(config, classifier)
        lunch = expense(40, title="Lunch", when=datetime(2024, 3, 10, 3, 0))
        prior = (OddTimePatternRule(config).evaluate(lunch, MemoryHistory()),)

        assert rule.evaluate(lunch, MemoryHistory(), prior=prior) is not None
        assert classifier.calls == 1

    def test_verifying_findings_can_be_switched_off(self):
        config = DetectionConfig(disabled_rules=[], ai_verify_findings=False)
        classifier = FakeClassifier(ClassifierAssessment(confidence=0.8))
        lunch = expense(40, title="Lunch", when=datetime(2024, 3, 10, 3, 0))
        prior = (OddTimePatternRule(config).evaluate(lunch, MemoryHistory()),)

        assert AiIrregularityRule(config, classifier).evaluate(lunch, MemoryHistory(), prior=prior) is None
        assert classifier.calls == 0


class TestRuleRegistry:
    """Tests for rule construction."""

    def test_all_seven_rules_by_default(self, config):
        types = {rule.anomaly_type for rule in build_rules(config)}
        assert types == set(AnomalyType)

    def test_disabled_rule_is_skipped(self):
        config = DetectionConfig(disabled_rules=["odd_time_pattern"])
        types = {rule.anomaly_type for rule in build_rules(config)}
        assert AnomalyType.ODD_TIME_PATTERN not in types

    def test_candidate_rejects_mismatched_evidence(self):
        with pytest.raises(TypeError):
            AnomalyCandidate(
                anomaly_type=AnomalyType.ODD_TIME_PATTERN,
                severity=Severity.LOW,
                explanation="x",
                evidence=DuplicateEvidence(duplicate_of="abc"),
            )
