"""Error taxonomy for detection, resolution and auditing."""
from typing import Optional


class SpendguardError(Exception):
    """Base class for all service errors."""


class RuleEvaluationError(SpendguardError):
    """A single detection rule failed; isolated by the engine."""

    def __init__(self, rule_type: str, cause: BaseException):
        super().__init__(f"Rule {rule_type} failed: {cause}")
        self.rule_type = rule_type
        self.cause = cause


class HistoryUnavailable(SpendguardError):
    """The transaction/budget store could not answer a history query."""


class ClassifierError(SpendguardError):
    """The external classifier returned nothing usable."""


class AnomalyNotFound(SpendguardError):
    def __init__(self, anomaly_id):
        super().__init__(f"Anomaly {anomaly_id} not found")
        self.anomaly_id = anomaly_id


class AlreadyResolved(SpendguardError):
    def __init__(self, anomaly_id, status: Optional[str] = None):
        super().__init__(f"Anomaly {anomaly_id} is already {status or 'resolved'}")
        self.anomaly_id = anomaly_id
        self.status = status


class AuditWriteError(SpendguardError):
    """An audit entry could not be written after all retries."""


class RecordNotFound(SpendguardError):
    """An expense, income or budget does not exist for the owner."""
