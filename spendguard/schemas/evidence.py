"""Anomaly types and the evidence payload each one carries.

Evidence key names are rendered verbatim by the dashboard, so every model
serializes with the camelCase aliases below.
"""
from enum import Enum
from typing import Any, Dict, Type, Union
from pydantic import BaseModel, ConfigDict, Field


class AnomalyType(str, Enum):
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    SPENDING_SPIKE = "SPENDING_SPIKE"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    CATEGORY_OVERUSE = "CATEGORY_OVERUSE"
    ODD_TIME_PATTERN = "ODD_TIME_PATTERN"
    SILENT_LEAK = "SILENT_LEAK"
    AI_DETECTED_IRREGULARITY = "AI_DETECTED_IRREGULARITY"


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AnomalyStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DISMISSED = "DISMISSED"


class _Evidence(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class DuplicateEvidence(_Evidence):
    duplicate_of: str = Field(..., alias="duplicateOf", description="Id of the earlier transaction")


class SpendingSpikeEvidence(_Evidence):
    average: float
    current: float
    threshold: float


class BudgetExceededEvidence(_Evidence):
    budget_limit: float = Field(..., alias="budgetLimit")
    current_spend: float = Field(..., alias="currentSpend")
    exceeded_by: float = Field(..., alias="exceededBy")


class CategoryOveruseEvidence(_Evidence):
    category_total: float = Field(..., alias="categoryTotal")
    total_monthly: float = Field(..., alias="totalMonthly")
    percentage: float


class OddTimeEvidence(_Evidence):
    hour: int = Field(..., ge=0, le=23)


class SilentLeakEvidence(_Evidence):
    period: str
    count: int
    total_amount: float = Field(..., alias="totalAmount")


class AiIrregularityEvidence(_Evidence):
    ai_confidence: float = Field(..., alias="aiConfidence", ge=0.0, le=1.0)


Evidence = Union[
    DuplicateEvidence,
    SpendingSpikeEvidence,
    BudgetExceededEvidence,
    CategoryOveruseEvidence,
    OddTimeEvidence,
    SilentLeakEvidence,
    AiIrregularityEvidence,
]

EVIDENCE_MODELS: Dict[AnomalyType, Type[_Evidence]] = {
    AnomalyType.DUPLICATE_TRANSACTION: DuplicateEvidence,
    AnomalyType.SPENDING_SPIKE: SpendingSpikeEvidence,
    AnomalyType.BUDGET_EXCEEDED: BudgetExceededEvidence,
    AnomalyType.CATEGORY_OVERUSE: CategoryOveruseEvidence,
    AnomalyType.ODD_TIME_PATTERN: OddTimeEvidence,
    AnomalyType.SILENT_LEAK: SilentLeakEvidence,
    AnomalyType.AI_DETECTED_IRREGULARITY: AiIrregularityEvidence,
}


def evidence_matches(anomaly_type: AnomalyType, evidence: _Evidence) -> bool:
    return isinstance(evidence, EVIDENCE_MODELS[AnomalyType(anomaly_type)])
