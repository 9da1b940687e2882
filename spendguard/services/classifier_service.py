import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from spendguard.config import LLMConfig
from spendguard.core.errors import ClassifierError
from spendguard.llm.prompts import IRREGULARITY_SYSTEM, IRREGULARITY_USER_TEMPLATE
from spendguard.llm.providers import BaseLLMProvider, make_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifierAssessment:
    confidence: float
    severity: Optional[str] = None
    explanation: Optional[str] = None


def normalize_severity(raw: Optional[str]) -> str:
    """Map free-form model severities onto LOW/MEDIUM/HIGH."""
    if not raw:
        return "MEDIUM"
    upper = str(raw).strip().upper()
    if upper in ("LOW", "MEDIUM", "HIGH"):
        return upper
    if upper in ("CRITICAL", "SEVERE", "URGENT", "EXTREME"):
        return "HIGH"
    if upper in ("INFO", "NOTE", "WARNING", "MINOR"):
        return "LOW"
    return "MEDIUM"


def parse_assessment(raw: str) -> Optional[ClassifierAssessment]:
    """Parse a classifier JSON reply. Returns None when nothing was flagged."""
    try:
        data: Dict[str, Any] = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ClassifierError(f"Classifier returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassifierError("Classifier reply is not a JSON object")

    flagged = data.get("isAnomaly", data.get("is_anomaly", False))
    if isinstance(flagged, str):
        flagged = flagged.strip().lower() == "true"
    if not flagged:
        return None

    try:
        confidence = float(data.get("confidence", 0))
    except (TypeError, ValueError) as e:
        raise ClassifierError(f"Classifier confidence is not a number: {data.get('confidence')!r}") from e
    if confidence > 1:
        # Some models answer in percent
        confidence = confidence / 100
    confidence = min(max(confidence, 0.0), 1.0)

    explanation = data.get("explanation")
    return ClassifierAssessment(
        confidence=confidence,
        severity=normalize_severity(data.get("severity")),
        explanation=str(explanation).strip() if explanation else None,
    )


class LLMClassifier:
    """Transaction classifier backed by an LLM provider."""

    def __init__(self, provider: BaseLLMProvider):
        self.provider = provider

    def assess(self, transaction) -> Optional[ClassifierAssessment]:
        user = IRREGULARITY_USER_TEMPLATE.format(
            title=transaction.title or "",
            amount=f"{abs(transaction.amount):.2f}",
            category=transaction.category or "uncategorized",
            date=transaction.transaction_date.isoformat(),
            description=transaction.description or "",
        )
        raw = self.provider.generate_json(IRREGULARITY_SYSTEM, user)
        assessment = parse_assessment(raw)
        logger.debug(f"Classifier assessment for {transaction.id}: {assessment}")
        return assessment


def make_classifier(cfg: LLMConfig) -> Optional[LLMClassifier]:
    """Build the configured classifier, or None when the AI rule is switched off."""
    if not cfg.enabled:
        return None
    try:
        provider = make_provider(
            cfg.provider,
            model=cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_output_tokens,
        )
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Classifier unavailable, AI irregularity rule disabled: {e}")
        return None
    return LLMClassifier(provider)
