from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Literal, Optional
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class DatabaseConfig:
    # Get database credentials from environment
    user: str = field(default_factory=lambda: os.getenv("DB_USER", "postgres"))
    password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", "postgres"))
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: str = field(default_factory=lambda: os.getenv("DB_PORT", "5432"))
    name: str = field(default_factory=lambda: os.getenv("DB_NAME", "spendguard"))

    @property
    def url(self) -> str:
        """Construct database URL from components or use DATABASE_URL if provided"""
        return os.getenv(
            "DATABASE_URL",
            f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"
        )

@dataclass
class LLMConfig:
    provider: Literal["gpt", "claude"] = field(default_factory=lambda: os.getenv("CLASSIFIER_PROVIDER", "gpt"))
    # Default models are left None so provider sets a sensible default (e.g., gpt-4o or claude-3-5-sonnet)
    model: Optional[str] = field(default_factory=lambda: os.getenv("CLASSIFIER_MODEL") or None)
    temperature: float = 0.0
    max_output_tokens: int = 400
    # The AI irregularity rule only runs when a classifier is configured
    enabled: bool = field(default_factory=lambda: _env_bool("CLASSIFIER_ENABLED", False))

@dataclass
class DetectionConfig:
    disabled_rules: List[str] = field(default_factory=lambda: _env_list("DISABLED_RULES", []))

    # DUPLICATE_TRANSACTION
    duplicate_window_hours: float = field(default_factory=lambda: _env_float("DUPLICATE_WINDOW_HOURS", 24.0))
    duplicate_amount_tolerance: float = field(default_factory=lambda: _env_float("DUPLICATE_AMOUNT_TOLERANCE", 0.01))
    duplicate_match_title: bool = field(default_factory=lambda: _env_bool("DUPLICATE_MATCH_TITLE", False))
    duplicate_title_max_distance: int = 2                # 1 for titles shorter than 5 chars

    # SPENDING_SPIKE
    stats_window_days: int = field(default_factory=lambda: _env_int("STATS_WINDOW_DAYS", 30))
    spike_min_samples: int = field(default_factory=lambda: _env_int("SPIKE_MIN_SAMPLES", 3))
    spike_stddev_multiplier: float = field(default_factory=lambda: _env_float("SPIKE_STDDEV_MULTIPLIER", 2.0))
    spike_min_ratio: float = field(default_factory=lambda: _env_float("SPIKE_MIN_RATIO", 1.5))
    spike_high_ratio: float = field(default_factory=lambda: _env_float("SPIKE_HIGH_RATIO", 3.0))
    spike_per_category: bool = field(default_factory=lambda: _env_bool("SPIKE_PER_CATEGORY", False))

    # BUDGET_EXCEEDED
    budget_high_overrun_percent: float = field(default_factory=lambda: _env_float("BUDGET_HIGH_OVERRUN_PERCENT", 0.0))

    # CATEGORY_OVERUSE
    category_overuse_percent: float = field(default_factory=lambda: _env_float("CATEGORY_OVERUSE_PERCENT", 40.0))
    category_overuse_min_total: float = field(default_factory=lambda: _env_float("CATEGORY_OVERUSE_MIN_TOTAL", 1000.0))
    category_overuse_high_percent: float = field(default_factory=lambda: _env_float("CATEGORY_OVERUSE_HIGH_PERCENT", 75.0))

    # ODD_TIME_PATTERN, end-exclusive; start > end wraps midnight
    odd_hour_start: int = field(default_factory=lambda: _env_int("ODD_HOUR_START", 2))
    odd_hour_end: int = field(default_factory=lambda: _env_int("ODD_HOUR_END", 5))

    # SILENT_LEAK
    leak_window_days: int = field(default_factory=lambda: _env_int("LEAK_WINDOW_DAYS", 30))
    leak_min_count: int = field(default_factory=lambda: _env_int("LEAK_MIN_COUNT", 3))
    leak_max_amount: float = field(default_factory=lambda: _env_float("LEAK_MAX_AMOUNT", 50.0))
    leak_medium_count: int = field(default_factory=lambda: _env_int("LEAK_MEDIUM_COUNT", 8))

    # AI_DETECTED_IRREGULARITY
    ai_confidence_floor: float = field(default_factory=lambda: _env_float("AI_CONFIDENCE_FLOOR", 0.6))
    ai_medium_confidence: float = field(default_factory=lambda: _env_float("AI_MEDIUM_CONFIDENCE", 0.75))
    ai_high_confidence: float = field(default_factory=lambda: _env_float("AI_HIGH_CONFIDENCE", 0.9))
    ai_trigger_amount: float = field(default_factory=lambda: _env_float("AI_TRIGGER_AMOUNT", 5000.0))
    ai_suspicious_categories: List[str] = field(default_factory=lambda: _env_list("AI_SUSPICIOUS_CATEGORIES", ["other", "miscellaneous"]))
    ai_suspicious_keywords: str = field(default_factory=lambda: os.getenv("AI_SUSPICIOUS_KEYWORDS", r"unknown|cash|transfer|mystery"))
    ai_always_assess: bool = field(default_factory=lambda: _env_bool("AI_ALWAYS_ASSESS", False))
    # Also send transactions another rule already flagged
    ai_verify_findings: bool = field(default_factory=lambda: _env_bool("AI_VERIFY_FINDINGS", True))

    def is_enabled(self, anomaly_type: str) -> bool:
        disabled = {name.upper() for name in self.disabled_rules}
        return anomaly_type.upper() not in disabled

@dataclass
class HealthScoreConfig:
    high_deduction: float = field(default_factory=lambda: _env_float("HEALTH_HIGH_DEDUCTION", 15.0))
    medium_deduction: float = field(default_factory=lambda: _env_float("HEALTH_MEDIUM_DEDUCTION", 5.0))
    low_deduction: float = field(default_factory=lambda: _env_float("HEALTH_LOW_DEDUCTION", 2.0))
    # Fraction of the severity weight a confirmed anomaly still deducts
    confirmed_weight: float = field(default_factory=lambda: _env_float("HEALTH_CONFIRMED_WEIGHT", 0.5))
    secure_above: int = 80
    critical_below: int = 50

@dataclass
class AuditConfig:
    append_attempts: int = field(default_factory=lambda: _env_int("AUDIT_APPEND_ATTEMPTS", 3))
    retry_delay_seconds: float = field(default_factory=lambda: _env_float("AUDIT_RETRY_DELAY_SECONDS", 0.05))
    spool_path: str = field(default_factory=lambda: os.getenv("AUDIT_SPOOL_PATH", "audit_spool.jsonl"))

@dataclass
class AppConfig:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    health: HealthScoreConfig = field(default_factory=HealthScoreConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls()
