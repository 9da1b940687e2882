"""
Pytest configuration and shared fixtures for Spendguard tests.

The database is a throwaway SQLite file; DATABASE_URL has to be set before
spendguard is imported because the engine is created at import time.
"""

import os
import tempfile
from datetime import datetime, timedelta
from typing import Callable, Generator, Optional

_TEST_DIR = tempfile.mkdtemp(prefix="spendguard-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'spendguard.db')}"
os.environ["AUDIT_SPOOL_PATH"] = os.path.join(_TEST_DIR, "audit_spool.jsonl")
os.environ["CLASSIFIER_ENABLED"] = "false"

import pytest

from spendguard.config import AppConfig, AuditConfig, DetectionConfig
from spendguard.core.database import Base, SessionLocal, engine, register_models
from spendguard.models import Budget, Transaction

OWNER = "user-1"
OTHER_OWNER = "user-2"

# Noon keeps the odd-hours rule quiet unless a test asks for it
BASE_DATE = datetime(2024, 3, 10, 12, 0, 0)


@pytest.fixture(autouse=True)
def schema() -> Generator[None, None, None]:
    """Fresh tables for every test."""
    register_models()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    spool = os.environ["AUDIT_SPOOL_PATH"]
    if os.path.exists(spool):
        os.remove(spool)


@pytest.fixture
def db():
    """Session bound to the test database."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config(tmp_path) -> AppConfig:
    """Application config with defaults and a per-test audit spool."""
    return AppConfig(
        detection=DetectionConfig(disabled_rules=[]),
        audit=AuditConfig(append_attempts=2, retry_delay_seconds=0.0,
                          spool_path=str(tmp_path / "audit_spool.jsonl")),
    )


@pytest.fixture
def make_expense(db) -> Callable[..., Transaction]:
    """Insert an expense directly, bypassing the write path."""

    def _make(amount: float, category: str = "food", title: str = "Lunch",
              when: Optional[datetime] = None, owner_id: str = OWNER,
              description: Optional[str] = None) -> Transaction:
        expense = Transaction(
            owner_id=owner_id,
            kind="expense",
            title=title,
            amount=amount,
            category=category,
            transaction_date=when or BASE_DATE,
            description=description,
        )
        db.add(expense)
        db.commit()
        db.refresh(expense)
        return expense

    return _make


@pytest.fixture
def make_budget(db) -> Callable[..., Budget]:
    """Insert an active budget covering March 2024 by default."""

    def _make(amount: float, category: str = "food", name: str = "Food",
              start: Optional[datetime] = None, end: Optional[datetime] = None,
              owner_id: str = OWNER) -> Budget:
        start = start or datetime(2024, 3, 1)
        budget = Budget(
            owner_id=owner_id,
            name=name,
            category=category,
            amount=amount,
            period="monthly",
            start_date=start,
            end_date=end or start + timedelta(days=31),
            is_active=True,
        )
        db.add(budget)
        db.commit()
        db.refresh(budget)
        return budget

    return _make
