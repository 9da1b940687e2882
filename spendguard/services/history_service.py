import logging
import numpy as np
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc, func
from sqlalchemy.exc import SQLAlchemyError
from spendguard.core.database import SessionLocal
from spendguard.core.errors import HistoryUnavailable
from spendguard.models.budget import Budget
from spendguard.models.transaction import Transaction, EXPENSE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollingStats:
    average: float
    stddev: float
    count: int


def month_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class HistoryProvider:
    """Read-only view of an owner's transactions and budgets used by the rules.

    Implementations raise HistoryUnavailable when the backing store cannot answer.
    """

    def recent_transactions(self, owner_id: str, category: Optional[str], since: datetime,
                            until: datetime, exclude_id=None) -> List[Transaction]:
        raise NotImplementedError

    def active_budget(self, owner_id: str, category: str, at: datetime) -> Optional[Budget]:
        raise NotImplementedError

    def rolling_stats(self, owner_id: str, category: Optional[str], until: datetime,
                      window_days: int, exclude_id=None) -> RollingStats:
        raise NotImplementedError

    def category_spend(self, owner_id: str, category: Optional[str], since: datetime, until: datetime) -> float:
        raise NotImplementedError

    def owners_with_activity(self, since: datetime, until: datetime) -> List[str]:
        raise NotImplementedError


class HistoryService(HistoryProvider):
    """History reads straight from the transaction store.

    Nothing is cached: every call reflects the writes committed so far.
    """

    def __init__(self, db: Session = None):
        self.db = db or SessionLocal()

    def _expenses(self, owner_id: str):
        return self.db.query(Transaction).filter(
            and_(Transaction.owner_id == owner_id, Transaction.kind == EXPENSE)
        )

    def _category_filter(self, query, category: Optional[str]):
        if category is None:
            return query
        return query.filter(func.lower(Transaction.category) == category.lower())

    def recent_transactions(self, owner_id: str, category: Optional[str], since: datetime,
                            until: datetime, exclude_id=None) -> List[Transaction]:
        try:
            query = self._category_filter(self._expenses(owner_id), category).filter(
                and_(Transaction.transaction_date >= since,
                     Transaction.transaction_date <= until)
            )
            if exclude_id is not None:
                query = query.filter(Transaction.id != exclude_id)
            return query.order_by(desc(Transaction.transaction_date), desc(Transaction.created_at)).all()
        except SQLAlchemyError as e:
            raise HistoryUnavailable(f"recent transactions for {owner_id}: {e}") from e

    def active_budget(self, owner_id: str, category: str, at: datetime) -> Optional[Budget]:
        if not category:
            return None
        try:
            return self.db.query(Budget).filter(
                and_(Budget.owner_id == owner_id,
                     Budget.is_active.is_(True),
                     func.lower(Budget.category) == category.lower(),
                     Budget.start_date <= at,
                     Budget.end_date > at)
            ).order_by(desc(Budget.created_at)).first()
        except SQLAlchemyError as e:
            raise HistoryUnavailable(f"active budget for {owner_id}/{category}: {e}") from e

    def rolling_stats(self, owner_id: str, category: Optional[str], until: datetime,
                      window_days: int, exclude_id=None) -> RollingStats:
        since = until - timedelta(days=window_days)
        try:
            query = self._category_filter(
                self.db.query(Transaction.amount).filter(
                    and_(Transaction.owner_id == owner_id,
                         Transaction.kind == EXPENSE,
                         Transaction.transaction_date >= since,
                         Transaction.transaction_date <= until)
                ),
                category,
            )
            if exclude_id is not None:
                query = query.filter(Transaction.id != exclude_id)
            amounts = [abs(amount) for (amount,) in query.all() if amount is not None]
        except SQLAlchemyError as e:
            raise HistoryUnavailable(f"rolling stats for {owner_id}: {e}") from e

        if not amounts:
            return RollingStats(average=0.0, stddev=0.0, count=0)

        logger.debug(f"Rolling stats for {owner_id}/{category or '*'}: {len(amounts)} samples since {since.date()}")
        amounts_array = np.array(amounts, dtype=float)
        return RollingStats(
            average=float(np.mean(amounts_array)),
            stddev=float(np.std(amounts_array)),
            count=len(amounts),
        )

    def category_spend(self, owner_id: str, category: Optional[str], since: datetime, until: datetime) -> float:
        try:
            query = self._category_filter(
                self.db.query(func.sum(Transaction.amount)).filter(
                    and_(Transaction.owner_id == owner_id,
                         Transaction.kind == EXPENSE,
                         Transaction.transaction_date >= since,
                         Transaction.transaction_date <= until)
                ),
                category,
            )
            return float(query.scalar() or 0)
        except SQLAlchemyError as e:
            raise HistoryUnavailable(f"category spend for {owner_id}: {e}") from e

    def owners_with_activity(self, since: datetime, until: datetime) -> List[str]:
        try:
            rows = self.db.query(Transaction.owner_id).filter(
                and_(Transaction.kind == EXPENSE,
                     Transaction.transaction_date >= since,
                     Transaction.transaction_date <= until)
            ).distinct().all()
        except SQLAlchemyError as e:
            raise HistoryUnavailable(f"active owners: {e}") from e
        return sorted(owner_id for (owner_id,) in rows)
