import calendar
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc
from spendguard.config import AuditConfig
from spendguard.core.database import SessionLocal
from spendguard.core.errors import RecordNotFound
from spendguard.models.budget import Budget
from spendguard.models.transaction import Transaction, EXPENSE, INCOME
from spendguard.schemas.security import AuditAction, AuditResource
from spendguard.schemas.transaction import BudgetCreate, BudgetUpdate, ExpenseCreate, ExpenseUpdate, IncomeCreate
from spendguard.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def budget_end_date(start: datetime, period: str) -> datetime:
    if period == "weekly":
        return start + timedelta(days=7)
    if period == "yearly":
        return _add_months(start, 12)
    return _add_months(start, 1)


def _as_uuid(value):
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        raise RecordNotFound(f"Invalid id {value}")


class TransactionService:
    """Expense, income and budget writes, each recorded in the audit log.

    Detection is not run here; callers schedule it after the write commits.
    """

    def __init__(self, db: Session = None, audit_config: Optional[AuditConfig] = None):
        self.db = db or SessionLocal()
        self.audit = AuditService(self.db, audit_config)

    def _audit(self, owner_id: str, action: AuditAction, resource: AuditResource, resource_id, details) -> None:
        self.audit.record(owner_id, action, resource, resource_id=resource_id, details=details)

    def _create(self, owner_id: str, kind: str, data) -> Transaction:
        transaction = Transaction(
            owner_id=owner_id,
            kind=kind,
            title=data.title,
            amount=abs(data.amount),
            category=data.category,
            transaction_date=data.transaction_date or datetime.utcnow(),
            description=data.description,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(transaction)
        return transaction

    def _get(self, owner_id: str, kind: str, transaction_id) -> Transaction:
        transaction = self.db.query(Transaction).filter(
            and_(Transaction.id == _as_uuid(transaction_id),
                 Transaction.owner_id == owner_id,
                 Transaction.kind == kind)
        ).first()
        if transaction is None:
            raise RecordNotFound(f"{kind.title()} {transaction_id} not found")
        return transaction

    def list_transactions(self, owner_id: str, kind: str, category: Optional[str] = None,
                          limit: int = 50, offset: int = 0) -> List[Transaction]:
        query = self.db.query(Transaction).filter(
            and_(Transaction.owner_id == owner_id, Transaction.kind == kind)
        )
        if category:
            query = query.filter(Transaction.category == category.lower())
        return query.order_by(desc(Transaction.transaction_date)).offset(offset).limit(limit).all()

    def create_expense(self, owner_id: str, data: ExpenseCreate) -> Transaction:
        expense = self._create(owner_id, EXPENSE, data)
        logger.info(f"Expense {expense.id} created for {owner_id}: {expense.title} ({expense.amount})")
        self._audit(owner_id, AuditAction.EXPENSE_CREATE, AuditResource.EXPENSE, expense.id,
                    {"title": expense.title, "amount": expense.amount, "category": expense.category})
        return expense

    def update_expense(self, owner_id: str, expense_id, data: ExpenseUpdate) -> Transaction:
        expense = self._get(owner_id, EXPENSE, expense_id)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        for field, value in changes.items():
            setattr(expense, field, abs(value) if field == "amount" else value)
        self.db.commit()
        self.db.refresh(expense)
        self._audit(owner_id, AuditAction.EXPENSE_UPDATE, AuditResource.EXPENSE, expense.id,
                    {"fields": ",".join(sorted(changes))})
        return expense

    def delete_expense(self, owner_id: str, expense_id) -> None:
        expense = self._get(owner_id, EXPENSE, expense_id)
        details = {"title": expense.title, "amount": expense.amount, "category": expense.category}
        self.db.delete(expense)
        self.db.commit()
        logger.info(f"Expense {expense_id} deleted for {owner_id}")
        self._audit(owner_id, AuditAction.EXPENSE_DELETE, AuditResource.EXPENSE, expense_id, details)

    def create_income(self, owner_id: str, data: IncomeCreate) -> Transaction:
        income = self._create(owner_id, INCOME, data)
        self._audit(owner_id, AuditAction.INCOME_CREATE, AuditResource.INCOME, income.id,
                    {"title": income.title, "amount": income.amount, "category": income.category})
        return income

    def delete_income(self, owner_id: str, income_id) -> None:
        income = self._get(owner_id, INCOME, income_id)
        details = {"title": income.title, "amount": income.amount}
        self.db.delete(income)
        self.db.commit()
        self._audit(owner_id, AuditAction.INCOME_DELETE, AuditResource.INCOME, income_id, details)

    def create_budget(self, owner_id: str, data: BudgetCreate) -> Budget:
        start = data.start_date or datetime.utcnow()
        budget = Budget(
            owner_id=owner_id,
            name=data.name,
            category=data.category,
            amount=data.amount,
            period=data.period,
            start_date=start,
            end_date=data.end_date or budget_end_date(start, data.period),
            is_active=True,
            alert_threshold=data.alert_threshold,
            description=data.description,
        )
        self.db.add(budget)
        self.db.commit()
        self.db.refresh(budget)
        logger.info(f"Budget {budget.id} ({budget.category}, {budget.amount}) created for {owner_id}")
        self._audit(owner_id, AuditAction.BUDGET_CREATE, AuditResource.BUDGET, budget.id,
                    {"name": budget.name, "category": budget.category, "amount": budget.amount})
        return budget

    def list_budgets(self, owner_id: str, active_only: bool = True) -> List[Budget]:
        query = self.db.query(Budget).filter(Budget.owner_id == owner_id)
        if active_only:
            query = query.filter(Budget.is_active.is_(True))
        return query.order_by(desc(Budget.created_at)).all()

    def _get_budget(self, owner_id: str, budget_id) -> Budget:
        budget = self.db.query(Budget).filter(
            and_(Budget.id == _as_uuid(budget_id), Budget.owner_id == owner_id)
        ).first()
        if budget is None:
            raise RecordNotFound(f"Budget {budget_id} not found")
        return budget

    def update_budget(self, owner_id: str, budget_id, data: BudgetUpdate) -> Budget:
        budget = self._get_budget(owner_id, budget_id)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        for field, value in changes.items():
            setattr(budget, field, value)
        if "end_date" not in changes and ("period" in changes or "start_date" in changes):
            budget.end_date = budget_end_date(budget.start_date, budget.period)
        self.db.commit()
        self.db.refresh(budget)
        self._audit(owner_id, AuditAction.BUDGET_UPDATE, AuditResource.BUDGET, budget.id,
                    {"fields": ",".join(sorted(changes))})
        return budget

    def deactivate_budget(self, owner_id: str, budget_id) -> Budget:
        budget = self._get_budget(owner_id, budget_id)
        budget.is_active = False
        self.db.commit()
        self.db.refresh(budget)
        self._audit(owner_id, AuditAction.BUDGET_DELETE, AuditResource.BUDGET, budget.id,
                    {"name": budget.name, "category": budget.category})
        return budget
