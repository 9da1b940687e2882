from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from spendguard.api.deps import get_classifier, get_config, get_owner_id
from spendguard.config import AppConfig
from spendguard.core.database import get_db
from spendguard.core.errors import RecordNotFound
from spendguard.models.transaction import EXPENSE, INCOME
from spendguard.schemas.transaction import (
    ExpenseCreate, ExpenseUpdate, IncomeCreate,
    TransactionResponse, BudgetCreate, BudgetUpdate, BudgetResponse
)
from spendguard.services.detection_service import run_detection
from spendguard.services.transaction_service import TransactionService
from typing import List, Optional

router = APIRouter()


def _schedule_detection(background_tasks: BackgroundTasks, transaction_id, config: AppConfig, classifier) -> None:
    background_tasks.add_task(run_detection, transaction_id, config.detection, classifier)


@router.post("/expenses", response_model=TransactionResponse, status_code=201)
def create_expense(
    request: ExpenseCreate,
    background_tasks: BackgroundTasks,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    classifier=Depends(get_classifier),
    db: Session = Depends(get_db)
):
    """Record an expense and check it for anomalies in the background."""
    service = TransactionService(db, config.audit)
    expense = service.create_expense(owner_id, request)
    _schedule_detection(background_tasks, expense.id, config, classifier)
    return TransactionResponse.model_validate(expense)


@router.get("/expenses", response_model=List[TransactionResponse])
def list_expenses(
    category: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db)
):
    service = TransactionService(db)
    expenses = service.list_transactions(owner_id, EXPENSE, category=category, limit=limit, offset=offset)
    return [TransactionResponse.model_validate(e) for e in expenses]


@router.put("/expenses/{expense_id}", response_model=TransactionResponse)
def update_expense(
    expense_id: str,
    request: ExpenseUpdate,
    background_tasks: BackgroundTasks,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    classifier=Depends(get_classifier),
    db: Session = Depends(get_db)
):
    """Update an expense; the changed expense is checked again for anomalies."""
    service = TransactionService(db, config.audit)
    try:
        expense = service.update_expense(owner_id, expense_id, request)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    _schedule_detection(background_tasks, expense.id, config, classifier)
    return TransactionResponse.model_validate(expense)


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: str,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    service = TransactionService(db, config.audit)
    try:
        service.delete_expense(owner_id, expense_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "id": expense_id}


@router.post("/income", response_model=TransactionResponse, status_code=201)
def create_income(
    request: IncomeCreate,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    service = TransactionService(db, config.audit)
    return TransactionResponse.model_validate(service.create_income(owner_id, request))


@router.get("/income", response_model=List[TransactionResponse])
def list_income(
    category: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db)
):
    service = TransactionService(db)
    income = service.list_transactions(owner_id, INCOME, category=category, limit=limit, offset=offset)
    return [TransactionResponse.model_validate(i) for i in income]


@router.delete("/income/{income_id}")
def delete_income(
    income_id: str,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    service = TransactionService(db, config.audit)
    try:
        service.delete_income(owner_id, income_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "id": income_id}


@router.post("/budgets", response_model=BudgetResponse, status_code=201)
def create_budget(
    request: BudgetCreate,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    service = TransactionService(db, config.audit)
    return BudgetResponse.model_validate(service.create_budget(owner_id, request))


@router.get("/budgets", response_model=List[BudgetResponse])
def list_budgets(
    include_inactive: bool = False,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db)
):
    service = TransactionService(db)
    budgets = service.list_budgets(owner_id, active_only=not include_inactive)
    return [BudgetResponse.model_validate(b) for b in budgets]


@router.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: str,
    request: BudgetUpdate,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    service = TransactionService(db, config.audit)
    try:
        budget = service.update_budget(owner_id, budget_id, request)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return BudgetResponse.model_validate(budget)


@router.delete("/budgets/{budget_id}", response_model=BudgetResponse)
def deactivate_budget(
    budget_id: str,
    owner_id: str = Depends(get_owner_id),
    config: AppConfig = Depends(get_config),
    db: Session = Depends(get_db)
):
    """Budgets are deactivated rather than removed."""
    service = TransactionService(db, config.audit)
    try:
        budget = service.deactivate_budget(owner_id, budget_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return BudgetResponse.model_validate(budget)
