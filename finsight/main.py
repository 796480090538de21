import logging
from contextlib import asynccontextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import ClassVar

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import create_engine

from finsight.aggregation_engine import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    CategoryTotal,
    LedgerRecord,
    TrendSeries,
    category_history,
    expense_breakdown,
    income_breakdown,
    total_for_month,
    trend_series,
)
from finsight.budget_alerts import evaluate_limits, limit_alerts
from finsight.config import Settings, configure_logging, load_settings
from finsight.contributions import UserLocks, record_contribution
from finsight.dashboard import (
    RequestTracker,
    available_savings,
    build_dashboard,
    fetch_upcoming_payments,
    trend_window,
)
from finsight.goal_progress import (
    Goal,
    InsufficientSavings,
    goal_progress,
    normalize_goal_status,
    progress_tier,
    remaining_months,
)
from finsight.health_score import assess
from finsight.month_keys import month_key, normalize_month_key
from finsight.record_store import (
    CATEGORY_LIMITS,
    GOALS,
    INCOMES,
    RECURRING_PAYMENTS,
    TRANSACTIONS,
    RecordNotFound,
    RecordStore,
    StoreFailure,
)
from finsight.recurring_payments import (
    RecurringPayment,
    UpcomingPayment,
    next_due_date,
    normalize_frequency,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("10000000000")


def validate_amount(amount: Decimal, label: str = "Amount") -> Decimal:
    if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
        raise ValueError(f"{label} is out of range.")
    if amount != amount.quantize(CENT):
        raise ValueError(f"{label} must not have more than two decimal places.")
    return amount



def normalize_category(value: str, allowed: tuple[str, ...]) -> str:
    normalized = value.strip().lower()
    for category in allowed:
        if category.lower() == normalized:
            return category
    raise ValueError(f"Invalid category. Use one of: {', '.join(allowed)}.")


class LedgerEntryPayload(BaseModel):
    categories: ClassVar[tuple[str, ...]] = ()

    amount: Decimal
    category: str
    date: date
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "LedgerEntryPayload") -> "LedgerEntryPayload":
        if payload.amount < 0:
            raise ValueError("Amount must not be negative.")
        validate_amount(payload.amount)
        payload.category = normalize_category(payload.category, cls.categories)
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class TransactionPayload(LedgerEntryPayload):
    categories: ClassVar[tuple[str, ...]] = EXPENSE_CATEGORIES


class IncomePayload(LedgerEntryPayload):
    categories: ClassVar[tuple[str, ...]] = INCOME_CATEGORIES


class LedgerEntryResponse(BaseModel):
    id: int
    user_id: str
    amount: Decimal
    category: str
    date: date
    month_key: str
    notes: str | None = None


class GoalPayload(BaseModel):
    name: str
    description: str | None = None
    target_amount: Decimal
    status: str = "ongoing"
    end_date: date | None = None

    @classmethod
    def validate_payload(cls, payload: "GoalPayload") -> "GoalPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Goal name required.")
        if payload.target_amount <= 0:
            raise ValueError("Target amount must be greater than zero.")
        validate_amount(payload.target_amount, "Target amount")
        payload.status = normalize_goal_status(payload.status)
        payload.description = payload.description.strip() if payload.description else None
        return payload


class GoalResponse(BaseModel):
    id: int
    user_id: str
    name: str
    description: str | None = None
    target_amount: Decimal
    contributions: Decimal
    status: str
    end_date: date | None = None
    progress: Decimal
    progress_tier: str
    remaining_months: int | None = None


class ContributionPayload(BaseModel):
    amount: Decimal

    @classmethod
    def validate_payload(cls, payload: "ContributionPayload") -> "ContributionPayload":
        if payload.amount <= 0:
            raise ValueError("Contribution must be greater than zero.")
        validate_amount(payload.amount, "Contribution")
        return payload


class ContributionResponse(BaseModel):
    goal: GoalResponse
    available_savings: Decimal


class SavingsResponse(BaseModel):
    month: str
    available_savings: Decimal


class CategoryLimitPayload(BaseModel):
    category: str
    limit: Decimal

    @classmethod
    def validate_payload(cls, payload: "CategoryLimitPayload") -> "CategoryLimitPayload":
        payload.category = normalize_category(payload.category, EXPENSE_CATEGORIES)
        if payload.limit <= 0:
            raise ValueError("Limit must be greater than zero.")
        validate_amount(payload.limit, "Limit")
        return payload


class CategoryLimitResponse(BaseModel):
    id: int
    category: str
    limit: Decimal


class RecurringPaymentPayload(BaseModel):
    name: str
    amount: Decimal
    start_date: date
    frequency: str = "monthly"
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "RecurringPaymentPayload") -> "RecurringPaymentPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Payment name required.")
        if payload.amount <= 0:
            raise ValueError("Recurring payment amount must be greater than zero.")
        validate_amount(payload.amount)
        payload.frequency = normalize_frequency(payload.frequency)
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class RecurringPaymentResponse(BaseModel):
    id: int
    user_id: str
    name: str
    amount: Decimal
    start_date: date
    frequency: str
    notes: str | None = None
    next_due_date: date


class UpcomingPaymentResponse(BaseModel):
    id: int
    name: str
    amount: Decimal
    frequency: str
    due_date: date


class CategoryTotalResponse(BaseModel):
    category: str
    total: Decimal


class CategoryBreakdownResponse(BaseModel):
    category: str
    total: Decimal
    percentage_of_total: Decimal


class TrendResponse(BaseModel):
    months: list[str]
    expenses: list[Decimal]
    incomes: list[Decimal]
    savings: list[Decimal]


class HealthScoreResponse(BaseModel):
    month: str
    income: Decimal
    expenses: Decimal
    savings: Decimal
    score: int
    band: str


class LimitEvaluationResponse(BaseModel):
    category: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    status: str


class CategoryAlertsResponse(BaseModel):
    month: str
    evaluations: list[LimitEvaluationResponse]
    alerts: list[str]


class CategoryHistoryResponse(BaseModel):
    categories: list[str]
    months: list[str]
    rows: list[list[Decimal]]


class DashboardResponse(BaseModel):
    month: str
    budget: Decimal
    expenses: Decimal
    savings: Decimal
    has_data: bool
    expense_breakdown: list[CategoryTotalResponse]
    income_breakdown: list[CategoryTotalResponse]
    trends: TrendResponse
    health_score: int
    health_band: str
    recent_transactions: list[LedgerEntryResponse]
    upcoming_payments: list[UpcomingPaymentResponse]
    alerts: list[str]


def get_user_id(x_user_id: str | None) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity.")
    return x_user_id.strip()


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_tracker(request: Request) -> RequestTracker:
    return request.app.state.tracker


def get_contribution_locks(request: Request) -> UserLocks:
    return request.app.state.contribution_locks


def resolve_month(month: str | None) -> str:
    if not month:
        return month_key(date.today())
    try:
        return normalize_month_key(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def to_ledger_response(record: LedgerRecord) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=record.id,
        user_id=record.user_id,
        amount=record.amount,
        category=record.category,
        date=record.date,
        month_key=record.month_key,
        notes=record.notes,
    )


def to_goal_response(goal: Goal, today: date | None = None) -> GoalResponse:
    progress = goal_progress(goal.contributions, goal.target_amount)
    return GoalResponse(
        id=goal.id,
        user_id=goal.user_id,
        name=goal.name,
        description=goal.description,
        target_amount=goal.target_amount,
        contributions=goal.contributions,
        status=goal.status,
        end_date=goal.end_date,
        progress=progress,
        progress_tier=progress_tier(progress),
        remaining_months=remaining_months(goal.end_date, today) if goal.end_date else None,
    )


def to_recurring_response(
    payment: RecurringPayment, today: date | None = None
) -> RecurringPaymentResponse:
    return RecurringPaymentResponse(
        id=payment.id,
        user_id=payment.user_id,
        name=payment.name,
        amount=payment.amount,
        start_date=payment.start_date,
        frequency=payment.frequency,
        notes=payment.notes,
        next_due_date=next_due_date(payment, today or date.today()),
    )


def to_upcoming_response(item: UpcomingPayment) -> UpcomingPaymentResponse:
    return UpcomingPaymentResponse(
        id=item.payment.id,
        name=item.payment.name,
        amount=item.payment.amount,
        frequency=item.payment.frequency,
        due_date=item.due_date,
    )


def to_trend_response(series: TrendSeries) -> TrendResponse:
    return TrendResponse(
        months=series.month_keys,
        expenses=series.expenses,
        incomes=series.incomes,
        savings=series.savings,
    )


def to_category_totals(totals: list[CategoryTotal]) -> list[CategoryTotalResponse]:
    return [CategoryTotalResponse(category=item.category, total=item.total) for item in totals]


def list_ledger_entries(
    store: RecordStore,
    kind: str,
    user_id: str,
    month: str | None,
    day: date | None,
) -> list[LedgerEntryResponse]:
    if month and day:
        raise HTTPException(status_code=400, detail="Use either month or date, not both.")
    if day is not None:
        records = store.fetch_by_user_and_date_range(kind, user_id, day, day + timedelta(days=1))
    elif month:
        records = store.fetch_by_user_and_month(kind, user_id, resolve_month(month))
    else:
        records = store.fetch_all(kind, user_id)
    return [to_ledger_response(record) for record in records]


def create_ledger_entry(
    store: RecordStore, kind: str, payload: LedgerEntryPayload, user_id: str
) -> LedgerEntryResponse:
    try:
        payload = payload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with store.begin() as conn:
        record_id = store.create(kind, payload.model_dump(), user_id, conn=conn)
        record = store.get(kind, record_id, user_id, conn=conn)
    return to_ledger_response(record)


def update_ledger_entry(
    store: RecordStore, kind: str, record_id: int, payload: LedgerEntryPayload, user_id: str
) -> LedgerEntryResponse:
    try:
        payload = payload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        with store.begin() as conn:
            store.update(kind, record_id, payload.model_dump(), user_id=user_id, conn=conn)
            record = store.get(kind, record_id, user_id, conn=conn)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail="Record not found.") from exc
    return to_ledger_response(record)


def delete_record(store: RecordStore, kind: str, record_id: int, user_id: str) -> dict:
    try:
        store.delete(kind, record_id, user_id=user_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail="Record not found.") from exc
    return {"status": "deleted"}


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/transactions", response_model=list[LedgerEntryResponse])
def list_transactions(
    month: str | None = Query(None),
    day: date | None = Query(None, alias="date"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[LedgerEntryResponse]:
    user_id = get_user_id(x_user_id)
    return list_ledger_entries(store, TRANSACTIONS, user_id, month, day)


@router.post("/transactions", response_model=LedgerEntryResponse)
def create_transaction(
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> LedgerEntryResponse:
    user_id = get_user_id(x_user_id)
    return create_ledger_entry(store, TRANSACTIONS, payload, user_id)


@router.put("/transactions/{transaction_id}", response_model=LedgerEntryResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> LedgerEntryResponse:
    user_id = get_user_id(x_user_id)
    return update_ledger_entry(store, TRANSACTIONS, transaction_id, payload, user_id)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id)
    return delete_record(store, TRANSACTIONS, transaction_id, user_id)


@router.get("/incomes", response_model=list[LedgerEntryResponse])
def list_incomes(
    month: str | None = Query(None),
    day: date | None = Query(None, alias="date"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[LedgerEntryResponse]:
    user_id = get_user_id(x_user_id)
    return list_ledger_entries(store, INCOMES, user_id, month, day)


@router.post("/incomes", response_model=LedgerEntryResponse)
def create_income(
    payload: IncomePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> LedgerEntryResponse:
    user_id = get_user_id(x_user_id)
    return create_ledger_entry(store, INCOMES, payload, user_id)


@router.put("/incomes/{income_id}", response_model=LedgerEntryResponse)
def update_income(
    income_id: int,
    payload: IncomePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> LedgerEntryResponse:
    user_id = get_user_id(x_user_id)
    return update_ledger_entry(store, INCOMES, income_id, payload, user_id)


@router.delete("/incomes/{income_id}")
def delete_income(
    income_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id)
    return delete_record(store, INCOMES, income_id, user_id)


@router.get("/goals", response_model=list[GoalResponse])
def list_goals(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[GoalResponse]:
    user_id = get_user_id(x_user_id)
    return [to_goal_response(goal) for goal in store.fetch_all(GOALS, user_id)]


@router.get("/goals/savings", response_model=SavingsResponse)
def goal_savings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> SavingsResponse:
    user_id = get_user_id(x_user_id)
    today = date.today()
    return SavingsResponse(
        month=month_key(today),
        available_savings=available_savings(store, user_id, today),
    )


@router.post("/goals", response_model=GoalResponse)
def create_goal(
    payload: GoalPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = GoalPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with store.begin() as conn:
        goal_id = store.create(GOALS, payload.model_dump(), user_id, conn=conn)
        goal = store.get(GOALS, goal_id, user_id, conn=conn)
    return to_goal_response(goal)


@router.put("/goals/{goal_id}", response_model=GoalResponse)
def update_goal(
    goal_id: int,
    payload: GoalPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = GoalPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        with store.begin() as conn:
            store.update(GOALS, goal_id, payload.model_dump(), user_id=user_id, conn=conn)
            goal = store.get(GOALS, goal_id, user_id, conn=conn)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail="Goal not found.") from exc
    return to_goal_response(goal)


@router.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id)
    return delete_record(store, GOALS, goal_id, user_id)


@router.post("/goals/{goal_id}/contributions", response_model=ContributionResponse)
def contribute_to_goal(
    goal_id: int,
    payload: ContributionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
    locks: UserLocks = Depends(get_contribution_locks),
) -> ContributionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ContributionPayload.validate_payload(payload)
        updated, remaining = record_contribution(
            store, locks, user_id, goal_id, payload.amount
        )
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail="Goal not found.") from exc
    except InsufficientSavings as exc:
        logger.info(
            "Rejected contribution of %s to goal %s: %s available",
            exc.requested,
            goal_id,
            exc.available,
        )
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ContributionResponse(
        goal=to_goal_response(updated),
        available_savings=remaining,
    )


@router.get("/category-limits", response_model=list[CategoryLimitResponse])
def list_category_limits(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[CategoryLimitResponse]:
    user_id = get_user_id(x_user_id)
    return [
        CategoryLimitResponse(id=limit.id, category=limit.category, limit=limit.limit)
        for limit in store.fetch_all(CATEGORY_LIMITS, user_id)
    ]


@router.post("/category-limits", response_model=CategoryLimitResponse)
def set_category_limit(
    payload: CategoryLimitPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> CategoryLimitResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryLimitPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with store.begin() as conn:
        existing = [
            limit
            for limit in store.fetch_all(CATEGORY_LIMITS, user_id, conn=conn)
            if limit.category == payload.category
        ]
        if existing:
            limit_id = existing[0].id
            store.update(
                CATEGORY_LIMITS,
                limit_id,
                {"limit_amount": payload.limit},
                user_id=user_id,
                conn=conn,
            )
        else:
            limit_id = store.create(
                CATEGORY_LIMITS,
                {"category": payload.category, "limit_amount": payload.limit},
                user_id,
                conn=conn,
            )
    return CategoryLimitResponse(id=limit_id, category=payload.category, limit=payload.limit)


@router.delete("/category-limits/{limit_id}")
def delete_category_limit(
    limit_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id)
    return delete_record(store, CATEGORY_LIMITS, limit_id, user_id)


@router.get("/recurring-payments", response_model=list[RecurringPaymentResponse])
def list_recurring_payments(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[RecurringPaymentResponse]:
    user_id = get_user_id(x_user_id)
    today = date.today()
    return [
        to_recurring_response(payment, today)
        for payment in store.fetch_all(RECURRING_PAYMENTS, user_id)
    ]


@router.get("/recurring-payments/upcoming", response_model=list[UpcomingPaymentResponse])
def list_upcoming_payments(
    limit: int = Query(5),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[UpcomingPaymentResponse]:
    user_id = get_user_id(x_user_id)
    upcoming = fetch_upcoming_payments(store, user_id, limit=limit)
    return [to_upcoming_response(item) for item in upcoming]


@router.post("/recurring-payments", response_model=RecurringPaymentResponse)
def create_recurring_payment(
    payload: RecurringPaymentPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> RecurringPaymentResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = RecurringPaymentPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with store.begin() as conn:
        payment_id = store.create(RECURRING_PAYMENTS, payload.model_dump(), user_id, conn=conn)
        payment = store.get(RECURRING_PAYMENTS, payment_id, user_id, conn=conn)
    return to_recurring_response(payment)


@router.put("/recurring-payments/{payment_id}", response_model=RecurringPaymentResponse)
def update_recurring_payment(
    payment_id: int,
    payload: RecurringPaymentPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> RecurringPaymentResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = RecurringPaymentPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        with store.begin() as conn:
            store.update(
                RECURRING_PAYMENTS, payment_id, payload.model_dump(), user_id=user_id, conn=conn
            )
            payment = store.get(RECURRING_PAYMENTS, payment_id, user_id, conn=conn)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail="Recurring payment not found.") from exc
    return to_recurring_response(payment)


@router.delete("/recurring-payments/{payment_id}")
def delete_recurring_payment(
    payment_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> dict:
    user_id = get_user_id(x_user_id)
    return delete_record(store, RECURRING_PAYMENTS, payment_id, user_id)


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    request: Request,
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
    tracker: RequestTracker = Depends(get_tracker),
) -> DashboardResponse:
    user_id = get_user_id(x_user_id)
    view_request = tracker.issue(user_id, resolve_month(month))
    settings: Settings = request.app.state.settings
    result = build_dashboard(
        store,
        view_request,
        tracker=tracker,
        recent_limit=settings.recent_transactions_limit,
    )
    if result is None:
        raise HTTPException(status_code=409, detail="Superseded by a newer request.")
    return DashboardResponse(
        month=result.month_key,
        budget=result.summary.budget,
        expenses=result.summary.expenses,
        savings=result.summary.savings,
        has_data=result.has_data,
        expense_breakdown=to_category_totals(result.expense_breakdown),
        income_breakdown=to_category_totals(result.income_breakdown),
        trends=to_trend_response(result.trends),
        health_score=result.health.score,
        health_band=result.health.band,
        recent_transactions=[to_ledger_response(record) for record in result.recent_transactions],
        upcoming_payments=[to_upcoming_response(item) for item in result.upcoming_payments],
        alerts=result.alerts,
    )


@router.get("/reports/category-breakdown", response_model=list[CategoryBreakdownResponse])
def category_breakdown(
    month: str | None = Query(None),
    kind: str = Query("expense"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> list[CategoryBreakdownResponse]:
    user_id = get_user_id(x_user_id)
    target = resolve_month(month)
    normalized_kind = kind.strip().lower()
    if normalized_kind == "expense":
        records = store.fetch_by_user_and_month(TRANSACTIONS, user_id, target)
        totals = expense_breakdown(records, target)
    elif normalized_kind == "income":
        records = store.fetch_by_user_and_month(INCOMES, user_id, target)
        totals = income_breakdown(records, target)
    else:
        raise HTTPException(status_code=400, detail="Kind must be 'expense' or 'income'.")

    overall = total_for_month(records, target)
    results: list[CategoryBreakdownResponse] = []
    for item in totals:
        percentage = (item.total / overall) * Decimal("100") if overall > 0 else Decimal("0")
        results.append(
            CategoryBreakdownResponse(
                category=item.category,
                total=item.total,
                percentage_of_total=percentage,
            )
        )
    return results


@router.get("/reports/trends", response_model=TrendResponse)
def trends(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> TrendResponse:
    user_id = get_user_id(x_user_id)
    target = resolve_month(month)
    start_date, end_date = trend_window(target)
    expenses = store.fetch_by_user_and_date_range(TRANSACTIONS, user_id, start_date, end_date)
    incomes = store.fetch_by_user_and_date_range(INCOMES, user_id, start_date, end_date)
    return to_trend_response(trend_series(expenses, incomes, target))


@router.get("/reports/health-score", response_model=HealthScoreResponse)
def health_score(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> HealthScoreResponse:
    user_id = get_user_id(x_user_id)
    target = resolve_month(month)
    income = total_for_month(store.fetch_by_user_and_month(INCOMES, user_id, target), target)
    expenses = total_for_month(
        store.fetch_by_user_and_month(TRANSACTIONS, user_id, target), target
    )
    assessment = assess(income, expenses)
    return HealthScoreResponse(
        month=target,
        income=income,
        expenses=expenses,
        savings=income - expenses,
        score=assessment.score,
        band=assessment.band,
    )


@router.get("/reports/category-history", response_model=CategoryHistoryResponse)
def expense_category_history(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> CategoryHistoryResponse:
    user_id = get_user_id(x_user_id)
    history = category_history(store.fetch_all(TRANSACTIONS, user_id))
    return CategoryHistoryResponse(
        categories=history.categories,
        months=history.month_keys,
        rows=history.rows,
    )


@router.get("/reports/category-alerts", response_model=CategoryAlertsResponse)
def category_alerts(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    store: RecordStore = Depends(get_store),
) -> CategoryAlertsResponse:
    user_id = get_user_id(x_user_id)
    target = resolve_month(month)
    evaluations = evaluate_limits(
        store.fetch_by_user_and_month(TRANSACTIONS, user_id, target),
        store.fetch_all(CATEGORY_LIMITS, user_id),
        target,
    )
    return CategoryAlertsResponse(
        month=target,
        evaluations=[
            LimitEvaluationResponse(
                category=evaluation.category,
                limit=evaluation.limit,
                spent=evaluation.spent,
                remaining=evaluation.remaining,
                status=evaluation.status,
            )
            for evaluation in evaluations
        ],
        alerts=limit_alerts(evaluations),
    )


def create_app(settings: Settings | None = None, store: RecordStore | None = None) -> FastAPI:
    settings = settings or load_settings()
    if store is None:
        engine = create_engine(settings.database_url, connect_args=settings.connect_args)
        store = RecordStore(engine)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(settings.log_level)
        store.create_schema()
        yield

    application = FastAPI(title="Finsight", lifespan=lifespan)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.state.settings = settings
    application.state.store = store
    application.state.tracker = RequestTracker()
    application.state.contribution_locks = UserLocks()

    @application.exception_handler(StoreFailure)
    def store_failure_handler(request: Request, exc: StoreFailure) -> JSONResponse:
        logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    application.include_router(router)
    return application


app = create_app()
