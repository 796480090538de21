from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.engine import Connection

from finsight.aggregation_engine import (
    CategoryTotal,
    LedgerRecord,
    MonthlySummary,
    TrendSeries,
    expense_breakdown,
    income_breakdown,
    monthly_summary,
    trend_series,
)
from finsight.budget_alerts import evaluate_limits, limit_alerts
from finsight.health_score import HealthAssessment, assess
from finsight.month_keys import (
    DEFAULT_TREND_WINDOW,
    month_key,
    normalize_month_key,
    parse_month_key,
    shift_month,
)
from finsight.record_store import (
    CATEGORY_LIMITS,
    GOALS,
    INCOMES,
    RECURRING_PAYMENTS,
    TRANSACTIONS,
    RecordStore,
    StoreFailure,
)
from finsight.recurring_payments import (
    DEFAULT_UPCOMING_LIMIT,
    UpcomingPayment,
    upcoming_payments,
)

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 5


@dataclass(frozen=True)
class ViewRequest:
    user_id: str
    month_key: str
    token: int


class RequestTracker:
    """Last-request-wins bookkeeping for dashboard views.

    Each user has at most one current request; results computed for an older
    token are stale and must be discarded by the caller.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._latest: Dict[str, int] = {}
        self._lock = threading.Lock()

    def issue(self, user_id: str, target_month: str) -> ViewRequest:
        normalized = normalize_month_key(target_month)
        with self._lock:
            token = next(self._counter)
            self._latest[user_id] = token
        return ViewRequest(user_id=user_id, month_key=normalized, token=token)

    def is_current(self, request: ViewRequest) -> bool:
        with self._lock:
            return self._latest.get(request.user_id) == request.token


@dataclass(frozen=True)
class Dashboard:
    month_key: str
    summary: MonthlySummary
    expense_breakdown: List[CategoryTotal]
    income_breakdown: List[CategoryTotal]
    trends: TrendSeries
    health: HealthAssessment
    recent_transactions: List[LedgerRecord] = field(default_factory=list)
    upcoming_payments: List[UpcomingPayment] = field(default_factory=list)
    alerts: List[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.expense_breakdown or self.income_breakdown)


def build_dashboard(
    store: RecordStore,
    request: ViewRequest,
    tracker: Optional[RequestTracker] = None,
    recent_limit: int = DEFAULT_RECENT_LIMIT,
    upcoming_limit: int = DEFAULT_UPCOMING_LIMIT,
    today: Optional[date] = None,
) -> Optional[Dashboard]:
    """Fetch a user's records for ``request`` and aggregate them.

    Returns None when ``tracker`` reports that a newer request was issued for
    the same user while this one was being computed.
    """
    user_id = request.user_id
    target = request.month_key

    month_expenses = store.fetch_by_user_and_month(TRANSACTIONS, user_id, target)
    month_incomes = store.fetch_by_user_and_month(INCOMES, user_id, target)
    goals = store.fetch_all(GOALS, user_id)

    window_start, window_end = trend_window(target)
    window_expenses = store.fetch_by_user_and_date_range(
        TRANSACTIONS, user_id, window_start, window_end
    )
    window_incomes = store.fetch_by_user_and_date_range(
        INCOMES, user_id, window_start, window_end
    )

    recent: List[LedgerRecord] = []
    try:
        recent = store.fetch_recent(TRANSACTIONS, user_id, recent_limit)
    except StoreFailure:
        logger.warning("Recent transactions unavailable for user %s", user_id)

    upcoming: List[UpcomingPayment] = []
    try:
        upcoming = fetch_upcoming_payments(store, user_id, today, upcoming_limit)
    except StoreFailure:
        logger.warning("Recurring payments unavailable for user %s", user_id)

    alerts: List[str] = []
    try:
        limits = store.fetch_all(CATEGORY_LIMITS, user_id)
        alerts = limit_alerts(evaluate_limits(month_expenses, limits, target))
    except StoreFailure:
        logger.warning("Category limits unavailable for user %s", user_id)

    if tracker is not None and not tracker.is_current(request):
        logger.debug("Discarding stale dashboard for user %s (%s)", user_id, target)
        return None

    summary = monthly_summary(month_incomes, month_expenses, goals, target)
    return Dashboard(
        month_key=target,
        summary=summary,
        expense_breakdown=expense_breakdown(month_expenses, target),
        income_breakdown=income_breakdown(month_incomes, target),
        trends=trend_series(window_expenses, window_incomes, target),
        health=assess(summary.budget, summary.expenses),
        recent_transactions=recent,
        upcoming_payments=upcoming,
        alerts=alerts,
    )


def available_savings(
    store: RecordStore,
    user_id: str,
    today: Optional[date] = None,
    *,
    conn: Optional[Connection] = None,
) -> Decimal:
    """Current month's income minus expenses minus all goal contributions."""
    target = month_key(today or date.today())
    summary = monthly_summary(
        store.fetch_by_user_and_month(INCOMES, user_id, target, conn=conn),
        store.fetch_by_user_and_month(TRANSACTIONS, user_id, target, conn=conn),
        store.fetch_all(GOALS, user_id, conn=conn),
        target,
    )
    return summary.savings


def fetch_upcoming_payments(
    store: RecordStore,
    user_id: str,
    today: Optional[date] = None,
    limit: int = DEFAULT_UPCOMING_LIMIT,
) -> List[UpcomingPayment]:
    payments = store.fetch_all(RECURRING_PAYMENTS, user_id)
    return upcoming_payments(payments, today or date.today(), limit)


def trend_window(target_month: str, window: int = DEFAULT_TREND_WINDOW) -> tuple[date, date]:
    """Date range covering the ``window`` months that end at ``target_month``."""
    end_month = parse_month_key(target_month)
    return shift_month(end_month, 1 - window), shift_month(end_month, 1)
