from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from finsight.goal_progress import Goal
from finsight.month_keys import (
    DEFAULT_TREND_WINDOW,
    month_key,
    normalize_month_key,
    parse_month_key,
    trailing_month_keys,
)

ZERO = Decimal("0")

EXPENSE_CATEGORIES = (
    "Food",
    "Housing",
    "Utilities",
    "Transportation",
    "Entertainment",
    "Recurring Payments",
    "Miscellaneous",
    "Healthcare",
    "Savings",
    "Taxes",
)
INCOME_CATEGORIES = ("Rental income", "Job", "Crypto", "Stock")


@dataclass(frozen=True)
class LedgerRecord:
    """A single expense or income entry as read from the record store."""

    amount: Decimal
    category: str
    date: date | datetime
    id: Optional[int] = None
    user_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def month_key(self) -> str:
        return month_key(self.date)


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: Decimal


@dataclass(frozen=True)
class MonthlySummary:
    month_key: str
    budget: Decimal
    expenses: Decimal
    savings: Decimal
    contributions: Decimal


@dataclass(frozen=True)
class TrendSeries:
    month_keys: List[str]
    expenses: List[Decimal]
    incomes: List[Decimal]

    @property
    def savings(self) -> List[Decimal]:
        # Goal contributions are not deducted here, unlike MonthlySummary.savings.
        return [
            income - expense
            for income, expense in zip(self.incomes, self.expenses)
        ]


@dataclass(frozen=True)
class CategoryHistory:
    categories: List[str]
    month_keys: List[str]
    rows: List[List[Decimal]]


def total_for_month(records: Iterable[LedgerRecord], target_month: str) -> Decimal:
    target = normalize_month_key(target_month)
    total = ZERO
    for record in records:
        if record.month_key != target:
            continue
        total += _coerce_amount(record.amount)
    return total


def expense_breakdown(
    records: Iterable[LedgerRecord], target_month: str
) -> List[CategoryTotal]:
    totals = _category_totals(records, normalize_month_key(target_month))
    # sorted() is stable with reverse=True, so ties keep first-seen order.
    return sorted(totals, key=lambda item: item.total, reverse=True)


def income_breakdown(
    records: Iterable[LedgerRecord], target_month: str
) -> List[CategoryTotal]:
    return _category_totals(records, normalize_month_key(target_month))


def total_contributions(goals: Iterable[Goal]) -> Decimal:
    total = ZERO
    for goal in goals:
        total += _coerce_amount(goal.contributions or ZERO)
    return total


def monthly_summary(
    incomes: Iterable[LedgerRecord],
    expenses: Iterable[LedgerRecord],
    goals: Iterable[Goal],
    target_month: str,
) -> MonthlySummary:
    """Budget, expenses and savings for one month.

    Savings deducts the lifetime contribution total of every goal, not only
    contributions made within ``target_month``.
    """
    target = normalize_month_key(target_month)
    budget = total_for_month(incomes, target)
    spent = total_for_month(expenses, target)
    contributions = total_contributions(goals)
    return MonthlySummary(
        month_key=target,
        budget=budget,
        expenses=spent,
        savings=budget - spent - contributions,
        contributions=contributions,
    )


def trend_series(
    expenses: Iterable[LedgerRecord],
    incomes: Iterable[LedgerRecord],
    target_month: str,
    window: int = DEFAULT_TREND_WINDOW,
) -> TrendSeries:
    keys = trailing_month_keys(target_month, window)
    return TrendSeries(
        month_keys=keys,
        expenses=_bucket_totals(expenses, keys),
        incomes=_bucket_totals(incomes, keys),
    )


def category_history(
    records: Iterable[LedgerRecord],
    categories: Sequence[str] = EXPENSE_CATEGORIES,
) -> CategoryHistory:
    """Per-month, per-category expense totals for every month present."""
    index = {category: position for position, category in enumerate(categories)}
    by_month: Dict[str, List[Decimal]] = {}
    for record in records:
        position = index.get(record.category)
        if position is None:
            continue
        row = by_month.setdefault(record.month_key, [ZERO] * len(categories))
        row[position] += _coerce_amount(record.amount)

    ordered_keys = sorted(by_month, key=parse_month_key)
    return CategoryHistory(
        categories=list(categories),
        month_keys=ordered_keys,
        rows=[by_month[key] for key in ordered_keys],
    )


def _category_totals(
    records: Iterable[LedgerRecord], target: str
) -> List[CategoryTotal]:
    totals: Dict[str, Decimal] = {}
    for record in records:
        if record.month_key != target:
            continue
        totals[record.category] = totals.get(record.category, ZERO) + _coerce_amount(
            record.amount
        )
    return [CategoryTotal(category=category, total=total) for category, total in totals.items()]


def _bucket_totals(records: Iterable[LedgerRecord], keys: List[str]) -> List[Decimal]:
    buckets = {key: ZERO for key in keys}
    for record in records:
        bucket = record.month_key
        if bucket in buckets:
            buckets[bucket] += _coerce_amount(record.amount)
    return [buckets[key] for key in keys]


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
