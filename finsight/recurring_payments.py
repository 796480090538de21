from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

WEEKLY_DAYS = 7
BIWEEKLY_DAYS = 14
SUPPORTED_FREQUENCIES = {"weekly", "biweekly", "monthly", "yearly"}
DEFAULT_UPCOMING_LIMIT = 5


@dataclass(frozen=True)
class RecurringPayment:
    name: str
    amount: Decimal
    start_date: date
    frequency: str = "monthly"
    notes: Optional[str] = None
    id: Optional[int] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class UpcomingPayment:
    payment: RecurringPayment
    due_date: date


def normalize_frequency(frequency: str) -> str:
    normalized = "".join(ch for ch in frequency.strip().lower() if ch.isalnum())
    if normalized == "byweekly":
        normalized = "biweekly"
    if normalized not in SUPPORTED_FREQUENCIES:
        raise ValueError("Only weekly, biweekly, monthly, or yearly payments are supported.")
    return normalized


def next_due_date(payment: RecurringPayment, on_or_after: date) -> date:
    """First occurrence of ``payment`` on or after ``on_or_after``.

    Monthly and yearly payments keep the start date's day of month, clamped
    to the length of shorter months.
    """
    frequency = normalize_frequency(payment.frequency)
    start = payment.start_date
    if start >= on_or_after:
        return start
    if frequency == "weekly":
        return _first_occurrence_on_or_after(start, on_or_after, WEEKLY_DAYS)
    if frequency == "biweekly":
        return _first_occurrence_on_or_after(start, on_or_after, BIWEEKLY_DAYS)
    step = 1 if frequency == "monthly" else 12
    months = (on_or_after.year - start.year) * 12 + (on_or_after.month - start.month)
    months -= months % step
    candidate = _add_months(start, months)
    if candidate < on_or_after:
        candidate = _add_months(start, months + step)
    return candidate


def upcoming_payments(
    payments: Iterable[RecurringPayment],
    today: date,
    limit: int = DEFAULT_UPCOMING_LIMIT,
) -> List[UpcomingPayment]:
    """The ``limit`` payments falling due soonest, from ``today`` on."""
    if limit <= 0:
        return []
    upcoming = [
        UpcomingPayment(payment=payment, due_date=next_due_date(payment, today))
        for payment in payments
    ]
    upcoming.sort(key=lambda item: item.due_date)
    return upcoming[:limit]


def _first_occurrence_on_or_after(
    start_date: date, minimum_date: date, interval_days: int
) -> date:
    days_between = (minimum_date - start_date).days
    intervals = (days_between + interval_days - 1) // interval_days
    return start_date + timedelta(days=interval_days * intervals)


def _add_months(start_date: date, months: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    day = min(start_date.day, monthrange(year, month)[1])
    return date(year, month, day)
