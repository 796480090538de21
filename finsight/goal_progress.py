from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Optional

from finsight.month_keys import months_between

ZERO = Decimal("0")
HUNDRED = Decimal("100")

LOW_PROGRESS = "low"
MEDIUM_PROGRESS = "medium"
HIGH_PROGRESS = "high"

GOAL_STATUSES = {"ongoing", "completed"}


@dataclass(frozen=True)
class Goal:
    name: str
    target_amount: Decimal
    contributions: Decimal = ZERO
    end_date: Optional[date] = None
    description: Optional[str] = None
    status: str = "ongoing"
    id: Optional[int] = None
    user_id: Optional[str] = None


class InsufficientSavings(ValueError):
    """Raised when a contribution is larger than the available savings."""

    def __init__(self, requested: Decimal, available: Decimal) -> None:
        super().__init__("Not enough savings to contribute this amount.")
        self.requested = requested
        self.available = available


def goal_progress(
    contributions: Decimal | int | float | str,
    target: Decimal | int | float | str,
) -> Decimal:
    target_value = _coerce_amount(target)
    if target_value <= ZERO:
        return ZERO
    progress = _coerce_amount(contributions) / target_value * HUNDRED
    return max(ZERO, min(progress, HUNDRED))


def progress_tier(progress: Decimal | int | float) -> str:
    if progress < 30:
        return LOW_PROGRESS
    if progress < 70:
        return MEDIUM_PROGRESS
    return HIGH_PROGRESS


def remaining_months(end_date: date, today: Optional[date] = None) -> int:
    """Months left until ``end_date``, counting the current month.

    Zero or negative once the goal is overdue.
    """
    return months_between(end_date, today or date.today()) + 1


def normalize_goal_status(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in GOAL_STATUSES:
        raise ValueError("Invalid goal status.")
    return normalized


class SavingsPool:
    """Available savings that goal contributions draw down.

    A contribution either succeeds, increasing the goal and decreasing the
    pool by the same amount, or is rejected leaving both untouched.
    """

    def __init__(self, available: Decimal | int | float | str) -> None:
        self._available = _coerce_amount(available)

    @property
    def available(self) -> Decimal:
        return self._available

    def contribute(self, goal: Goal, amount: Decimal | int | float | str) -> Goal:
        contribution = _coerce_amount(amount)
        if contribution <= ZERO:
            raise ValueError("Contribution must be greater than zero.")
        if contribution > self._available:
            raise InsufficientSavings(contribution, self._available)
        updated = replace(
            goal,
            contributions=_coerce_amount(goal.contributions or ZERO) + contribution,
        )
        self._available -= contribution
        return updated


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
