from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")

SAVINGS_RATE_WEIGHT = Decimal("0.40")
EXPENSE_RATE_WEIGHT = Decimal("0.35")
SAVINGS_TO_EXPENSE_WEIGHT = Decimal("0.25")

VULNERABLE = "Vulnerable"
COPING = "Coping"
HEALTHY = "Healthy"


@dataclass(frozen=True)
class HealthAssessment:
    score: int
    band: str


def financial_health_score(
    income: Decimal | int | float | str,
    expenses: Decimal | int | float | str,
    savings: Decimal | int | float | str,
) -> int:
    """Weighted composite of savings rate, expense rate and savings/expense ratio.

    Returns an integer in [0, 100]. Zero income scores 0.
    """
    income_value = _coerce_amount(income)
    expenses_value = _coerce_amount(expenses)
    savings_value = _coerce_amount(savings)
    if income_value == ZERO:
        return 0

    savings_rate = savings_value / income_value
    expense_rate = expenses_value / income_value
    savings_to_expense = savings_value / expenses_value if expenses_value != ZERO else ZERO

    raw = (
        savings_rate * HUNDRED * SAVINGS_RATE_WEIGHT
        + (1 - expense_rate) * HUNDRED * EXPENSE_RATE_WEIGHT
        + savings_to_expense * HUNDRED * SAVINGS_TO_EXPENSE_WEIGHT
    )
    clamped = min(HUNDRED, max(ZERO, raw))
    return int(clamped.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify_score(score: int) -> str:
    if score < 40:
        return VULNERABLE
    if score < 80:
        return COPING
    return HEALTHY


def assess(
    income: Decimal | int | float | str,
    expenses: Decimal | int | float | str,
    savings: Optional[Decimal | int | float | str] = None,
) -> HealthAssessment:
    if savings is None:
        savings = _coerce_amount(income) - _coerce_amount(expenses)
    score = financial_health_score(income, expenses, savings)
    return HealthAssessment(score=score, band=classify_score(score))


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
