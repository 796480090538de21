from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from finsight.aggregation_engine import LedgerRecord
from finsight.month_keys import normalize_month_key

ZERO = Decimal("0")
APPROACHING_RATIO = Decimal("0.8")


@dataclass(frozen=True)
class CategoryLimit:
    category: str
    limit: Decimal
    id: int | None = None


@dataclass(frozen=True)
class LimitEvaluation:
    category: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    status: str


def evaluate_limits(
    transactions: Iterable[LedgerRecord],
    limits: Iterable[CategoryLimit],
    target_month: str,
) -> List[LimitEvaluation]:
    target = normalize_month_key(target_month)
    in_month = [txn for txn in transactions if txn.month_key == target]

    evaluations: List[LimitEvaluation] = []
    for limit in limits:
        limit_amount = _coerce_amount(limit.limit)
        if limit_amount <= ZERO:
            raise ValueError("limit must be greater than zero.")
        spent = _sum_category(in_month, limit.category)
        if spent > limit_amount:
            status = "over"
        elif spent >= APPROACHING_RATIO * limit_amount:
            status = "approaching"
        else:
            status = "ok"
        evaluations.append(
            LimitEvaluation(
                category=limit.category,
                limit=limit_amount,
                spent=spent,
                remaining=limit_amount - spent,
                status=status,
            )
        )
    return evaluations


def limit_alerts(evaluations: Iterable[LimitEvaluation]) -> List[str]:
    alerts: List[str] = []
    for evaluation in evaluations:
        if evaluation.status == "approaching":
            alerts.append(f"You are approaching the limit for {evaluation.category}.")
        elif evaluation.status == "over":
            alerts.append(f"You have exceeded the limit for {evaluation.category}.")
    return alerts


def _sum_category(transactions: Iterable[LedgerRecord], category: str) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.category != category:
            continue
        total += _coerce_amount(txn.amount)
    return total


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
