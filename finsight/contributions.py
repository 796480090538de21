from __future__ import annotations

import logging
import threading
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Tuple

from finsight.dashboard import available_savings
from finsight.goal_progress import Goal, SavingsPool
from finsight.record_store import GOALS, RecordNotFound, RecordStore

logger = logging.getLogger(__name__)


class UserLocks:
    """One lock per user, so a user's contributions run one at a time."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def for_user(self, user_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(user_id, threading.Lock())


def record_contribution(
    store: RecordStore,
    locks: UserLocks,
    user_id: str,
    goal_id: int,
    amount: Decimal,
    today: Optional[date] = None,
) -> Tuple[Goal, Decimal]:
    """Move ``amount`` from the user's available savings into a goal.

    The savings check and the write share one transaction with the user's
    goal rows locked, and the stored total is incremented in place. Returns
    the updated goal and the savings left afterwards.
    """
    with locks.for_user(user_id):
        with store.begin() as conn:
            goals = store.fetch_all(GOALS, user_id, conn=conn, for_update=True)
            goal = next((item for item in goals if item.id == goal_id), None)
            if goal is None:
                raise RecordNotFound(f"{GOALS} record {goal_id} not found.")
            pool = SavingsPool(available_savings(store, user_id, today, conn=conn))
            updated = pool.contribute(goal, amount)
            store.increment(
                GOALS,
                goal_id,
                "contributions",
                updated.contributions - goal.contributions,
                user_id=user_id,
                conn=conn,
            )
    logger.info("Contributed %s to goal %s for user %s", amount, goal_id, user_id)
    return updated, pool.available
