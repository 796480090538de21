import os
import tempfile
import threading
import time
import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from finsight.contributions import UserLocks, record_contribution
from finsight.goal_progress import InsufficientSavings
from finsight.record_store import GOALS, INCOMES, RecordNotFound, RecordStore

TODAY = date(2024, 9, 20)


class SlowGoalStore(RecordStore):
    """Pauses after reading goals so concurrent contributions overlap."""

    def fetch_all(self, kind, user_id, *, conn=None, for_update=False):
        records = super().fetch_all(kind, user_id, conn=conn, for_update=for_update)
        if kind == GOALS:
            time.sleep(0.05)
        return records


def seed(store: RecordStore) -> int:
    store.create(
        INCOMES,
        {"amount": Decimal("100"), "category": "Job", "date": date(2024, 9, 5)},
        "u1",
    )
    return store.create(GOALS, {"name": "Trip", "target_amount": Decimal("500")}, "u1")


class RecordContributionTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.store = RecordStore(engine)
        self.store.create_schema()
        self.goal_id = seed(self.store)
        self.locks = UserLocks()

    def test_contribution_increments_goal(self) -> None:
        goal, remaining = record_contribution(
            self.store, self.locks, "u1", self.goal_id, Decimal("30"), today=TODAY
        )

        self.assertEqual(goal.contributions, Decimal("30"))
        self.assertEqual(remaining, Decimal("70"))
        stored = self.store.get(GOALS, self.goal_id, "u1")
        self.assertEqual(stored.contributions, Decimal("30"))

    def test_second_contribution_sees_first(self) -> None:
        record_contribution(self.store, self.locks, "u1", self.goal_id, Decimal("80"), today=TODAY)

        with self.assertRaises(InsufficientSavings):
            record_contribution(
                self.store, self.locks, "u1", self.goal_id, Decimal("80"), today=TODAY
            )
        self.assertEqual(self.store.get(GOALS, self.goal_id, "u1").contributions, Decimal("80"))

    def test_other_users_goal_is_not_found(self) -> None:
        with self.assertRaises(RecordNotFound):
            record_contribution(
                self.store, self.locks, "u2", self.goal_id, Decimal("10"), today=TODAY
            )

    def test_locks_are_per_user(self) -> None:
        self.assertIs(self.locks.for_user("u1"), self.locks.for_user("u1"))
        self.assertIsNot(self.locks.for_user("u1"), self.locks.for_user("u2"))


class ConcurrentContributionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tempdir.name, "finsight.db")
        self.engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False},
        )
        self.store = SlowGoalStore(self.engine)
        self.store.create_schema()
        self.goal_id = seed(self.store)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tempdir.cleanup()

    def test_concurrent_contributions_do_not_double_spend(self) -> None:
        locks = UserLocks()
        barrier = threading.Barrier(2)
        outcomes = []

        def contribute() -> None:
            barrier.wait()
            try:
                record_contribution(
                    self.store, locks, "u1", self.goal_id, Decimal("80"), today=TODAY
                )
                outcomes.append("accepted")
            except InsufficientSavings:
                outcomes.append("rejected")

        threads = [threading.Thread(target=contribute) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(sorted(outcomes), ["accepted", "rejected"])
        stored = self.store.get(GOALS, self.goal_id, "u1")
        self.assertEqual(stored.contributions, Decimal("80"))


if __name__ == "__main__":
    unittest.main()
