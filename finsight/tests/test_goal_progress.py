import unittest
from datetime import date
from decimal import Decimal

from finsight.goal_progress import (
    HIGH_PROGRESS,
    LOW_PROGRESS,
    MEDIUM_PROGRESS,
    Goal,
    InsufficientSavings,
    SavingsPool,
    goal_progress,
    normalize_goal_status,
    progress_tier,
    remaining_months,
)


class GoalProgressTests(unittest.TestCase):
    def test_progress_is_percentage_of_target(self) -> None:
        self.assertEqual(goal_progress(Decimal("50"), Decimal("200")), Decimal("25"))

    def test_progress_clamped_to_hundred(self) -> None:
        self.assertEqual(goal_progress(Decimal("250"), Decimal("200")), Decimal("100"))

    def test_zero_target_does_not_divide(self) -> None:
        self.assertEqual(goal_progress(Decimal("10"), Decimal("0")), Decimal("0"))

    def test_progress_floored_at_zero(self) -> None:
        self.assertEqual(goal_progress(Decimal("-5"), Decimal("100")), Decimal("0"))

    def test_progress_tiers(self) -> None:
        self.assertEqual(progress_tier(Decimal("29.99")), LOW_PROGRESS)
        self.assertEqual(progress_tier(Decimal("30")), MEDIUM_PROGRESS)
        self.assertEqual(progress_tier(Decimal("69.99")), MEDIUM_PROGRESS)
        self.assertEqual(progress_tier(Decimal("70")), HIGH_PROGRESS)

    def test_remaining_months_counts_current_month(self) -> None:
        self.assertEqual(remaining_months(date(2025, 6, 30), today=date(2025, 1, 15)), 6)
        self.assertEqual(remaining_months(date(2025, 1, 31), today=date(2025, 1, 15)), 1)

    def test_remaining_months_at_month_end(self) -> None:
        self.assertEqual(remaining_months(date(2025, 2, 28), today=date(2025, 1, 31)), 2)

    def test_remaining_months_negative_when_overdue(self) -> None:
        self.assertEqual(remaining_months(date(2024, 10, 1), today=date(2025, 1, 15)), -2)

    def test_normalize_goal_status(self) -> None:
        self.assertEqual(normalize_goal_status(" Completed "), "completed")
        with self.assertRaises(ValueError):
            normalize_goal_status("paused")


class SavingsPoolTests(unittest.TestCase):
    def setUp(self) -> None:
        self.goal = Goal(
            name="Emergency fund",
            target_amount=Decimal("1000"),
            contributions=Decimal("120"),
        )

    def test_rejects_contribution_above_available(self) -> None:
        pool = SavingsPool(Decimal("80"))

        with self.assertRaises(InsufficientSavings) as ctx:
            pool.contribute(self.goal, Decimal("100"))

        self.assertEqual(ctx.exception.requested, Decimal("100"))
        self.assertEqual(pool.available, Decimal("80"))
        self.assertEqual(self.goal.contributions, Decimal("120"))

    def test_contribution_of_full_pool_succeeds(self) -> None:
        pool = SavingsPool(Decimal("80"))

        updated = pool.contribute(self.goal, Decimal("80"))

        self.assertEqual(updated.contributions, Decimal("200"))
        self.assertEqual(updated.name, self.goal.name)
        self.assertEqual(pool.available, Decimal("0"))

    def test_successive_contributions_draw_same_pool(self) -> None:
        pool = SavingsPool("100")

        goal = pool.contribute(self.goal, "60")
        with self.assertRaises(InsufficientSavings):
            pool.contribute(goal, "60")
        goal = pool.contribute(goal, "40")

        self.assertEqual(goal.contributions, Decimal("220"))
        self.assertEqual(pool.available, Decimal("0"))

    def test_rejects_non_positive_contribution(self) -> None:
        pool = SavingsPool(Decimal("80"))

        with self.assertRaises(ValueError):
            pool.contribute(self.goal, Decimal("0"))
        self.assertEqual(pool.available, Decimal("80"))

    def test_negative_pool_rejects_everything(self) -> None:
        pool = SavingsPool(Decimal("-20"))

        with self.assertRaises(InsufficientSavings):
            pool.contribute(self.goal, Decimal("1"))


if __name__ == "__main__":
    unittest.main()
