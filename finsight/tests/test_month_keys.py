import unittest
from datetime import date, datetime

from finsight.month_keys import (
    month_bounds,
    month_key,
    months_between,
    normalize_month_key,
    parse_month_key,
    trailing_month_keys,
)


class MonthKeyTests(unittest.TestCase):
    def test_month_key_zero_pads_month(self) -> None:
        self.assertEqual(month_key(date(2024, 3, 15)), "03-2024")
        self.assertEqual(month_key(datetime(2024, 11, 1, 23, 59)), "11-2024")

    def test_normalize_pads_single_digit_month(self) -> None:
        self.assertEqual(normalize_month_key("9-2024"), "09-2024")
        self.assertEqual(normalize_month_key(" 12-2023 "), "12-2023")

    def test_normalize_rejects_invalid_values(self) -> None:
        for value in ("13-2024", "00-2024", "2024-09", "", "Sep-2024"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    normalize_month_key(value)

    def test_parse_month_key_returns_first_day(self) -> None:
        self.assertEqual(parse_month_key("02-2024"), date(2024, 2, 1))

    def test_trailing_keys_end_at_target(self) -> None:
        self.assertEqual(
            trailing_month_keys("09-2024"),
            ["05-2024", "06-2024", "07-2024", "08-2024", "09-2024"],
        )

    def test_trailing_keys_roll_year_boundary(self) -> None:
        self.assertEqual(
            trailing_month_keys("01-2025"),
            ["09-2024", "10-2024", "11-2024", "12-2024", "01-2025"],
        )

    def test_trailing_keys_rejects_empty_window(self) -> None:
        with self.assertRaises(ValueError):
            trailing_month_keys("01-2025", count=0)

    def test_month_bounds_end_is_exclusive(self) -> None:
        self.assertEqual(
            month_bounds("12-2024"),
            (date(2024, 12, 1), date(2025, 1, 1)),
        )

    def test_months_between_truncates_partial_months(self) -> None:
        self.assertEqual(months_between(date(2025, 3, 15), date(2025, 1, 20)), 1)
        self.assertEqual(months_between(date(2025, 3, 20), date(2025, 1, 20)), 2)
        self.assertEqual(months_between(date(2025, 1, 31), date(2025, 1, 1)), 0)

    def test_months_between_lines_up_month_ends(self) -> None:
        self.assertEqual(months_between(date(2025, 2, 28), date(2025, 1, 31)), 1)
        self.assertEqual(months_between(date(2024, 2, 29), date(2024, 1, 31)), 1)
        self.assertEqual(months_between(date(2025, 4, 30), date(2025, 3, 31)), 1)
        self.assertEqual(months_between(date(2025, 4, 29), date(2025, 3, 31)), 0)
        self.assertEqual(months_between(date(2025, 6, 30), date(2025, 3, 31)), 2)

    def test_months_between_is_negative_for_past_dates(self) -> None:
        self.assertEqual(months_between(date(2025, 1, 10), date(2025, 3, 5)), -1)
        self.assertEqual(months_between(date(2024, 10, 1), date(2025, 1, 15)), -3)


if __name__ == "__main__":
    unittest.main()
