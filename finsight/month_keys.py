from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import List, Tuple

MONTH_KEY_FORMAT = "%m-%Y"
DEFAULT_TREND_WINDOW = 5

_MONTH_KEY_PATTERN = re.compile(r"^\s*(\d{1,2})-(\d{4})\s*$")


def month_key(value: date | datetime) -> str:
    return value.strftime(MONTH_KEY_FORMAT)


def normalize_month_key(value: str | date | datetime) -> str:
    """Return the canonical "MM-yyyy" key for a date or a month key string.

    Single-digit months ("9-2024") are zero padded.
    """
    if isinstance(value, (date, datetime)):
        return month_key(value)
    match = _MONTH_KEY_PATTERN.match(value or "")
    if not match:
        raise ValueError("Invalid month format. Use MM-YYYY.")
    month = int(match.group(1))
    year = int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError("Invalid month format. Use MM-YYYY.")
    return f"{month:02d}-{year:04d}"


def parse_month_key(value: str) -> date:
    normalized = normalize_month_key(value)
    return datetime.strptime(normalized, MONTH_KEY_FORMAT).date()


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_bounds(value: str | date) -> Tuple[date, date]:
    """First day of the month and first day of the following month."""
    start = parse_month_key(value) if isinstance(value, str) else value.replace(day=1)
    return start, shift_month(start, 1)


def trailing_month_keys(target: str, count: int = DEFAULT_TREND_WINDOW) -> List[str]:
    if count <= 0:
        raise ValueError("count must be greater than zero.")
    end_month = parse_month_key(target)
    return [month_key(shift_month(end_month, offset)) for offset in range(1 - count, 1)]


def months_between(later: date | datetime, earlier: date | datetime) -> int:
    """Whole calendar months from ``earlier`` to ``later``.

    Partial months are truncated toward zero, so the result is negative when
    ``later`` falls before ``earlier``. Month ends line up: Jan 31 to Feb 28
    is one whole month, as is Mar 31 to Apr 30.
    """
    later_day = _as_date(later)
    earlier_day = _as_date(earlier)
    if later_day == earlier_day:
        return 0
    sign = 1 if later_day > earlier_day else -1
    difference = abs(
        (later_day.year - earlier_day.year) * 12 + (later_day.month - earlier_day.month)
    )
    if difference < 1:
        return 0

    anchor = later_day
    if anchor.month == 2 and anchor.day > 27:
        # late February stands in for the 30th, rolling into March
        anchor = date(anchor.year, 2, 1) + timedelta(days=29)
    shifted = _shift_keeping_day(anchor, -sign * difference)
    last_month_partial = shifted < earlier_day if sign > 0 else shifted > earlier_day
    if sign > 0 and difference == 1 and later_day == _last_day_of_month(later_day):
        last_month_partial = False
    return sign * (difference - int(last_month_partial))


def _shift_keeping_day(value: date, months: int) -> date:
    """Move ``value`` by whole months, spilling into the next month on overflow."""
    return shift_month(value, months) + timedelta(days=value.day - 1)


def _last_day_of_month(value: date) -> date:
    return shift_month(value, 1) - timedelta(days=1)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
