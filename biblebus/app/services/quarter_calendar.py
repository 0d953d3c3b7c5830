"""
services/quarter_calendar.py — Quarter anchors and derived group dates.

Pure functions: no database, no Flask. Everything here works on UTC calendar
dates so a server running in another timezone cannot shift a group into the
neighbouring day or quarter.

  align_to_quarter_start("2025-10-03")  → date(2025, 10, 1)
  compute_derived_dates(date(2025, 10, 1))
      → DerivedDates(end_date=date(2026, 9, 30),
                     registration_deadline=date(2025, 10, 18))
  derive_group_name(date(2025, 10, 1)) → "Bible Bus October 2025 Travelers"

Calendar arithmetic uses dateutil.relativedelta, never fixed day counts, so
"one year minus one day" is right across leap years.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple

from dateutil.relativedelta import relativedelta

from biblebus.app.errors import AppError, ErrorCode

REGISTRATION_WINDOW_DAYS = 17
MONTHS_PER_QUARTER = 3

_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# MM/DD/YYYY, MM-DD-YYYY and MM.DD.YYYY, as typed into the admin dashboard.
_US_DATE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")


class DerivedDates(NamedTuple):
    end_date: date
    registration_deadline: date


def utc_today() -> date:
    """Today's date on the UTC calendar. The default clock for all services."""
    return datetime.now(timezone.utc).date()


def _malformed(value) -> AppError:
    return AppError(
        ErrorCode.MALFORMED_DATE,
        f"{value!r} is not a recognised calendar date.",
        400,
    )


def parse_date(value) -> date:
    """
    Coerces `value` to a calendar date.

    Accepts date/datetime objects, YYYY-MM-DD, full ISO-8601 date-times
    (converted to the UTC date) and US-style month-first dates.

    Raises:
      AppError(MALFORMED_DATE, 400) — anything that is not a real date.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise _malformed(value)

    raw = value.strip()
    try:
        match = _US_DATE.match(raw)
        if match:
            month, day, year = (int(part) for part in match.groups())
            return date(year, month, day)
        if len(raw) == 10:
            return date.fromisoformat(raw)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise _malformed(value) from None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def align_to_quarter_start(value) -> date:
    """First day of the calendar quarter containing `value`, same year."""
    day = parse_date(value)
    anchor_month = ((day.month - 1) // MONTHS_PER_QUARTER) * MONTHS_PER_QUARTER + 1
    return date(day.year, anchor_month, 1)


def is_quarter_start(value: date) -> bool:
    return value.day == 1 and value.month in (1, 4, 7, 10)


def add_quarters(start: date, quarters: int) -> date:
    return start + relativedelta(months=MONTHS_PER_QUARTER * quarters)


def compute_derived_dates(start) -> DerivedDates:
    """
    end_date is the day before the first anniversary of `start`;
    registration_deadline is `start` + 17 days.
    """
    start = parse_date(start)
    return DerivedDates(
        end_date=start + relativedelta(years=1) - timedelta(days=1),
        registration_deadline=start + timedelta(days=REGISTRATION_WINDOW_DAYS),
    )


def derive_group_name(start, override: str | None = None) -> str:
    """
    "Bible Bus <Month> <Year> Travelers" for the quarter containing `start`.
    A non-blank `override` wins and is returned trimmed.
    """
    if override is not None and override.strip():
        return override.strip()
    aligned = align_to_quarter_start(start)
    return f"Bible Bus {_MONTH_NAMES[aligned.month - 1]} {aligned.year} Travelers"
