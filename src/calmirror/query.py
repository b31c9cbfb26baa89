"""
Date-range expressions for reading the mirrored calendars.

  today, tomorrow        the calendar day in UTC
  week, month            7 / 30 days from the start of today
  YYYY-MM-DD             that day
  YYYY-MM-DD:YYYY-MM-DD  inclusive day span
  +Nd, -Nd, +Nw, -Nw     one day, starting at now shifted by N days/weeks
"""

import re
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import timezone

from calmirror.models import InvalidDateRange

_OFFSET_RE = re.compile(r"^([+-])(\d+)([dw])$")


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidDateRange(f"Invalid date: {value!r} (expected YYYY-MM-DD)") from None


def today_range(now: datetime | None = None) -> tuple[datetime, datetime]:
    now = now or datetime.now(timezone.utc)
    start = _day_start(now.astimezone(timezone.utc).date())
    return start, start + timedelta(days=1)


def parse_date_range(expr: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Turn a range expression into a half-open UTC ``(start, end)`` pair."""
    now = now or datetime.now(timezone.utc)
    expr = expr.strip().lower()
    today, _ = today_range(now)

    if expr == "today":
        return today, today + timedelta(days=1)
    if expr == "tomorrow":
        return today + timedelta(days=1), today + timedelta(days=2)
    if expr == "week":
        return today, today + timedelta(days=7)
    if expr == "month":
        return today, today + timedelta(days=30)

    m = _OFFSET_RE.match(expr)
    if m:
        sign, amount, unit = m.groups()
        days = int(amount) * (7 if unit == "w" else 1)
        start = now + timedelta(days=days if sign == "+" else -days)
        return start, start + timedelta(days=1)

    if ":" in expr:
        first, _, last = expr.partition(":")
        start = _day_start(_parse_day(first))
        end = _day_start(_parse_day(last)) + timedelta(days=1)
        if end <= start:
            raise InvalidDateRange(f"Range end is before its start: {expr!r}")
        return start, end

    if expr:
        start = _day_start(_parse_day(expr))
        return start, start + timedelta(days=1)

    raise InvalidDateRange("Empty date range")
