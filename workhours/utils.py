"""Calendar helpers with explicit rules.

Nothing in here consults the host locale: the first day of the week and the
time zone are always passed in, so bucketing is the same on every machine.
"""

from __future__ import annotations

import calendar
import datetime as dt
from typing import Tuple

SUNDAY = 6
WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def ensure_aware(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    """Attach ``tz`` to naive wall-clock values; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def local_date(value: dt.datetime, tz: dt.tzinfo) -> dt.date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(tz).date()


def day_bounds(day: dt.date, tz: dt.tzinfo) -> Tuple[dt.datetime, dt.datetime]:
    """Return ``[start, end)`` of a local calendar day as aware datetimes."""
    start = dt.datetime.combine(day, dt.time.min, tzinfo=tz)
    end = dt.datetime.combine(day + dt.timedelta(days=1), dt.time.min, tzinfo=tz)
    return start, end


def sunday_index(day: dt.date) -> int:
    """Weekday index with Sunday=0 .. Saturday=6."""
    return (day.weekday() + 1) % 7


def week_start(day: dt.date, first_weekday: int = SUNDAY) -> dt.date:
    """First day of the week containing ``day``.

    ``first_weekday`` uses Python numbering (Monday=0 .. Sunday=6).
    """
    return day - dt.timedelta(days=(day.weekday() - first_weekday) % 7)


def days_in_month(day: dt.date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def month_start(day: dt.date) -> dt.date:
    return day.replace(day=1)


def truncate_words(text: str, max_words: int) -> str:
    """Keep at most ``max_words`` whitespace separated words.

    Text within the limit is returned untouched.
    """
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words])
