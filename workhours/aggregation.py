"""Bucketing, filtering and statistics behind the summary and history views.

Everything here is a pure function of its arguments: the caller passes the
record snapshot, the clock reading, the time zone and the first weekday.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .schemas import WorkRecord
from .utils import (
    MONTH_NAMES,
    SUNDAY,
    WEEKDAY_NAMES,
    day_bounds,
    days_in_month,
    ensure_aware,
    local_date,
    month_start,
    sunday_index,
    week_start,
)

OTHER_COMPANY_LABEL = "Other"


class Window(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True, slots=True)
class CompanyFilter:
    """Which records a view shows, by company.

    ``CompanyFilter()`` shows everything, ``CompanyFilter(name=...)`` an exact
    company and ``CompanyFilter(unassigned=True)`` the records without one.
    """

    name: Optional[str] = None
    unassigned: bool = False

    @classmethod
    def parse(cls, value: Optional[str]) -> "CompanyFilter":
        """Map a user facing selection (``None``, ``"Other"`` or a name)."""
        if value is None:
            return ALL_COMPANIES
        if value == OTHER_COMPANY_LABEL:
            return NO_COMPANY
        return cls(name=value)

    @property
    def label(self) -> Optional[str]:
        if self.unassigned:
            return OTHER_COMPANY_LABEL
        return self.name

    def matches(self, record: WorkRecord) -> bool:
        if self.unassigned:
            return record.company_name == ""
        if self.name is None:
            return True
        return record.company_name == self.name


ALL_COMPANIES = CompanyFilter()
NO_COMPANY = CompanyFilter(unassigned=True)


@dataclass(frozen=True, slots=True)
class Bucket:
    index: int
    label: str
    day: dt.date
    hours: float


@dataclass(frozen=True, slots=True)
class Stats:
    total: float
    work_days: int
    average: float
    longest: float


@dataclass(frozen=True, slots=True)
class AggregationResult:
    window: Window
    company: CompanyFilter
    range_start: dt.date
    range_end: dt.date
    buckets: Tuple[Bucket, ...]
    stats: Stats
    y_axis_max: float

    @property
    def hours(self) -> List[float]:
        return [bucket.hours for bucket in self.buckets]


def calculate_stats(hours: Sequence[float]) -> Stats:
    total = float(sum(hours))
    work_days = sum(1 for value in hours if value > 0)
    average = total / work_days if work_days > 0 else 0.0
    longest = float(max(hours)) if hours else 0.0
    return Stats(total=total, work_days=work_days, average=average, longest=longest)


def y_axis_max(max_hours: float) -> float:
    """Upper bound of the chart axis: at least 12h, or 1h for sub-hour data."""
    return max(max_hours, 1.0 if max_hours < 1 else 12.0)


def filter_by_company(records: Iterable[WorkRecord], company: CompanyFilter) -> List[WorkRecord]:
    return [record for record in records if company.matches(record)]


def sort_records(records: Iterable[WorkRecord]) -> List[WorkRecord]:
    return sorted(records, key=lambda record: record.start_time, reverse=True)


def _bucket_days(window: Window, today: dt.date, first_weekday: int) -> List[dt.date]:
    if window is Window.WEEKLY:
        start = week_start(today, first_weekday)
        days = [start + dt.timedelta(days=offset) for offset in range(7)]
        # Bucket order is Sunday..Saturday whatever day the week starts on.
        return sorted(days, key=sunday_index)
    if window is Window.BI_WEEKLY:
        start = today - dt.timedelta(days=13)
        return [start + dt.timedelta(days=offset) for offset in range(14)]
    if window is Window.MONTHLY:
        start = month_start(today)
        return [start + dt.timedelta(days=offset) for offset in range(days_in_month(today))]
    # One bucket per month, keyed by its first day.
    return [dt.date(today.year, month, 1) for month in range(1, 13)]


def _bucket_label(window: Window, index: int, day: dt.date) -> str:
    if window is Window.WEEKLY:
        return WEEKDAY_NAMES[index]
    if window is Window.BI_WEEKLY:
        return f"{WEEKDAY_NAMES[sunday_index(day)]} {day.day}"
    if window is Window.YEARLY:
        return MONTH_NAMES[day.month - 1]
    return str(day.day)


def _bucket_key(window: Window, day: dt.date) -> dt.date:
    return month_start(day) if window is Window.YEARLY else day


def _window_end(window: Window, days: List[dt.date]) -> dt.date:
    if window is Window.YEARLY:
        return dt.date(days[0].year, 12, 31)
    return max(days)


def bucket_hours(
    records: Iterable[WorkRecord],
    window: Window,
    *,
    today: dt.date,
    tz: dt.tzinfo,
    first_weekday: int = SUNDAY,
) -> Tuple[List[dt.date], List[float]]:
    """Sum ``total_hours`` per bucket, attributing each record to its start day.

    Yearly buckets collect the whole month the start day falls in.
    """
    days = _bucket_days(window, today, first_weekday)
    positions: Dict[dt.date, int] = {day: index for index, day in enumerate(days)}
    hours = [0.0] * len(days)
    for record in records:
        index = positions.get(_bucket_key(window, local_date(record.start_time, tz)))
        if index is None:
            continue
        hours[index] += max(record.total_hours, 0.0)
    return days, hours


def aggregate(
    records: Iterable[WorkRecord],
    window: Window,
    company: CompanyFilter = ALL_COMPANIES,
    *,
    now: dt.datetime,
    tz: dt.tzinfo,
    first_weekday: int = SUNDAY,
) -> AggregationResult:
    today = local_date(ensure_aware(now, tz), tz)
    selected = filter_by_company(records, company)
    days, hours = bucket_hours(selected, window, today=today, tz=tz, first_weekday=first_weekday)
    buckets = tuple(
        Bucket(index=index, label=_bucket_label(window, index, day), day=day, hours=value)
        for index, (day, value) in enumerate(zip(days, hours))
    )
    return AggregationResult(
        window=window,
        company=company,
        range_start=min(days),
        range_end=_window_end(window, days),
        buckets=buckets,
        stats=calculate_stats(hours),
        y_axis_max=y_axis_max(max(hours) if hours else 0.0),
    )


def recent_range(days: int, today: dt.date) -> Tuple[dt.date, dt.date]:
    """History bounds for the last ``days`` days: ``today - days`` through today."""
    if days < 0:
        raise ValueError("days must not be negative")
    return today - dt.timedelta(days=days), today


def filter_history(
    records: Iterable[WorkRecord],
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    company: CompanyFilter = ALL_COMPANIES,
    *,
    tz: dt.tzinfo,
) -> List[WorkRecord]:
    """Records started within ``[start_date, end_date]``, newest first.

    Both dates are inclusive local calendar days; a missing bound leaves that
    side open.
    """
    lower = day_bounds(start_date, tz)[0] if start_date else None
    upper = day_bounds(end_date, tz)[1] if end_date else None
    selected: List[WorkRecord] = []
    for record in filter_by_company(records, company):
        if lower is not None and record.start_time < lower:
            continue
        if upper is not None and record.start_time >= upper:
            continue
        selected.append(record)
    return sort_records(selected)


def history_total(records: Iterable[WorkRecord]) -> float:
    return float(sum(record.total_hours for record in records))


def company_options(records: Iterable[WorkRecord]) -> List[str]:
    """Filter choices for the history view; ``"Other"`` stands for no company."""
    names = set()
    has_unassigned = False
    for record in records:
        if record.company_name:
            names.add(record.company_name)
        else:
            has_unassigned = True
    options = sorted(names)
    if has_unassigned:
        options.append(OTHER_COMPANY_LABEL)
    return options


__all__ = [
    "ALL_COMPANIES",
    "AggregationResult",
    "Bucket",
    "CompanyFilter",
    "NO_COMPANY",
    "OTHER_COMPANY_LABEL",
    "Stats",
    "Window",
    "aggregate",
    "bucket_hours",
    "calculate_stats",
    "company_options",
    "filter_by_company",
    "filter_history",
    "history_total",
    "recent_range",
    "sort_records",
    "y_axis_max",
]
