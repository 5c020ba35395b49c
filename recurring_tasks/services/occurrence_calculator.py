"""
Occurrence Calculator.

Pure date arithmetic mapping a recurrence pattern, an anchor date and a window
to the ordered candidate dates inside that window. Nothing here reads the clock
or touches storage, so any window can be recomputed and overlapping windows
always agree.
"""

import calendar
from datetime import date, timedelta
from typing import Iterator, Optional, Tuple

from recurring_tasks.models.recurrence_rule import Frequency, RecurrencePattern

ONE_DAY = timedelta(days=1)

# Longest gap between two occurrences is a yearly Feb 29 series (four years per interval)
_SEARCH_DAYS_PER_INTERVAL = 4 * 366 + 7


def sunday_index(day: date) -> int:
    """Weekday index with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def week_start(day: date) -> date:
    """Sunday starting the calendar week that contains day."""
    return day - timedelta(days=sunday_index(day))


def clamp_day(year: int, month: int, day: int) -> date:
    """Date for day in the given month, clamped to the month's last day."""
    if not date.min.year <= year <= date.max.year:
        raise OverflowError(f"year {year} is out of range")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def shift_month(year: int, month: int, months: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def occurrences_between(
    pattern: RecurrencePattern,
    anchor_date: date,
    window_start: date,
    window_end: date,
) -> Iterator[date]:
    """
    Yield candidate dates in [window_start, window_end], ascending.

    Candidates never precede anchor_date nor follow pattern.end_date.
    max_occurrences is not applied: counting belongs to the caller.

    Args:
        pattern: Validated recurrence pattern
        anchor_date: Date recurrence offsets are computed from
        window_start: First date of the window (inclusive)
        window_end: Last date of the window (inclusive)
    """
    start = max(window_start, anchor_date)
    end = window_end
    if pattern.end_date is not None and pattern.end_date < end:
        end = pattern.end_date
    if start > end:
        return

    candidates = _candidates(pattern, anchor_date, start, end)
    try:
        for candidate in candidates:
            if pattern.skip_weekends and candidate.weekday() >= 5:
                continue
            yield candidate
    except OverflowError:
        # The series ran past date.max
        return


def next_occurrence(pattern: RecurrencePattern, anchor_date: date, after: date) -> Optional[date]:
    """First candidate strictly after the given date, or None when the series has ended."""
    try:
        start = after + ONE_DAY
    except OverflowError:
        return None
    try:
        limit = start + timedelta(days=_SEARCH_DAYS_PER_INTERVAL * pattern.interval)
    except OverflowError:
        limit = date.max
    for candidate in occurrences_between(pattern, anchor_date, start, limit):
        return candidate
    return None


def _candidates(pattern: RecurrencePattern, anchor_date: date, start: date, end: date) -> Iterator[date]:
    if pattern.frequency == Frequency.DAILY:
        return _stepped(anchor_date, start, end, pattern.interval)
    if pattern.frequency == Frequency.WEEKLY:
        if pattern.days_of_week:
            return _weekly_on_days(pattern, anchor_date, start, end)
        return _stepped(anchor_date, start, end, 7 * pattern.interval)
    if pattern.frequency == Frequency.MONTHLY:
        return _monthly(pattern, anchor_date, start, end)
    if pattern.frequency == Frequency.YEARLY:
        return _yearly(pattern, anchor_date, start, end)
    raise ValueError(f"Unsupported frequency: {pattern.frequency}")


def _stepped(anchor_date: date, start: date, end: date, step_days: int) -> Iterator[date]:
    """anchor + k*step_days for k >= 0."""
    offset = (start - anchor_date).days
    k = -(-offset // step_days)  # first step landing on or after start
    current = anchor_date + timedelta(days=k * step_days)
    step = timedelta(days=step_days)
    while current <= end:
        yield current
        current += step


def _weekly_on_days(pattern: RecurrencePattern, anchor_date: date, start: date, end: date) -> Iterator[date]:
    # Week offsets are counted between Sundays of calendar weeks
    days = sorted(set(pattern.days_of_week))
    anchor_week = week_start(anchor_date)
    weeks_offset = (week_start(start) - anchor_week).days // 7
    k = -(-weeks_offset // pattern.interval)
    current_week = anchor_week + timedelta(weeks=k * pattern.interval)
    step = timedelta(weeks=pattern.interval)

    while current_week <= end:
        for index in days:
            candidate = current_week + timedelta(days=index)
            if start <= candidate <= end:
                yield candidate
        current_week += step


def _monthly(pattern: RecurrencePattern, anchor_date: date, start: date, end: date) -> Iterator[date]:
    target_day = pattern.day_of_month or anchor_date.day
    months_offset = (start.year - anchor_date.year) * 12 + (start.month - anchor_date.month)
    k = months_offset // pattern.interval

    while True:
        year, month = shift_month(anchor_date.year, anchor_date.month, k * pattern.interval)
        candidate = clamp_day(year, month, target_day)
        if candidate > end:
            return
        if candidate >= start:
            yield candidate
        k += 1


def _yearly(pattern: RecurrencePattern, anchor_date: date, start: date, end: date) -> Iterator[date]:
    k = (start.year - anchor_date.year) // pattern.interval

    while True:
        year = anchor_date.year + k * pattern.interval
        if year > end.year:
            return
        # Feb 29 falls back to Feb 28 in non-leap years
        candidate = clamp_day(year, anchor_date.month, anchor_date.day)
        if candidate > end:
            return
        if candidate >= start:
            yield candidate
        k += 1
