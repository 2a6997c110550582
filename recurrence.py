from datetime import date, timedelta

from models import Frequency, RecurrenceRule

DEFAULT_SEMI_MONTHLY_DAYS = (1, 15)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def sunday_weekday(value: date) -> int:
    """Day of week with Sunday as 0 and Saturday as 6."""
    return (value.weekday() + 1) % 7


def _month_index(value: date) -> int:
    return value.year * 12 + value.month - 1


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def _every_n_days(
    anchor: date, step_days: int, window_start: date, effective_end: date
) -> list[date]:
    current = anchor
    if current < window_start:
        behind = (window_start - current).days
        current += timedelta(days=-(-behind // step_days) * step_days)
    dates: list[date] = []
    step = timedelta(days=step_days)
    while current <= effective_end:
        dates.append(current)
        current += step
    return dates


def _every_n_months(
    start: date,
    step_months: int,
    desired_day: int,
    window_start: date,
    effective_end: date,
) -> list[date]:
    months = 0
    gap = _month_index(window_start) - _month_index(start)
    if gap > 0:
        months = gap // step_months * step_months
    dates: list[date] = []
    while True:
        occurrence = _add_months(start, months, desired_day=desired_day)
        if occurrence > effective_end:
            break
        if occurrence >= window_start and occurrence >= start:
            dates.append(occurrence)
        months += step_months
    return dates


def _semi_monthly(
    start: date, days: list[int], window_start: date, effective_end: date
) -> list[date]:
    first = max(start, window_start)
    cursor = date(first.year, first.month, 1)
    dates: list[date] = []
    while cursor <= effective_end:
        for day in days:
            occurrence = _add_months(cursor, 0, desired_day=day)
            if start <= occurrence and window_start <= occurrence <= effective_end:
                dates.append(occurrence)
        cursor = _add_months(cursor, 1, desired_day=1)
    return dates


def expand_recurrence(
    rule: RecurrenceRule, window_start: date, window_end: date
) -> list[date]:
    """Occurrence dates of ``rule`` within ``[window_start, window_end]``.

    The result is sorted and finite. ``rule`` only needs the attributes of
    :class:`models.RecurrenceRule`; missing optional anchors fall back to the
    rule's own start date.
    """
    interval = 1 if rule.interval is None else int(rule.interval)
    if interval <= 0:
        raise ValueError(f"Recurrence interval must be positive, got {interval}")

    start = rule.start_date
    end = rule.end_date
    if end is not None and end < window_start:
        return []
    if start > window_end:
        return []
    effective_end = min(end, window_end) if end is not None else window_end

    frequency = Frequency(rule.frequency)
    if frequency in (Frequency.daily, Frequency.custom):
        return _every_n_days(start, interval, window_start, effective_end)
    if frequency == Frequency.weekly:
        anchor = start
        if rule.day_of_week is not None:
            anchor += timedelta(days=(rule.day_of_week - sunday_weekday(start)) % 7)
        return _every_n_days(anchor, 7 * interval, window_start, effective_end)
    if frequency == Frequency.biweekly:
        return _every_n_days(start, 14, window_start, effective_end)
    if frequency == Frequency.monthly:
        desired_day = rule.day_of_month or start.day
        return _every_n_months(
            start, interval, desired_day, window_start, effective_end
        )
    if frequency == Frequency.semi_monthly:
        days = sorted(rule.days_of_month or DEFAULT_SEMI_MONTHLY_DAYS)
        return _semi_monthly(start, days, window_start, effective_end)
    # annually; Feb 29 anchors clamp to Feb 28 in common years
    return _every_n_months(
        start, 12 * interval, start.day, window_start, effective_end
    )
