from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union

from config import local_today


class SummaryView(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    annual = "annual"


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date
    label: str = ""

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def to_calendar_day(value: Union[date, datetime, str]) -> date:
    """Reduce a date-like value to a timezone-naive calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def week_start(value: date) -> date:
    """Sunday on or before ``value``."""
    return value - timedelta(days=(value.weekday() + 1) % 7)


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    first = value.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def next_month_start(value: date) -> date:
    return month_end(value) + date.resolution


def resolve_summary_period(
    view: Union[SummaryView, str], anchor: Optional[date] = None
) -> Period:
    anchor = anchor or local_today()
    view = SummaryView(view)
    if view == SummaryView.weekly:
        start = week_start(anchor)
        return Period(
            "weekly",
            start,
            start + timedelta(days=6),
            f"Week of {start.strftime('%b')} {start.day}, {start.year}",
        )
    if view == SummaryView.annual:
        return Period(
            "annual",
            date(anchor.year, 1, 1),
            date(anchor.year, 12, 31),
            str(anchor.year),
        )
    return Period(
        "monthly",
        month_start(anchor),
        month_end(anchor),
        anchor.strftime("%B %Y"),
    )
