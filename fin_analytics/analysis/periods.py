"""
Period bucketing for analysis windows.

Turns a date range and granularity into ordered period boundaries, resolves
named reporting windows (monthly, quarterly, yearly, YTD, custom) and places
dates into generated buckets. All functions are pure.
"""

import calendar
from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Union

from fin_analytics.analysis.constants import PeriodType, VariancePeriod
from fin_analytics.core.errors import InvalidRangeError


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date window."""
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def add_months(value: date, months: int) -> date:
    """
    Shift a date by whole calendar months, clamping the day to month end.

    Args:
        value: Anchor date
        months: Number of months (may be negative)

    Returns:
        Shifted date (Jan 31 + 1 month -> Feb 28/29)
    """
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def start_of_quarter(value: date) -> date:
    return date(value.year, ((value.month - 1) // 3) * 3 + 1, 1)


def _coerce_period_type(granularity: Union[PeriodType, str]) -> PeriodType:
    return granularity if isinstance(granularity, PeriodType) else PeriodType(granularity)


def advance(value: date, granularity: Union[PeriodType, str], steps: int = 1) -> date:
    """Move a date forward (or backward) by a number of periods."""
    granularity = _coerce_period_type(granularity)
    if granularity == PeriodType.DAILY:
        return value + timedelta(days=steps)
    if granularity == PeriodType.WEEKLY:
        return value + timedelta(weeks=steps)
    if granularity == PeriodType.MONTHLY:
        return add_months(value, steps)
    return add_months(value, 3 * steps)


def generate_periods(
    start: date,
    end: date,
    granularity: Union[PeriodType, str] = PeriodType.MONTHLY,
) -> list[date]:
    """
    Generate ordered period-start dates covering [start, end].

    Month and quarter steps are computed from the anchor date rather than by
    repeated stepping, so a Jan 31 anchor gives Feb 28, Mar 31, Apr 30.

    Args:
        start: First period start
        end: Inclusive end of the window
        granularity: daily, weekly, monthly or quarterly

    Returns:
        Period starts ascending; empty when start > end
    """
    granularity = _coerce_period_type(granularity)
    periods = []
    step = 0
    cursor = start
    while cursor <= end:
        periods.append(cursor)
        step += 1
        cursor = advance(start, granularity, step)
    return periods


def bucket_index(periods: list[date], value: date) -> Optional[int]:
    """
    Index of the period containing a date.

    Returns None for dates before the first period. Dates after the window
    end fall into the last bucket, so callers must bound their reads.
    """
    index = bisect_right(periods, value) - 1
    return index if index >= 0 else None


def period_start_for(value: date, granularity: Union[PeriodType, str]) -> date:
    """Aligned start of the period (Monday-based weeks) containing a date."""
    granularity = _coerce_period_type(granularity)
    if granularity == PeriodType.DAILY:
        return value
    if granularity == PeriodType.WEEKLY:
        return value - timedelta(days=value.weekday())
    if granularity == PeriodType.MONTHLY:
        return start_of_month(value)
    return start_of_quarter(value)


def months_in_range(fiscal_year: int, start: date, end: date) -> list[int]:
    """
    Month indexes (1-12) of a fiscal year whose month overlaps [start, end].

    Args:
        fiscal_year: Calendar year of the plan
        start: Window start
        end: Window end

    Returns:
        Ascending month numbers
    """
    months = []
    for month in range(1, 13):
        first = date(fiscal_year, month, 1)
        if first <= end and end_of_month(first) >= start:
            months.append(month)
    return months


def date_range_for_period_type(
    fiscal_year: int,
    period_type: Union[VariancePeriod, str] = VariancePeriod.YEARLY,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
    today: Optional[date] = None,
) -> DateRange:
    """
    Resolve a named reporting period into a date window.

    - monthly: the current calendar month
    - quarterly: the current quarter, placed in the fiscal year
    - yearly: Jan 1 to Dec 31 of the fiscal year
    - ytd: Jan 1 of the fiscal year to today
    - custom: the caller's bounds; when either bound is missing the yearly
      window is used instead

    Raises:
        InvalidRangeError: custom bounds with start after end
    """
    period_type = period_type if isinstance(period_type, VariancePeriod) else VariancePeriod(period_type)
    today = today or date.today()

    if period_type == VariancePeriod.CUSTOM and custom_start is not None and custom_end is not None:
        if custom_start > custom_end:
            raise InvalidRangeError(
                f"Start date {custom_start.isoformat()} is after end date {custom_end.isoformat()}",
                start=custom_start,
                end=custom_end,
            )
        return DateRange(custom_start, custom_end)

    if period_type == VariancePeriod.MONTHLY:
        return DateRange(start_of_month(today), end_of_month(today))

    if period_type == VariancePeriod.QUARTERLY:
        quarter_first_month = ((today.month - 1) // 3) * 3 + 1
        quarter_start = date(fiscal_year, quarter_first_month, 1)
        return DateRange(quarter_start, end_of_month(add_months(quarter_start, 2)))

    if period_type == VariancePeriod.YTD:
        return DateRange(date(fiscal_year, 1, 1), today)

    return DateRange(date(fiscal_year, 1, 1), date(fiscal_year, 12, 31))
