from __future__ import annotations

from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, timedelta
from typing import Optional

from finance_tracker.errors import InvalidPeriod


@dataclass(frozen=True)
class Period:
    year: int
    month: int
    start_date: date
    end_date: date

    def contains(self, value: Optional[date]) -> bool:
        if value is None:
            return False
        return self.start_date <= value <= self.end_date


def resolve_period(
    year: Optional[int],
    month: Optional[int],
    today: date,
) -> Period:
    if month is not None and not 1 <= month <= 12:
        raise InvalidPeriod("Month must be between 1 and 12.")
    if year is not None and not MINYEAR <= year <= MAXYEAR:
        raise InvalidPeriod(f"Year must be between {MINYEAR} and {MAXYEAR}.")
    if year is None or month is None:
        year, month = today.year, today.month
    return Period(
        year=year,
        month=month,
        start_date=month_start(date(year, month, 1)),
        end_date=month_end(date(year, month, 1)),
    )


def period_for_date(value: date) -> Period:
    return resolve_period(value.year, value.month, value)


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    if value.year == MAXYEAR and value.month == 12:
        return date(MAXYEAR, 12, 31)
    next_month = shift_month(month_start(value), 1)
    return next_month - timedelta(days=1)
