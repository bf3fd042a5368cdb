"""Fiscal calendar helpers.

A fiscal year is identified by the calendar year in which it ends and is
configured per entity as a month-day string such as ``"06-30"``.
"""
from __future__ import annotations

import calendar
import datetime
import re
from typing import NamedTuple

FISCAL_YEAR_END_RE = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])$")
CALENDAR_YEAR_END = "12-31"


class FiscalPeriod(NamedTuple):
    fiscal_year: int
    period: int


def parse_fiscal_year_end(fiscal_year_end: str) -> tuple[int, int]:
    """Return ``(month, day)`` for an ``MM-DD`` string."""
    if not FISCAL_YEAR_END_RE.match(fiscal_year_end or ""):
        raise ValueError(f"Fiscal year end must be in MM-DD format, got {fiscal_year_end!r}")
    month, day = (int(part) for part in fiscal_year_end.split("-"))
    return month, day


def _year_end_date(year: int, month: int, day: int) -> datetime.date:
    # 02-29 (or 04-31) falls back to the last day of the month
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day, last_day))


def get_fiscal_period(
    date: datetime.date,
    fiscal_year_end: str = CALENDAR_YEAR_END,
) -> FiscalPeriod:
    """Fiscal year and period (1-12) for *date*.

    For a calendar year end the period is the calendar month.  Otherwise
    periods count from the month after the year-end month; dates after the
    year end belong to the following fiscal year.  The period is clamped to
    ``[1, 12]``.
    """
    end_month, end_day = parse_fiscal_year_end(fiscal_year_end)

    if (end_month, end_day) == (12, 31):
        return FiscalPeriod(date.year, date.month)

    if date <= _year_end_date(date.year, end_month, end_day):
        fiscal_year = date.year
        if date.month <= end_month:
            period = date.month + (12 - end_month)
        else:
            period = date.month - end_month
    else:
        fiscal_year = date.year + 1
        period = date.month - end_month

    return FiscalPeriod(fiscal_year, max(1, min(12, period)))


def get_current_fiscal_year(
    fiscal_year_end: str = CALENDAR_YEAR_END,
    today: datetime.date | None = None,
) -> int:
    today = today or datetime.date.today()
    month, day = parse_fiscal_year_end(fiscal_year_end)
    if today <= _year_end_date(today.year, month, day):
        return today.year
    return today.year + 1
