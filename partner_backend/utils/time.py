"""Time utilities (UTC now, calendar month boundaries)."""
from __future__ import annotations
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Half-open UTC interval [first instant of month, first instant of next month)."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def month_start_date(year: int, month: int) -> date:
    return date(year, month, 1)


def format_period(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


__all__ = ["utc_now", "month_bounds", "month_start_date", "format_period"]
