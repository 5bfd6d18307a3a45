"""
Period rules -- pure fiscal calendar arithmetic and the posting state machine.

Responsibility:
    Derives period codes and bounds, assigns time-driven statuses and
    decides whether a date may receive postings given its period's status.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  "Today" is passed
    in by the caller (PeriodService reads it from the injected Clock).

Posting state machine:
    closed   -> never allowed
    closing  -> not allowed; requires_approval=True (allowed only with
                elevated approval, still flagged)
    future   -> allowed only for the calendar month right after today,
                always with a warning; rejected otherwise
    current  -> allowed
    open     -> allowed; warning when the period ended more than two
                months before today
"""

import calendar
from datetime import date

from ledger_kernel.domain.dtos import (
    FiscalPeriodInfo,
    FiscalYearStatus,
    PeriodStatus,
    PostingPermission,
)

PERIODS_PER_YEAR = 12
YEAR_END_MONTH = 12
STALE_AFTER_MONTHS = 2


def period_code_for(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_period_code(code: str) -> tuple[int, int]:
    """
    Split ``YYYY-MM`` into (year, month).

    Raises:
        ValueError: If the code is malformed.
    """
    try:
        year_part, month_part = code.split("-")
        year, month = int(year_part), int(month_part)
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid period code: {code!r}") from exc
    if len(year_part) != 4 or len(month_part) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Invalid period code: {code!r}")
    return year, month


def period_bounds(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    """Calendar month arithmetic on (year, month) pairs."""
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def shift_date(day: date, months: int) -> date:
    """Same day ``months`` away, clamped to the end of shorter months."""
    year, month = add_months(day.year, day.month, months)
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def derive_status(start_date: date, end_date: date, today: date) -> PeriodStatus:
    """Time-driven status: current if today is inside, open if past, else future."""
    if start_date <= today <= end_date:
        return PeriodStatus.CURRENT
    if end_date < today:
        return PeriodStatus.OPEN
    return PeriodStatus.FUTURE


def refreshed_status(status: PeriodStatus, start_date: date, end_date: date, today: date) -> PeriodStatus:
    """Re-derive time-driven statuses; CLOSING and CLOSED are left alone."""
    if status.is_time_derived:
        return derive_status(start_date, end_date, today)
    return status


def derive_year_status(fiscal_year: int, today: date) -> FiscalYearStatus:
    if fiscal_year > today.year:
        return FiscalYearStatus.FUTURE
    return FiscalYearStatus.CURRENT


def is_next_month(txn_date: date, today: date) -> bool:
    return (txn_date.year, txn_date.month) == add_months(today.year, today.month, 1)


def can_post(
    period: FiscalPeriodInfo,
    txn_date: date,
    today: date,
    elevated_approval: bool = False,
) -> PostingPermission:
    """Decide whether ``txn_date`` may be posted into ``period``."""
    status = period.status
    code = period.period_code

    if status == PeriodStatus.CLOSED:
        return PostingPermission(
            allowed=False,
            error=f"Fiscal period {code} is closed; postings are not allowed",
            error_code="CLOSED_PERIOD",
        )

    if status == PeriodStatus.CLOSING:
        if elevated_approval:
            return PostingPermission(
                allowed=True,
                requires_approval=True,
                warning=f"Fiscal period {code} is closing; posted with elevated approval",
            )
        return PostingPermission(
            allowed=False,
            requires_approval=True,
            error=f"Fiscal period {code} is closing; posting requires elevated approval",
            error_code="PERIOD_CLOSING",
        )

    if status == PeriodStatus.FUTURE:
        if is_next_month(txn_date, today):
            return PostingPermission(
                allowed=True,
                warning=f"Posting to future period {code}",
            )
        return PostingPermission(
            allowed=False,
            error=(
                f"Fiscal period {code} is too far in the future; only the next "
                "calendar month accepts postings"
            ),
            error_code="FUTURE_PERIOD",
        )

    if status == PeriodStatus.OPEN:
        if period.end_date < shift_date(today, -STALE_AFTER_MONTHS):
            return PostingPermission(
                allowed=True,
                warning=(
                    f"Fiscal period {code} ended more than {STALE_AFTER_MONTHS} "
                    "months ago"
                ),
            )
        return PostingPermission(allowed=True)

    return PostingPermission(allowed=True)
