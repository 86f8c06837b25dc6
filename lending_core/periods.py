"""
Period Calculator Module

Pure date arithmetic for the fixed 15-day payment cadence: due dates, the
period a date falls into, and lateness in days. Every loan is anchored at its
creation date; period n covers [creation + (n-1)*15, creation + n*15) and is
due on its closing boundary.
"""

from datetime import date, datetime, timedelta
from typing import Union

from .exceptions import PaymentBeforeOrigination, PaymentBeyondTerm

PAYMENT_FREQUENCY_DAYS = 15

DateLike = Union[date, datetime, str]


def as_date(value: DateLike) -> date:
    """Normalize a date, datetime or ISO string to a calendar date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if 'T' in text or ' ' in text:
            return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
        return date.fromisoformat(text)
    raise ValueError(f"Cannot interpret {value!r} as a date")


def days_between(start: DateLike, end: DateLike) -> int:
    """Whole calendar days from start to end (negative if end precedes start)"""
    return (as_date(end) - as_date(start)).days


def due_date(creation: DateLike, period_number: int) -> date:
    """Due date of a period: creation + period_number * 15 days"""
    return as_date(creation) + timedelta(days=period_number * PAYMENT_FREQUENCY_DAYS)


def period_start(creation: DateLike, period_number: int) -> date:
    """First day of a period, which is the previous period's due date"""
    return due_date(creation, period_number - 1)


def period_number_for(creation: DateLike, when: DateLike) -> int:
    """
    Period a date falls into: floor(days since creation / 15) + 1

    Dates before creation yield a period number <= 0. That is never clamped
    here; callers must treat it as a pre-origination date.
    """
    return days_between(creation, when) // PAYMENT_FREQUENCY_DAYS + 1


def late_days(due: DateLike, actual: DateLike) -> int:
    """Days elapsed past the due date, 0 for early or on-time dates"""
    return max(0, days_between(due, actual))


def validate_period_number(plazo: int, period_number: int) -> int:
    """
    Check that a period number lies within a loan's term

    Raises:
        PaymentBeforeOrigination: period_number <= 0
        PaymentBeyondTerm: period_number > plazo
    """
    if period_number <= 0:
        raise PaymentBeforeOrigination(
            f"Period {period_number} predates loan origination", period_number
        )
    if period_number > plazo:
        raise PaymentBeyondTerm(
            f"Period {period_number} is beyond the loan term of {plazo} periods", period_number
        )
    return period_number
