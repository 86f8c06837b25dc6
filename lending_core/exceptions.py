"""Typed errors raised by the lending engine.

All errors subclass ValueError: they describe bad input, never a broken
process, and callers decide whether to reject, persist or flag for review.
"""

from typing import Optional


class LendingError(ValueError):
    """Base exception for all lending engine errors."""


class InvalidLoanTerms(LendingError):
    """Raised when a loan's terms cannot support any computation."""


class InvalidPayment(LendingError):
    """Raised when a receipt or payment record is malformed."""


class LoanNotFound(LendingError):
    """Raised when a referenced loan does not exist in storage."""


class PeriodOutOfRange(LendingError):
    """Base for payments that resolve to a period outside [1, plazo]."""

    def __init__(self, message: str, period_number: Optional[int] = None):
        super().__init__(message)
        self.period_number = period_number


class PaymentBeforeOrigination(PeriodOutOfRange):
    """Raised when a payment date predates the loan's creation date."""


class PaymentBeyondTerm(PeriodOutOfRange):
    """Raised when a payment resolves to a period after the last one."""
