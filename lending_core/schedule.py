"""
Schedule Generator Module

Builds the full ordered list of 15-day periods for a loan.
"""

from datetime import date
from typing import List

from .models import Loan, Period, PeriodStatus
from .periods import due_date, period_start
from .installments import expected_payment


def generate_schedule(loan: Loan) -> List[Period]:
    """
    Generate the payment schedule for a loan

    Returns exactly loan.plazo periods numbered from 1, each pending with
    nothing paid. Deterministic and free of I/O, so repeated calls return
    equal schedules.

    Raises:
        InvalidLoanTerms: If the loan terms are invalid
    """
    installment = expected_payment(loan)

    return [
        Period(
            period_number=number,
            start_date=period_start(loan.fecha_creacion, number),
            due_date=due_date(loan.fecha_creacion, number),
            expected_amount=installment,
            status=PeriodStatus.PENDING
        )
        for number in range(1, loan.plazo + 1)
    ]


def maturity_date(loan: Loan) -> date:
    """Due date of the last period"""
    return due_date(loan.fecha_creacion, loan.plazo)
