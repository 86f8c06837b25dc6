"""
Installment Calculator Module

Derives the flat per-period installment from loan terms.

Interest policy: the annual rate is spread over PERIODS_PER_YEAR = 24 periods
(365 / 15 = 24.33, fixed at 24) and charged on the original capital every
period. The interest portion does NOT decline with the balance, so every period
of a loan expects the same amount. Callers must not assume amortizing-loan
interest behavior.
"""

from decimal import Decimal

from .money import ZERO, HUNDRED, round_money
from .models import Loan
from .exceptions import InvalidLoanTerms

PERIODS_PER_YEAR = Decimal('24')


def validate_loan_terms(loan: Loan) -> None:
    """
    Reject loan terms no computation can run on

    Raises:
        InvalidLoanTerms: plazo <= 0, capital <= 0, negative rates or grace days
    """
    if loan.plazo <= 0:
        raise InvalidLoanTerms(f"Loan {loan.id} plazo must be positive, got {loan.plazo}")
    if loan.capital_inicial <= ZERO:
        raise InvalidLoanTerms(
            f"Loan {loan.id} capital_inicial must be positive, got {loan.capital_inicial}"
        )
    if loan.tasa_interes < ZERO:
        raise InvalidLoanTerms(
            f"Loan {loan.id} tasa_interes cannot be negative, got {loan.tasa_interes}"
        )
    if loan.condiciones_mora.tasa_mora < ZERO:
        raise InvalidLoanTerms(
            f"Loan {loan.id} tasa_mora cannot be negative, got {loan.condiciones_mora.tasa_mora}"
        )
    if loan.condiciones_mora.dias_gracia < 0:
        raise InvalidLoanTerms(
            f"Loan {loan.id} dias_gracia cannot be negative, got {loan.condiciones_mora.dias_gracia}"
        )


def _exact_principal_share(loan: Loan) -> Decimal:
    return loan.capital_inicial / Decimal(loan.plazo)


def _exact_period_interest(loan: Loan) -> Decimal:
    return loan.capital_inicial * (loan.tasa_interes / HUNDRED) / PERIODS_PER_YEAR


def principal_share(loan: Loan) -> Decimal:
    """Principal portion of each installment: capital / plazo"""
    validate_loan_terms(loan)
    return round_money(_exact_principal_share(loan))


def period_interest(loan: Loan) -> Decimal:
    """Interest portion of each installment: capital * rate / 24"""
    validate_loan_terms(loan)
    return round_money(_exact_period_interest(loan))


def expected_payment(loan: Loan) -> Decimal:
    """
    Flat installment expected every period

    Example: capital 1000, 15%, 12 periods -> 83.33 + 6.25 = 89.58
    """
    validate_loan_terms(loan)
    return round_money(_exact_principal_share(loan) + _exact_period_interest(loan))
