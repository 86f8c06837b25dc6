"""
Payment Allocation Module

Splits a single cash receipt into typed sub-payments following a fixed
priority waterfall:

1. outstanding arrears (previously assessed, unpaid late charges)  -> mora
2. late charge newly accrued by this receipt                       -> mora
3. period interest                                                 -> interes
4. everything left                                                 -> pago

Each step is capped by the cash remaining. Cash beyond every computed need
falls through to principal, even when that overpays the loan.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
import uuid

from .money import ZERO, HUNDRED, round_money
from .models import Loan, Payment, PaymentType, AnomalyKind, PaymentAnomaly
from .periods import as_date, due_date, late_days, period_number_for, validate_period_number
from .installments import period_interest, validate_loan_terms
from .metrics import compute_metrics
from .exceptions import InvalidPayment, PaymentBeforeOrigination, PaymentBeyondTerm

DAYS_PER_YEAR = Decimal('365')


@dataclass
class Receipt:
    """A single cash receipt from a payer"""
    fecha: date
    monto: Decimal
    comprobante: Optional[str] = None

    def __post_init__(self):
        self.fecha = as_date(self.fecha)
        self.monto = round_money(self.monto)
        if self.monto <= ZERO:
            raise InvalidPayment(f"Receipt amount must be positive, got {self.monto}")
        if not self.comprobante:
            self.comprobante = f"REC-{str(uuid.uuid4())[:8].upper()}"


@dataclass
class Allocation:
    """Result of allocating one receipt against a loan"""
    loan_id: str
    receipt: Receipt
    period_number: int
    due_date: date
    late_days: int
    payments: List[Payment] = field(default_factory=list)

    # Waterfall breakdown
    arrears_paid: Decimal = ZERO
    late_charge_assessed: Decimal = ZERO
    late_charge_paid: Decimal = ZERO
    interest_paid: Decimal = ZERO
    principal_paid: Decimal = ZERO

    anomalies: List[PaymentAnomaly] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        """Sum of all sub-payments"""
        return sum((p.monto for p in self.payments), ZERO)

    @property
    def unpaid_late_charge(self) -> Decimal:
        """Part of the new late charge this receipt could not cover"""
        return self.late_charge_assessed - self.late_charge_paid


def accrued_late_charge(loan: Loan, days_late: int) -> Decimal:
    """
    Late charge accrued for lateness beyond the grace days

    capital * (tasa_mora / 100) * (days_late - dias_gracia) / 365
    """
    terms = loan.condiciones_mora
    chargeable_days = days_late - terms.dias_gracia
    if chargeable_days <= 0:
        return ZERO
    return round_money(
        loan.capital_inicial * (terms.tasa_mora / HUNDRED) * Decimal(chargeable_days) / DAYS_PER_YEAR
    )


def split_cash(
    amount: Decimal,
    arrears: Decimal,
    late_charge: Decimal,
    interest: Decimal
) -> List[Tuple[str, PaymentType, Decimal]]:
    """
    Run the waterfall over a cash amount

    Returns:
        Ordered (step, payment type, amount) tuples for every step that
        received cash. Steps are "arrears", "late_charge", "interest" and
        "principal". The amounts sum exactly to the input amount.
    """
    amount = round_money(amount)
    remaining = amount
    lines: List[Tuple[str, PaymentType, Decimal]] = []

    for step, payment_type, need in (
        ("arrears", PaymentType.MORA, arrears),
        ("late_charge", PaymentType.MORA, late_charge),
        ("interest", PaymentType.INTERES, interest),
    ):
        take = min(remaining, round_money(need))
        if take > ZERO:
            lines.append((step, payment_type, take))
            remaining -= take

    # Principal takes whatever is left, so the lines always sum to amount
    if remaining > ZERO:
        lines.append(("principal", PaymentType.PAGO, remaining))

    return lines


def allocate_payment(
    loan: Loan,
    history: Iterable[Payment],
    receipt: Receipt
) -> Allocation:
    """
    Allocate a cash receipt against a loan

    Args:
        loan: Loan the receipt pays
        history: Every payment already recorded against the loan
        receipt: Incoming cash

    Returns:
        Allocation holding one Payment per payment type touched, all dated on
        the receipt date and sharing its comprobante. Receipts dated after the
        last period are allocated and flagged with a beyond-term anomaly.

    Raises:
        InvalidLoanTerms: If the loan terms are invalid
        PaymentBeforeOrigination: If the receipt predates the loan
    """
    validate_loan_terms(loan)

    number = period_number_for(loan.fecha_creacion, receipt.fecha)
    anomalies: List[PaymentAnomaly] = []
    try:
        validate_period_number(loan.plazo, number)
    except PaymentBeyondTerm as e:
        anomalies.append(PaymentAnomaly(AnomalyKind.BEYOND_TERM, number, str(e)))
    except PaymentBeforeOrigination:
        raise PaymentBeforeOrigination(
            f"Receipt dated {receipt.fecha.isoformat()} predates loan {loan.id} "
            f"created {loan.fecha_creacion.isoformat()}", number
        )

    due = due_date(loan.fecha_creacion, number)
    lateness = late_days(due, receipt.fecha)

    arrears = compute_metrics(loan, history, as_of=receipt.fecha).outstanding_arrears
    late_charge = accrued_late_charge(loan, lateness)
    interest = period_interest(loan)

    allocation = Allocation(
        loan_id=loan.id,
        receipt=receipt,
        period_number=number,
        due_date=due,
        late_days=lateness,
        late_charge_assessed=late_charge,
        anomalies=anomalies
    )

    totals = {}
    for step, payment_type, value in split_cash(receipt.monto, arrears, late_charge, interest):
        totals[payment_type] = totals.get(payment_type, ZERO) + value
        if step == "arrears":
            allocation.arrears_paid = value
        elif step == "late_charge":
            allocation.late_charge_paid = value
        elif step == "interest":
            allocation.interest_paid = value
        else:
            allocation.principal_paid = value

    # One record per payment type, in waterfall order
    for payment_type, value in totals.items():
        allocation.payments.append(Payment(
            fecha=receipt.fecha,
            monto=value,
            tipo=payment_type,
            periodo_numero=number,
            dias_atraso=lateness,
            prestamo_id=loan.id,
            comprobante=receipt.comprobante,
            fecha_vencimiento_esperada=due
        ))

    return allocation
