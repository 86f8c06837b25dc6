"""
Metrics Aggregator Module

Folds a loan and its full payment history into period statuses, collection
totals, completion and overdue rates, and a derived loan status.

Metrics are always recomputed from scratch. The stored loan summary (estado,
saldo_actual, ...) is a cache of this output and is rewritten after every
payment, never advanced incrementally.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from .money import ZERO, percentage
from .models import (
    Loan, Payment, Period, PaymentType, PeriodStatus, LoanStatus,
    AnomalyKind, PaymentAnomaly
)
from .periods import (
    DateLike, PAYMENT_FREQUENCY_DAYS, as_date, due_date, late_days, period_number_for,
    validate_period_number
)
from .schedule import generate_schedule
from .installments import expected_payment
from .exceptions import PaymentBeforeOrigination, PaymentBeyondTerm
from .logging_config import get_logger, log_action

logger = get_logger("lending_core.metrics")


@dataclass
class LoanMetrics:
    """Loan-level metrics snapshot"""
    loan_id: str
    as_of: date
    expected_payment_amount: Decimal

    # Collection totals
    total_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    late_charges_paid: Decimal
    remaining_principal: Decimal        # Unclamped: negative means overpaid
    outstanding_arrears: Decimal

    # Period counts
    total_periods: int
    paid_periods: int
    overdue_periods: int
    pending_periods: int

    # Lateness
    average_late_days: int
    total_late_days: int

    # Percentages
    payment_completion_rate: Decimal
    overdue_rate: Decimal

    loan_status: LoanStatus
    periods: List[Period] = field(default_factory=list)
    unassigned: List[PaymentAnomaly] = field(default_factory=list)

    @property
    def has_anomalies(self) -> bool:
        """Check if any payment fell outside the schedule"""
        return bool(self.unassigned)

    @property
    def is_overpaid(self) -> bool:
        """Check if principal payments exceed the capital lent"""
        return self.remaining_principal < ZERO


def resolve_period_number(loan: Loan, payment: Payment) -> int:
    """Period a payment is attributed to, recomputed from its date when unset"""
    if payment.periodo_numero is not None:
        return payment.periodo_numero
    return period_number_for(loan.fecha_creacion, payment.fecha)


def sum_by_type(payments: Iterable[Payment], payment_type: PaymentType) -> Decimal:
    """Total amount of payments of one type"""
    return sum((p.monto for p in payments if p.tipo == payment_type), ZERO)


def _anomaly_for(loan: Loan, payment: Payment, number: int) -> Optional[PaymentAnomaly]:
    try:
        validate_period_number(loan.plazo, number)
    except PaymentBeforeOrigination as e:
        return PaymentAnomaly(AnomalyKind.BEFORE_ORIGINATION, number, str(e), payment)
    except PaymentBeyondTerm as e:
        return PaymentAnomaly(AnomalyKind.BEYOND_TERM, number, str(e), payment)
    return None


def _settle_period(period: Period, as_of: date) -> None:
    if period.is_settled:
        period.status = PeriodStatus.PAID
        latest = max(p.fecha for p in period.payments)
        period.late_days = late_days(period.due_date, latest)
    elif as_of > period.due_date:
        period.status = PeriodStatus.OVERDUE
        period.late_days = late_days(period.due_date, as_of)
    else:
        period.status = PeriodStatus.PENDING
        period.late_days = 0


def compute_metrics(
    loan: Loan,
    payments: Iterable[Payment],
    as_of: Optional[DateLike] = None
) -> LoanMetrics:
    """
    Compute metrics for a loan from its full payment history

    Args:
        loan: Loan terms
        payments: Every payment recorded against the loan
        as_of: Date used to decide whether unpaid periods are overdue
               (defaults to today)

    Returns:
        LoanMetrics with per-period detail. Payments resolving outside
        [1, plazo] are listed in `unassigned`; they count toward totals
        but never toward a period's status.

    Raises:
        InvalidLoanTerms: If the loan terms are invalid
    """
    as_of = date.today() if as_of is None else as_date(as_of)

    periods = generate_schedule(loan)
    by_number = {period.period_number: period for period in periods}
    history = sorted(payments, key=lambda p: p.fecha)

    unassigned: List[PaymentAnomaly] = []
    for payment in history:
        number = resolve_period_number(loan, payment)
        anomaly = _anomaly_for(loan, payment, number)
        if anomaly:
            unassigned.append(anomaly)
            continue
        period = by_number[number]
        period.payments.append(payment)
        period.total_paid += payment.monto

    for period in periods:
        _settle_period(period, as_of)

    if unassigned:
        log_action(
            logger, "warning", f"{len(unassigned)} payment(s) outside loan schedule",
            loan_id=loan.id, action="compute_metrics",
            extra={
                "anomalies": [
                    {"kind": a.kind.value, "period": a.period_number,
                     "payment_id": a.payment.id if a.payment else None}
                    for a in unassigned
                ]
            }
        )

    total_paid = sum((p.monto for p in history), ZERO)
    principal_paid = sum_by_type(history, PaymentType.PAGO)
    interest_paid = sum_by_type(history, PaymentType.INTERES)
    late_charges_paid = sum_by_type(history, PaymentType.MORA)
    remaining_principal = loan.capital_inicial - principal_paid

    paid_periods = sum(1 for p in periods if p.status == PeriodStatus.PAID)
    overdue_periods = sum(1 for p in periods if p.status == PeriodStatus.OVERDUE)
    pending_periods = sum(1 for p in periods if p.status == PeriodStatus.PENDING)

    late = [p.late_days for p in periods if p.late_days > 0]
    total_late_days = sum(late)
    average_late_days = 0
    if late:
        average_late_days = int(
            (Decimal(total_late_days) / Decimal(len(late))).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
        )

    if remaining_principal <= ZERO:
        loan_status = LoanStatus.PAID
    elif overdue_periods > 0:
        loan_status = LoanStatus.OVERDUE
    else:
        loan_status = LoanStatus.CURRENT

    return LoanMetrics(
        loan_id=loan.id,
        as_of=as_of,
        expected_payment_amount=expected_payment(loan),
        total_paid=total_paid,
        principal_paid=principal_paid,
        interest_paid=interest_paid,
        late_charges_paid=late_charges_paid,
        remaining_principal=remaining_principal,
        outstanding_arrears=max(ZERO, loan.atraso_acumulado - late_charges_paid),
        total_periods=len(periods),
        paid_periods=paid_periods,
        overdue_periods=overdue_periods,
        pending_periods=pending_periods,
        average_late_days=average_late_days,
        total_late_days=total_late_days,
        payment_completion_rate=percentage(paid_periods, len(periods)),
        overdue_rate=percentage(overdue_periods, len(periods)),
        loan_status=loan_status,
        periods=periods,
        unassigned=unassigned
    )


def loan_summary(metrics: LoanMetrics) -> Dict[str, Any]:
    """Stored loan fields derived from a metrics snapshot"""
    return {
        'saldo_actual': metrics.remaining_principal,
        'total_pagado': metrics.total_paid,
        'interes_acumulado': metrics.interest_paid,
        'pago_esperado_periodo': metrics.expected_payment_amount,
        'dias_mora': metrics.average_late_days,
        'periodos_pagados': metrics.paid_periods,
        'periodos_vencidos': metrics.overdue_periods,
        'tasa_cumplimiento': metrics.payment_completion_rate,
        'estado': metrics.loan_status.estado.value,
        'estado_detallado': metrics.loan_status.value,
        'frecuencia_pago': f"{PAYMENT_FREQUENCY_DAYS} días"
    }


def apply_summary(loan: Loan, metrics: LoanMetrics) -> Loan:
    """Copy of the loan with its cached summary fields rewritten"""
    return replace(
        loan,
        estado=metrics.loan_status.estado,
        saldo_actual=metrics.remaining_principal,
        total_pagado=metrics.total_paid,
        interes_acumulado=metrics.interest_paid
    )


def annotate_payment(loan: Loan, payment: Payment) -> Payment:
    """
    Backfill period attribution on a legacy payment record

    The period is recomputed from the payment's own date, together with the
    period's due date and the payment's lateness against it.

    Raises:
        PaymentBeforeOrigination: If the payment predates the loan
    """
    number = period_number_for(loan.fecha_creacion, payment.fecha)
    if number <= 0:
        raise PaymentBeforeOrigination(
            f"Payment {payment.id} on {payment.fecha.isoformat()} predates loan {loan.id}", number
        )
    due = due_date(loan.fecha_creacion, number)
    return replace(
        payment,
        periodo_numero=number,
        fecha_vencimiento_esperada=due,
        dias_atraso=late_days(due, payment.fecha),
        prestamo_id=payment.prestamo_id or loan.id
    )
