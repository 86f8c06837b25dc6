"""
Portfolio Reporting Module

Portfolio-wide views over many loans: collections per calendar-aligned 15-day
window, delinquency aging buckets, headline KPIs, and an audit of payment dates
that sit far from their period's due date. Reports share one ReportResult
shape and can be exported as dict, JSON or CSV.
"""

from datetime import datetime, timezone, date, timedelta
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from enum import Enum
import csv
import io
import json

from .money import ZERO, percentage
from .models import Loan, Payment, PaymentType, LoanState, LoanStatus
from .periods import DateLike, PAYMENT_FREQUENCY_DAYS, as_date, days_between, due_date, period_number_for
from .metrics import compute_metrics, sum_by_type
from .logging_config import get_logger

logger = get_logger("lending_core.reporting")

# Aging buckets by average late days: (name, upper bound inclusive)
DELINQUENCY_BUCKETS = (
    ('1-15', 15),
    ('16-30', 30),
    ('31-60', 60),
    ('61-90', 90),
    ('90+', None),
)


class ReportType(Enum):
    """Types of available reports"""
    PERIODIC_COLLECTIONS = "periodic_collections"
    DELINQUENCY = "delinquency"
    PORTFOLIO_SUMMARY = "portfolio_summary"
    DATE_DRIFT = "date_drift"


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_type: ReportType
    generated_at: datetime
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if 'row_count' not in self.metadata:
            self.metadata['row_count'] = len(self.data)

    def by_key(self, key: str) -> Dict[Any, Dict[str, Any]]:
        """Index rows by one of their columns"""
        return {row[key]: row for row in self.data}


def bucket_for(days_late: int) -> str:
    """Aging bucket name for an average lateness in days"""
    for name, upper in DELINQUENCY_BUCKETS:
        if upper is None or days_late <= upper:
            return name
    return DELINQUENCY_BUCKETS[-1][0]


def periodic_report(
    loans: Iterable[Loan],
    payments: Iterable[Payment],
    start: date,
    end: date
) -> ReportResult:
    """
    Collections per 15-day window between start and end (inclusive)

    Windows are anchored at `start`, not at any loan's creation date, so they
    line up across the whole portfolio; the last window is clipped to `end`.
    Payments referencing a loan outside `loans` are ignored, payments without
    a loan reference are counted.

    Raises:
        ValueError: If start is after end
    """
    start = as_date(start)
    end = as_date(end)
    if start > end:
        raise ValueError(f"Report start {start.isoformat()} is after end {end.isoformat()}")

    loan_ids = {loan.id for loan in loans}
    eligible = [
        p for p in payments
        if p.prestamo_id is None or p.prestamo_id in loan_ids
    ]

    data = []
    totals = {
        'total_collection': ZERO,
        'total_principal': ZERO,
        'total_interest': ZERO,
        'total_late_charges': ZERO,
        'payment_count': 0
    }

    window_start = start
    window_number = 1
    while window_start <= end:
        window_end = min(window_start + timedelta(days=PAYMENT_FREQUENCY_DAYS - 1), end)
        window_payments = [p for p in eligible if window_start <= p.fecha <= window_end]

        row = {
            'window_number': window_number,
            'start_date': window_start,
            'end_date': window_end,
            'payments': len(window_payments),
            'total_amount': sum((p.monto for p in window_payments), ZERO),
            'principal_payments': sum_by_type(window_payments, PaymentType.PAGO),
            'interest_payments': sum_by_type(window_payments, PaymentType.INTERES),
            'late_charges': sum_by_type(window_payments, PaymentType.MORA)
        }
        data.append(row)

        totals['total_collection'] += row['total_amount']
        totals['total_principal'] += row['principal_payments']
        totals['total_interest'] += row['interest_payments']
        totals['total_late_charges'] += row['late_charges']
        totals['payment_count'] += row['payments']

        window_start += timedelta(days=PAYMENT_FREQUENCY_DAYS)
        window_number += 1

    return ReportResult(
        report_type=ReportType.PERIODIC_COLLECTIONS,
        generated_at=datetime.now(timezone.utc),
        period_start=start,
        period_end=end,
        data=data,
        totals=totals,
        metadata={'window_days': PAYMENT_FREQUENCY_DAYS, 'loan_count': len(loan_ids)}
    )


def delinquency_buckets(
    loans: Iterable[Loan],
    payments_by_loan: Mapping[str, Iterable[Payment]],
    as_of: Optional[DateLike] = None
) -> ReportResult:
    """
    Delinquency aging by average late days

    Every active loan is recomputed; overdue ones land in exactly one bucket
    and add their remaining principal to it. Paid and current loans stay out
    of the buckets but count toward total_loans, the delinquency rate's
    denominator.

    Raises:
        InvalidLoanTerms: If any active loan has invalid terms
    """
    as_of = date.today() if as_of is None else as_date(as_of)

    buckets = {
        name: {'bucket': name, 'loan_count': 0, 'outstanding_principal': ZERO, 'loan_ids': []}
        for name, _ in DELINQUENCY_BUCKETS
    }
    totals = {
        'total_loans': 0,
        'active_loans': 0,
        'overdue_loans': 0,
        'overdue_principal': ZERO,
        'delinquency_rate': ZERO
    }

    for loan in loans:
        totals['total_loans'] += 1
        if not loan.is_active:
            continue
        totals['active_loans'] += 1

        metrics = compute_metrics(loan, payments_by_loan.get(loan.id, []), as_of=as_of)
        if metrics.loan_status != LoanStatus.OVERDUE:
            continue

        bucket = buckets[bucket_for(metrics.average_late_days)]
        bucket['loan_count'] += 1
        bucket['outstanding_principal'] += metrics.remaining_principal
        bucket['loan_ids'].append(loan.id)

        totals['overdue_loans'] += 1
        totals['overdue_principal'] += metrics.remaining_principal

    totals['delinquency_rate'] = percentage(totals['overdue_loans'], totals['total_loans'])

    data = []
    for row in buckets.values():
        row['share'] = percentage(row['outstanding_principal'], totals['overdue_principal'])
        data.append(row)

    logger.info(
        f"Delinquency scan: {totals['overdue_loans']} overdue of {totals['total_loans']} loans"
    )

    return ReportResult(
        report_type=ReportType.DELINQUENCY,
        generated_at=datetime.now(timezone.utc),
        period_end=as_of,
        data=data,
        totals=totals
    )


def portfolio_summary(loans: Iterable[Loan], payments: Iterable[Payment]) -> ReportResult:
    """Headline portfolio KPIs from stored loan fields and collected payments"""
    loans = list(loans)
    payments = list(payments)

    by_state = {state.value: {'estado': state.value, 'loan_count': 0, 'capital': ZERO, 'balance': ZERO}
                for state in LoanState}
    for loan in loans:
        row = by_state[loan.estado.value]
        row['loan_count'] += 1
        row['capital'] += loan.capital_inicial
        row['balance'] += loan.saldo_actual

    totals = {
        'loan_count': len(loans),
        'total_lent': sum((loan.capital_inicial for loan in loans), ZERO),
        'current_balance': sum((loan.saldo_actual for loan in loans), ZERO),
        'total_collected': sum((p.monto for p in payments), ZERO),
        'principal_collected': sum_by_type(payments, PaymentType.PAGO),
        'interest_collected': sum_by_type(payments, PaymentType.INTERES),
        'late_fees_collected': sum_by_type(payments, PaymentType.MORA),
        'late_fees_assessed': sum((loan.atraso_acumulado for loan in loans), ZERO),
        'active_loans': by_state[LoanState.ACTIVO.value]['loan_count'],
    }

    return ReportResult(
        report_type=ReportType.PORTFOLIO_SUMMARY,
        generated_at=datetime.now(timezone.utc),
        data=list(by_state.values()),
        totals=totals
    )


def find_date_drift(
    loan: Loan,
    payments: Iterable[Payment],
    threshold_days: int = 7
) -> ReportResult:
    """
    Payments dated more than threshold_days away from their period's due date

    Flags candidates for date correction; nothing is modified.
    """
    data = []
    payments = list(payments)
    for payment in payments:
        number = period_number_for(loan.fecha_creacion, payment.fecha)
        suggested = due_date(loan.fecha_creacion, number)
        drift = abs(days_between(suggested, payment.fecha))
        if drift > threshold_days:
            data.append({
                'payment_id': payment.id,
                'loan_id': loan.id,
                'original_date': payment.fecha,
                'suggested_date': suggested,
                'drift_days': drift,
                'period_number': number
            })

    return ReportResult(
        report_type=ReportType.DATE_DRIFT,
        generated_at=datetime.now(timezone.utc),
        data=data,
        totals={
            'payments_analyzed': len(payments),
            'payments_flagged': len(data),
            'flagged_rate': percentage(len(data), len(payments))
        },
        metadata={'threshold_days': threshold_days}
    )


def export_report(result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
    """
    Export report result in specified format
    """
    if format == ReportFormat.DICT:
        return {
            'report_type': result.report_type.value,
            'generated_at': result.generated_at.isoformat(),
            'period_start': result.period_start.isoformat() if result.period_start else None,
            'period_end': result.period_end.isoformat() if result.period_end else None,
            'data': result.data,
            'totals': result.totals,
            'metadata': result.metadata
        }

    elif format == ReportFormat.JSON:
        export_dict = export_report(result, ReportFormat.DICT)
        return json.dumps(export_dict, indent=2, default=str)

    elif format == ReportFormat.CSV:
        output = io.StringIO()

        if result.data:
            # Get headers from first row
            headers = list(result.data[0].keys())
            writer = csv.DictWriter(output, fieldnames=headers)
            writer.writeheader()

            for row in result.data:
                writer.writerow(row)

        csv_content = output.getvalue()
        output.close()
        return csv_content

    else:
        raise ValueError(f"Unsupported export format: {format}")
