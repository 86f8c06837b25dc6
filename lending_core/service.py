"""
Loan Payment Service Module

Records cash receipts against stored loans. Each receipt is handled as one
read-allocate-write-recompute cycle: load the loan and its history, split the
receipt, append the typed payments, then rewrite the loan's cached summary
from a full recomputation. Cycles for the same loan are serialized; different
loans proceed concurrently.
"""

from decimal import Decimal
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple
import threading

from .money import round_money, to_decimal
from .models import Loan, Payment
from .periods import DateLike
from .installments import validate_loan_terms
from .allocation import Allocation, Receipt, allocate_payment
from .metrics import LoanMetrics, compute_metrics, apply_summary, annotate_payment
from .reporting import ReportResult, delinquency_buckets, find_date_drift, portfolio_summary
from .schemas import LoanDocument, PaymentDocument, ReceiptRequest
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage, LOANS_TABLE, PAYMENTS_TABLE
from .config import LendingConfig, get_config
from .exceptions import LendingError, LoanNotFound, PaymentBeforeOrigination
from .logging_config import get_logger, log_action, setup_logging

logger = get_logger("lending_core.service")


class LoanPaymentService:
    """
    Persistence-backed payment recording and loan summary maintenance
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocation_tolerance: Decimal = Decimal('0.01'),
        date_drift_threshold_days: int = 7
    ):
        self.storage = storage
        self.allocation_tolerance = to_decimal(allocation_tolerance)
        self.date_drift_threshold_days = date_drift_threshold_days

        self.loans_table = LOANS_TABLE
        self.payments_table = PAYMENTS_TABLE

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: Optional[LendingConfig] = None) -> 'LoanPaymentService':
        """Build a service with the storage backend and rules from configuration"""
        if config is None:
            config = get_config()

        setup_logging(config.log_level, log_format=config.log_format)

        if config.use_sqlite:
            storage = SQLiteStorage(config.sqlite_path)
        else:
            storage = InMemoryStorage()

        return cls(
            storage,
            allocation_tolerance=to_decimal(config.allocation_tolerance),
            date_drift_threshold_days=config.date_drift_threshold_days
        )

    def _lock_for(self, loan_id: str) -> threading.Lock:
        with self._locks_guard:
            if loan_id not in self._locks:
                self._locks[loan_id] = threading.Lock()
            return self._locks[loan_id]

    # Loans

    def save_loan(self, loan: Loan, metrics: Optional[LoanMetrics] = None) -> None:
        """
        Store a loan, with its summary fields when metrics are given

        Raises:
            InvalidLoanTerms: If the loan terms are invalid
        """
        validate_loan_terms(loan)
        document = LoanDocument.from_loan(loan, metrics)
        self.storage.save(self.loans_table, loan.id, document.model_dump(mode="json"))

    def get_loan(self, loan_id: str) -> Loan:
        """
        Get loan by ID

        Raises:
            LoanNotFound: If no loan is stored under loan_id
        """
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise LoanNotFound(f"Loan {loan_id} not found")
        return LoanDocument.model_validate(data).to_loan()

    def _read_loans(self) -> Tuple[List[Loan], List[Any]]:
        """
        Parse every stored loan document

        Returns:
            Loans that parsed, and the ids of documents that did not. Those
            are logged and left in storage untouched.
        """
        loans: List[Loan] = []
        rejected: List[Any] = []
        for data in self.storage.load_all(self.loans_table):
            try:
                loans.append(LoanDocument.model_validate(data).to_loan())
            except ValueError as e:
                loan_id = data.get("id", data.get("_id"))
                rejected.append(loan_id)
                log_action(
                    logger, "warning", f"Skipping unreadable loan document: {e}",
                    loan_id=loan_id, action="read_loans", resource=self.loans_table
                )
        return loans, rejected

    def list_loans(self) -> List[Loan]:
        """Get all stored loans that parse"""
        loans, _ = self._read_loans()
        return loans

    def get_loan_document(self, loan_id: str) -> LoanDocument:
        """Stored loan including its cached summary fields"""
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise LoanNotFound(f"Loan {loan_id} not found")
        return LoanDocument.model_validate(data)

    # Payments

    def _save_payment(self, payment: Payment) -> None:
        document = PaymentDocument.from_payment(payment)
        self.storage.save(self.payments_table, payment.id, document.model_dump(mode="json"))

    def get_loan_payments(self, loan_id: str) -> List[Payment]:
        """Get payment history for loan"""
        payments_data = self.storage.find_payments(loan_id)
        payments = [PaymentDocument.model_validate(data).to_payment() for data in payments_data]

        # Sort by payment date
        payments.sort(key=lambda x: x.fecha)
        return payments

    def list_payments(self) -> List[Payment]:
        """Get every stored payment"""
        return [
            PaymentDocument.model_validate(data).to_payment()
            for data in self.storage.load_all(self.payments_table)
        ]

    def record_payment(
        self,
        loan_id: str,
        fecha: DateLike,
        monto,
        comprobante: Optional[str] = None,
        as_of: Optional[DateLike] = None
    ) -> Allocation:
        """
        Record a cash receipt against a loan

        Args:
            loan_id: Loan ID
            fecha: Receipt date
            monto: Cash received
            comprobante: Receipt reference (generated when missing)
            as_of: Date the refreshed summary is computed at (defaults to today)

        Returns:
            Allocation of the receipt

        Raises:
            LoanNotFound: If the loan does not exist
            InvalidPayment: If the amount is not positive
            PaymentBeforeOrigination: If the receipt predates the loan
            LendingError: If the split does not add up to the receipt
        """
        return self._record(loan_id, Receipt(fecha=fecha, monto=monto, comprobante=comprobante), as_of)

    def record_receipt(self, request: ReceiptRequest, as_of: Optional[DateLike] = None) -> Allocation:
        """Record a validated receipt request"""
        return self._record(request.prestamo_id, request.to_receipt(), as_of)

    def _record(self, loan_id: str, receipt: Receipt, as_of: Optional[DateLike]) -> Allocation:
        with self._lock_for(loan_id):
            loan = self.get_loan(loan_id)
            history = self.get_loan_payments(loan_id)

            allocation = allocate_payment(loan, history, receipt)

            drift = abs(allocation.total - receipt.monto)
            if drift > self.allocation_tolerance:
                raise LendingError(
                    f"Allocation of {allocation.total} does not match receipt {receipt.monto} "
                    f"for loan {loan_id}"
                )

            with self.storage.atomic():
                for payment in allocation.payments:
                    self._save_payment(payment)

                loan = replace(
                    loan,
                    atraso_acumulado=round_money(loan.atraso_acumulado + allocation.late_charge_assessed)
                )
                metrics = compute_metrics(loan, history + allocation.payments, as_of=as_of)
                self.save_loan(apply_summary(loan, metrics), metrics)

        log_action(
            logger, "info", f"Recorded receipt {receipt.comprobante} of {receipt.monto}",
            loan_id=loan_id, action="record_payment", resource=self.payments_table,
            comprobante=receipt.comprobante,
            extra={
                "period": allocation.period_number,
                "late_days": allocation.late_days,
                "payments": [
                    {"tipo": p.tipo.value, "monto": str(p.monto)} for p in allocation.payments
                ],
                "estado": metrics.loan_status.estado.value,
                "anomalies": len(allocation.anomalies)
            }
        )

        return allocation

    # Summaries

    def refresh_loan(self, loan_id: str, as_of: Optional[DateLike] = None) -> LoanMetrics:
        """
        Recompute a loan's metrics from its full history and rewrite its summary

        Raises:
            LoanNotFound: If the loan does not exist
        """
        with self._lock_for(loan_id):
            loan = self.get_loan(loan_id)
            metrics = compute_metrics(loan, self.get_loan_payments(loan_id), as_of=as_of)

            with self.storage.atomic():
                self.save_loan(apply_summary(loan, metrics), metrics)

        log_action(
            logger, "info", f"Refreshed loan summary ({metrics.loan_status.value})",
            loan_id=loan_id, action="refresh_loan", resource=self.loans_table,
            extra={
                "paid_periods": metrics.paid_periods,
                "overdue_periods": metrics.overdue_periods,
                "average_late_days": metrics.average_late_days
            }
        )
        return metrics

    def refresh_all(self, as_of: Optional[DateLike] = None) -> Dict[str, int]:
        """Refresh every stored loan, continuing past loans that fail"""
        loans, rejected = self._read_loans()
        results = {"loans_processed": 0, "loans_failed": len(rejected)}

        for loan in loans:
            try:
                self.refresh_loan(loan.id, as_of=as_of)
                results["loans_processed"] += 1
            except LendingError as e:
                results["loans_failed"] += 1
                log_action(
                    logger, "error", f"Loan refresh failed: {e}",
                    loan_id=loan.id, action="refresh_all", resource=self.loans_table
                )

        return results

    def annotate_payments(self, loan_id: str) -> int:
        """
        Backfill period attribution on a loan's legacy payments

        Payments that already carry periodo_numero are left untouched.
        Payments predating the loan cannot be attributed and are logged.

        Returns:
            Number of payments annotated
        """
        with self._lock_for(loan_id):
            loan = self.get_loan(loan_id)
            annotated = 0

            with self.storage.atomic():
                for payment in self.get_loan_payments(loan_id):
                    if payment.periodo_numero is not None:
                        continue
                    try:
                        updated = annotate_payment(loan, payment)
                    except PaymentBeforeOrigination as e:
                        log_action(
                            logger, "warning", str(e),
                            loan_id=loan_id, action="annotate_payments", resource=self.payments_table
                        )
                        continue
                    self._save_payment(updated)
                    annotated += 1

        log_action(
            logger, "info", f"Annotated {annotated} payment(s)",
            loan_id=loan_id, action="annotate_payments", resource=self.payments_table
        )
        return annotated

    # Reports

    def delinquency_report(self, as_of: Optional[DateLike] = None) -> ReportResult:
        """Delinquency buckets over every stored loan"""
        payments_by_loan: Dict[str, List[Payment]] = {}
        for payment in self.list_payments():
            payments_by_loan.setdefault(payment.prestamo_id, []).append(payment)
        return delinquency_buckets(self.list_loans(), payments_by_loan, as_of=as_of)

    def portfolio_report(self) -> ReportResult:
        """Portfolio KPIs over every stored loan"""
        return portfolio_summary(self.list_loans(), self.list_payments())

    def date_drift_report(self, loan_id: str, threshold_days: Optional[int] = None) -> ReportResult:
        """Payments of a loan dated far from their period's due date"""
        if threshold_days is None:
            threshold_days = self.date_drift_threshold_days
        loan = self.get_loan(loan_id)
        return find_date_drift(loan, self.get_loan_payments(loan_id), threshold_days)
