"""
Test suite for stored-document schemas
"""

import pytest
from decimal import Decimal
from datetime import date
from pydantic import ValidationError

from lending_core.models import Loan, LateChargeTerms, LoanState, Payment, PaymentType
from lending_core.metrics import compute_metrics
from lending_core.schemas import LoanDocument, PaymentDocument, ReceiptRequest, parse_late_terms_text
from lending_core.exceptions import InvalidPayment


RAW_LOAN = {
    "id": "prestamo-001",
    "cliente_id": "cliente-001",
    "capital_inicial": "1000",
    "tasa_interes": 15,
    "plazo": "12",
    "fecha_creacion": "2024-01-01T00:00:00.000Z",
    "condiciones_mora": {"tasa_mora": "2", "dias_gracia": "5"},
    "estado": "activo",
    "saldo_actual": "1000",
    "campo_desconocido": "ignored"
}


class TestLoanDocument:
    """Test loan documents"""

    def test_parses_loosely_typed_document(self):
        loan = LoanDocument.model_validate(RAW_LOAN).to_loan()

        assert isinstance(loan, Loan)
        assert loan.id == "prestamo-001"
        assert loan.cliente_id == "cliente-001"
        assert loan.capital_inicial == Decimal('1000')
        assert loan.tasa_interes == Decimal('15')
        assert loan.plazo == 12
        assert loan.fecha_creacion == date(2024, 1, 1)
        assert loan.condiciones_mora == LateChargeTerms(tasa_mora=Decimal('2'), dias_gracia=5)
        assert loan.estado == LoanState.ACTIVO

    def test_missing_late_terms(self):
        raw = dict(RAW_LOAN, condiciones_mora=None)
        loan = LoanDocument.model_validate(raw).to_loan()
        assert loan.condiciones_mora == LateChargeTerms()

    def test_legacy_estados(self):
        assert LoanDocument.model_validate(dict(RAW_LOAN, estado="completado")).to_loan().estado == LoanState.PAGADO
        assert LoanDocument.model_validate(dict(RAW_LOAN, estado="vencido")).to_loan().estado == LoanState.MOROSO
        assert LoanDocument.model_validate(dict(RAW_LOAN, estado=" Activo ")).to_loan().estado == LoanState.ACTIVO
        assert LoanDocument.model_validate(dict(RAW_LOAN, estado=None)).to_loan().estado == LoanState.ACTIVO

    def test_late_terms_as_text(self):
        raw = dict(RAW_LOAN, condiciones_mora="Mora del 5% después de 3 días")
        loan = LoanDocument.model_validate(raw).to_loan()
        assert loan.condiciones_mora == LateChargeTerms(tasa_mora=Decimal('5'), dias_gracia=3)

    def test_document_database_id(self):
        raw = dict(RAW_LOAN)
        raw["_id"] = raw.pop("id")

        document = LoanDocument.model_validate(raw)

        assert document.id == "prestamo-001"
        assert document.model_dump(mode="json")["id"] == "prestamo-001"

    def test_missing_required_field(self):
        raw = dict(RAW_LOAN)
        del raw["capital_inicial"]
        with pytest.raises(ValidationError):
            LoanDocument.model_validate(raw)

    def test_unknown_estado(self):
        document = LoanDocument.model_validate(dict(RAW_LOAN, estado="archivado"))
        with pytest.raises(ValueError):
            document.to_loan()

    def test_round_trip_through_json(self):
        loan = LoanDocument.model_validate(RAW_LOAN).to_loan()

        stored = LoanDocument.from_loan(loan).model_dump(mode="json")

        assert stored["capital_inicial"] == "1000"
        assert stored["fecha_creacion"] == "2024-01-01"
        assert LoanDocument.model_validate(stored).to_loan() == loan

    def test_summary_fields_from_metrics(self):
        loan = LoanDocument.model_validate(RAW_LOAN).to_loan()
        metrics = compute_metrics(loan, [], as_of=date(2024, 1, 20))

        document = LoanDocument.from_loan(loan, metrics)

        assert document.pago_esperado_periodo == Decimal('89.58')
        assert document.periodos_vencidos == 1
        assert document.dias_mora == 4
        assert document.estado == "moroso"
        assert document.estado_detallado == "overdue"
        assert document.frecuencia_pago == "15 días"


class TestPaymentDocument:
    """Test payment documents"""

    def test_legacy_payment(self):
        raw = {
            "id": "pago-001",
            "prestamo_id": "prestamo-001",
            "fecha": "2024-01-20T10:15:00Z",
            "monto": "50.00",
            "tipo": "pago",
            "dias_atraso": None,
            "fecha_vencimiento_esperada": ""
        }

        payment = PaymentDocument.model_validate(raw).to_payment()

        assert payment.fecha == date(2024, 1, 20)
        assert payment.monto == Decimal('50.00')
        assert payment.tipo == PaymentType.PAGO
        assert payment.periodo_numero is None
        assert payment.dias_atraso == 0
        assert payment.fecha_vencimiento_esperada is None

    def test_round_trip(self):
        payment = Payment(
            fecha=date(2024, 1, 20), monto=Decimal('6.25'), tipo=PaymentType.INTERES,
            periodo_numero=2, prestamo_id="prestamo-001", comprobante="R-1",
            fecha_vencimiento_esperada=date(2024, 1, 31)
        )

        stored = PaymentDocument.from_payment(payment).model_dump(mode="json")

        assert stored["tipo"] == "interes"
        assert stored["fecha_vencimiento_esperada"] == "2024-01-31"
        assert PaymentDocument.model_validate(stored).to_payment() == payment

    def test_unknown_type(self):
        document = PaymentDocument.model_validate(
            {"id": "x", "fecha": "2024-01-20", "monto": "5", "tipo": "bonus"}
        )
        with pytest.raises(InvalidPayment):
            document.to_payment()


class TestReceiptRequest:
    """Test incoming receipt requests"""

    def test_valid_request(self):
        request = ReceiptRequest(prestamo_id="prestamo-001", fecha="2024-01-20", monto="50")
        receipt = request.to_receipt()

        assert receipt.fecha == date(2024, 1, 20)
        assert receipt.monto == Decimal('50.00')
        assert receipt.comprobante.startswith("REC-")

    def test_non_positive_amount(self):
        with pytest.raises(ValidationError):
            ReceiptRequest(prestamo_id="prestamo-001", fecha="2024-01-20", monto="0")


class TestLateTermsText:
    """Test free-text late charge terms"""

    def test_rate_and_grace_days(self):
        assert parse_late_terms_text("Mora del 2,5% después de 5 dias") == {
            'tasa_mora': Decimal('2.5'), 'dias_gracia': 5
        }

    def test_missing_parts(self):
        assert parse_late_terms_text("Sin mora") == {}
        assert parse_late_terms_text("Mora del 4%") == {'tasa_mora': Decimal('4')}
