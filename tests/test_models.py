"""
Test suite for lending records
"""

import pytest
import dataclasses
from decimal import Decimal
from datetime import date

from lending_core.models import (
    Loan, LateChargeTerms, LoanState, LoanStatus, Payment, PaymentType, Period, PeriodStatus
)
from lending_core.exceptions import InvalidPayment


class TestLoan:
    """Test Loan record coercion and defaults"""

    def test_coerces_imported_values(self):
        """Test string values as found in spreadsheet imports"""
        loan = Loan(
            capital_inicial="1000",
            tasa_interes="15",
            plazo="12",
            fecha_creacion="2024-01-01T00:00:00.000Z",
            condiciones_mora={"tasa_mora": "2", "dias_gracia": "5"},
            estado="moroso"
        )

        assert loan.capital_inicial == Decimal('1000')
        assert loan.tasa_interes == Decimal('15')
        assert loan.plazo == 12
        assert loan.fecha_creacion == date(2024, 1, 1)
        assert loan.condiciones_mora == LateChargeTerms(tasa_mora=Decimal('2'), dias_gracia=5)
        assert loan.estado == LoanState.MOROSO

    def test_defaults(self):
        loan = Loan(capital_inicial=Decimal('500'), tasa_interes=Decimal('10'), plazo=6,
                    fecha_creacion=date(2024, 3, 1))

        assert loan.saldo_actual == Decimal('500')
        assert loan.total_pagado == Decimal('0')
        assert loan.atraso_acumulado == Decimal('0')
        assert loan.estado == LoanState.ACTIVO
        assert loan.condiciones_mora.tasa_mora == Decimal('0')
        assert loan.id

    def test_is_active(self):
        loan = Loan(capital_inicial=1000, tasa_interes=15, plazo=12, fecha_creacion=date(2024, 1, 1))
        assert loan.is_active

        loan.estado = LoanState.MOROSO
        assert loan.is_active

        loan.estado = LoanState.PAGADO
        assert not loan.is_active


class TestLoanStatus:
    """Test mapping of derived status to stored estado"""

    def test_estado_mapping(self):
        assert LoanStatus.CURRENT.estado == LoanState.ACTIVO
        assert LoanStatus.OVERDUE.estado == LoanState.MOROSO
        assert LoanStatus.PAID.estado == LoanState.PAGADO


class TestPayment:
    """Test Payment record"""

    def test_coercion(self):
        payment = Payment(fecha="2024-01-20", monto="43.75", tipo="pago", periodo_numero="2")

        assert payment.fecha == date(2024, 1, 20)
        assert payment.monto == Decimal('43.75')
        assert payment.tipo == PaymentType.PAGO
        assert payment.periodo_numero == 2
        assert payment.dias_atraso == 0

    def test_unknown_type(self):
        with pytest.raises(InvalidPayment, match="Unknown payment type"):
            Payment(fecha=date(2024, 1, 20), monto=Decimal('10'), tipo="bonus")

    def test_payments_are_immutable(self):
        payment = Payment(fecha=date(2024, 1, 20), monto=Decimal('10'), tipo=PaymentType.MORA)
        with pytest.raises(dataclasses.FrozenInstanceError):
            payment.monto = Decimal('20')


class TestPeriod:
    """Test Period record"""

    def test_is_settled(self):
        period = Period(
            period_number=1,
            start_date=date(2024, 1, 1),
            due_date=date(2024, 1, 16),
            expected_amount=Decimal('89.58')
        )
        assert not period.is_settled
        assert period.status == PeriodStatus.PENDING

        period.total_paid = Decimal('89.58')
        assert period.is_settled
