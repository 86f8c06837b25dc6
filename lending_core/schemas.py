"""
Pydantic schemas for stored and incoming lending records

Loan and payment documents accept the loosely typed values found in stored
data (numbers as strings, ISO datetimes where a date is expected) and convert
to and from the engine's dataclasses.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, Optional
import re
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .money import decimal_from_string
from .models import Loan, LateChargeTerms, LoanState, Payment
from .periods import as_date
from .metrics import LoanMetrics, loan_summary
from .allocation import Receipt


def _coerce_date(value: Any) -> Any:
    if value is None or value == "":
        return None
    return as_date(value)


# Estados written by older imports
LEGACY_ESTADOS = {
    "completado": LoanState.PAGADO.value,
    "vencido": LoanState.MOROSO.value,
}

_LATE_RATE = re.compile(r'(\d+(?:[.,]\d+)?)\s*%')
_GRACE_DAYS = re.compile(r'(\d+)\s*d[ií]as?', re.IGNORECASE)


def parse_late_terms_text(text: str) -> Dict[str, Any]:
    """
    Read late charge terms from their free-text form

    Spreadsheet imports store them as e.g. "Mora del 5% después de 3 días".
    Parts that cannot be found default to zero.
    """
    terms: Dict[str, Any] = {}
    rate = _LATE_RATE.search(text)
    if rate:
        terms['tasa_mora'] = decimal_from_string(rate.group(1))
    grace = _GRACE_DAYS.search(text)
    if grace:
        terms['dias_gracia'] = int(grace.group(1))
    return terms


class LateChargeTermsModel(BaseModel):
    tasa_mora: Decimal = Field(Decimal('0'), description="Annual late rate, percent")
    dias_gracia: int = Field(0, description="Grace days after the due date")

    def to_terms(self) -> LateChargeTerms:
        return LateChargeTerms(tasa_mora=self.tasa_mora, dias_gracia=self.dias_gracia)


class LoanDocument(BaseModel):
    """Stored shape of a loan, including the cached summary fields"""
    model_config = ConfigDict(extra="ignore")

    # Documents exported from the document database carry _id
    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    capital_inicial: Decimal
    tasa_interes: Decimal
    plazo: int
    fecha_creacion: date
    condiciones_mora: LateChargeTermsModel = Field(default_factory=LateChargeTermsModel)
    estado: str = LoanState.ACTIVO.value
    cliente_id: Optional[str] = None

    saldo_actual: Optional[Decimal] = None
    total_pagado: Decimal = Decimal('0')
    interes_acumulado: Decimal = Decimal('0')
    atraso_acumulado: Decimal = Decimal('0')

    # Summary written by the payment-recording service
    pago_esperado_periodo: Optional[Decimal] = None
    dias_mora: Optional[int] = None
    periodos_pagados: Optional[int] = None
    periodos_vencidos: Optional[int] = None
    tasa_cumplimiento: Optional[Decimal] = None
    estado_detallado: Optional[str] = None
    frecuencia_pago: Optional[str] = None

    @field_validator('fecha_creacion', mode='before')
    @classmethod
    def _parse_creation(cls, value):
        return as_date(value)

    @field_validator('condiciones_mora', mode='before')
    @classmethod
    def _default_terms(cls, value):
        if value is None:
            return {}
        if isinstance(value, str):
            return parse_late_terms_text(value)
        return value

    @field_validator('estado', mode='before')
    @classmethod
    def _map_legacy_estado(cls, value):
        if value is None:
            return LoanState.ACTIVO.value
        if isinstance(value, str):
            value = value.strip().lower()
            return LEGACY_ESTADOS.get(value, value)
        return value

    def to_loan(self) -> Loan:
        return Loan(
            id=self.id,
            capital_inicial=self.capital_inicial,
            tasa_interes=self.tasa_interes,
            plazo=self.plazo,
            fecha_creacion=self.fecha_creacion,
            condiciones_mora=self.condiciones_mora.to_terms(),
            estado=LoanState(self.estado),
            cliente_id=self.cliente_id,
            saldo_actual=self.saldo_actual,
            total_pagado=self.total_pagado,
            interes_acumulado=self.interes_acumulado,
            atraso_acumulado=self.atraso_acumulado
        )

    @classmethod
    def from_loan(cls, loan: Loan, metrics: Optional[LoanMetrics] = None) -> 'LoanDocument':
        data: Dict[str, Any] = {
            'id': loan.id,
            'capital_inicial': loan.capital_inicial,
            'tasa_interes': loan.tasa_interes,
            'plazo': loan.plazo,
            'fecha_creacion': loan.fecha_creacion,
            'condiciones_mora': LateChargeTermsModel(
                tasa_mora=loan.condiciones_mora.tasa_mora,
                dias_gracia=loan.condiciones_mora.dias_gracia
            ),
            'estado': loan.estado.value,
            'cliente_id': loan.cliente_id,
            'saldo_actual': loan.saldo_actual,
            'total_pagado': loan.total_pagado,
            'interes_acumulado': loan.interes_acumulado,
            'atraso_acumulado': loan.atraso_acumulado
        }
        if metrics is not None:
            data.update(loan_summary(metrics))
        return cls(**data)


class PaymentDocument(BaseModel):
    """Stored shape of a payment record"""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    prestamo_id: Optional[str] = None
    fecha: date
    monto: Decimal
    tipo: str = Field(..., description="pago, interes or mora")
    periodo_numero: Optional[int] = None
    dias_atraso: int = 0
    comprobante: Optional[str] = None
    fecha_vencimiento_esperada: Optional[date] = None

    @field_validator('fecha', mode='before')
    @classmethod
    def _parse_date(cls, value):
        return as_date(value)

    @field_validator('fecha_vencimiento_esperada', mode='before')
    @classmethod
    def _parse_due_date(cls, value):
        return _coerce_date(value)

    @field_validator('dias_atraso', mode='before')
    @classmethod
    def _default_lateness(cls, value):
        return value or 0

    def to_payment(self) -> Payment:
        return Payment(
            id=self.id,
            prestamo_id=self.prestamo_id,
            fecha=self.fecha,
            monto=self.monto,
            tipo=self.tipo,
            periodo_numero=self.periodo_numero,
            dias_atraso=self.dias_atraso,
            comprobante=self.comprobante,
            fecha_vencimiento_esperada=self.fecha_vencimiento_esperada
        )

    @classmethod
    def from_payment(cls, payment: Payment) -> 'PaymentDocument':
        return cls(
            id=payment.id,
            prestamo_id=payment.prestamo_id,
            fecha=payment.fecha,
            monto=payment.monto,
            tipo=payment.tipo.value,
            periodo_numero=payment.periodo_numero,
            dias_atraso=payment.dias_atraso,
            comprobante=payment.comprobante,
            fecha_vencimiento_esperada=payment.fecha_vencimiento_esperada
        )


class ReceiptRequest(BaseModel):
    """Incoming cash receipt for a loan"""
    prestamo_id: str
    fecha: date
    monto: Decimal = Field(..., gt=0, description="Cash received")
    comprobante: Optional[str] = None

    @field_validator('fecha', mode='before')
    @classmethod
    def _parse_date(cls, value):
        return as_date(value)

    def to_receipt(self) -> Receipt:
        return Receipt(fecha=self.fecha, monto=self.monto, comprobante=self.comprobante)

