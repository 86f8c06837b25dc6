"""
Lending Records Module

Loan, payment and period records consumed and produced by the engine. Records
are plain dataclasses; they carry no storage or HTTP knowledge.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import List, Optional
from enum import Enum
import uuid

from .money import ZERO, to_decimal
from .periods import as_date
from .exceptions import InvalidPayment


class LoanState(Enum):
    """Stored loan state (estado), a cache of the last recomputation"""
    ACTIVO = "activo"      # Loan is being repaid on schedule
    PAGADO = "pagado"      # Principal fully repaid
    MOROSO = "moroso"      # At least one period overdue


class LoanStatus(Enum):
    """Derived loan status snapshot"""
    CURRENT = "current"
    OVERDUE = "overdue"
    PAID = "paid"

    @property
    def estado(self) -> LoanState:
        """Stored state matching this snapshot"""
        return {
            LoanStatus.CURRENT: LoanState.ACTIVO,
            LoanStatus.OVERDUE: LoanState.MOROSO,
            LoanStatus.PAID: LoanState.PAGADO
        }[self]


class PaymentType(Enum):
    """What a payment record settles"""
    PAGO = "pago"          # Principal
    INTERES = "interes"    # Period interest
    MORA = "mora"          # Late charges


class PeriodStatus(Enum):
    """Status of a single 15-day period"""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass
class LateChargeTerms:
    """Late charge conditions (condiciones_mora)"""
    tasa_mora: Decimal = ZERO       # Annual late rate, percent
    dias_gracia: int = 0            # Days after due date before charges accrue

    def __post_init__(self):
        self.tasa_mora = to_decimal(self.tasa_mora)
        self.dias_gracia = int(self.dias_gracia)


@dataclass
class Loan:
    """Loan terms plus the summary fields rewritten after every recomputation"""
    capital_inicial: Decimal
    tasa_interes: Decimal               # Nominal annual rate, percent
    plazo: int                          # Number of 15-day periods
    fecha_creacion: date
    condiciones_mora: LateChargeTerms = field(default_factory=LateChargeTerms)
    estado: LoanState = LoanState.ACTIVO
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cliente_id: Optional[str] = None

    # Stored summary (cache of compute_metrics output)
    saldo_actual: Optional[Decimal] = None
    total_pagado: Decimal = ZERO
    interes_acumulado: Decimal = ZERO
    atraso_acumulado: Decimal = ZERO    # Late charges assessed to date

    def __post_init__(self):
        self.capital_inicial = to_decimal(self.capital_inicial)
        self.tasa_interes = to_decimal(self.tasa_interes)
        self.plazo = int(self.plazo)
        self.fecha_creacion = as_date(self.fecha_creacion)

        if isinstance(self.estado, str):
            self.estado = LoanState(self.estado)
        if isinstance(self.condiciones_mora, dict):
            self.condiciones_mora = LateChargeTerms(**self.condiciones_mora)

        if self.saldo_actual is None:
            self.saldo_actual = self.capital_inicial
        self.saldo_actual = to_decimal(self.saldo_actual)
        self.total_pagado = to_decimal(self.total_pagado)
        self.interes_acumulado = to_decimal(self.interes_acumulado)
        self.atraso_acumulado = to_decimal(self.atraso_acumulado)

    @property
    def is_active(self) -> bool:
        """Check if loan is still being repaid"""
        return self.estado != LoanState.PAGADO


@dataclass(frozen=True)
class Payment:
    """
    Immutable payment record. One cash receipt may be split into several
    payments, one per tipo, sharing fecha and comprobante.
    """
    fecha: date
    monto: Decimal
    tipo: PaymentType
    periodo_numero: Optional[int] = None
    dias_atraso: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    prestamo_id: Optional[str] = None
    comprobante: Optional[str] = None
    fecha_vencimiento_esperada: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, 'fecha', as_date(self.fecha))
        object.__setattr__(self, 'monto', to_decimal(self.monto))

        if not isinstance(self.tipo, PaymentType):
            try:
                object.__setattr__(self, 'tipo', PaymentType(self.tipo))
            except ValueError:
                raise InvalidPayment(f"Unknown payment type: {self.tipo!r}")

        if self.periodo_numero is not None:
            object.__setattr__(self, 'periodo_numero', int(self.periodo_numero))
        object.__setattr__(self, 'dias_atraso', int(self.dias_atraso or 0))
        if self.fecha_vencimiento_esperada is not None:
            object.__setattr__(
                self, 'fecha_vencimiento_esperada', as_date(self.fecha_vencimiento_esperada)
            )


@dataclass
class Period:
    """One 15-day billing cycle of a loan's term (derived, never persisted)"""
    period_number: int
    start_date: date
    due_date: date
    expected_amount: Decimal
    total_paid: Decimal = ZERO
    status: PeriodStatus = PeriodStatus.PENDING
    late_days: int = 0
    payments: List[Payment] = field(default_factory=list)

    @property
    def is_settled(self) -> bool:
        """Check if collected cash covers the expected installment"""
        return self.total_paid >= self.expected_amount


class AnomalyKind(Enum):
    """Why a payment could not be placed in a schedule period"""
    BEFORE_ORIGINATION = "before_origination"
    BEYOND_TERM = "beyond_term"


@dataclass(frozen=True)
class PaymentAnomaly:
    """A payment resolving outside [1, plazo], kept for operator review"""
    kind: AnomalyKind
    period_number: int
    message: str
    payment: Optional[Payment] = None
