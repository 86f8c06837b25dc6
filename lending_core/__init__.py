"""
Lending Core

A 15-day installment loan engine: payment schedules, receipt allocation
through a late-charge/interest/principal waterfall, loan metrics recomputed
from full payment history, and portfolio reporting. All money is Decimal.
"""

__version__ = "1.0.0"
