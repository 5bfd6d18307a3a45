"""
POS End-of-Day Module.

Validates a POS daily summary and posts the day's sales, staff commission
accruals and card fees as separate journal entries.
"""

from ledger_modules.pos.config import PosConfig
from ledger_modules.pos.models import (
    Adjustments,
    CardPayment,
    CashPayment,
    Payments,
    PosDailySummary,
    Reconciliation,
    SalesCategory,
    StaffCommission,
)
from ledger_modules.pos.service import (
    CommissionAccrual,
    PosDayStatus,
    PosEndOfDayReport,
    PosEndOfDayService,
)
from ledger_modules.pos.validation import validate_daily_summary

__all__ = [
    "Adjustments",
    "CardPayment",
    "CashPayment",
    "CommissionAccrual",
    "Payments",
    "PosConfig",
    "PosDailySummary",
    "PosDayStatus",
    "PosEndOfDayReport",
    "PosEndOfDayService",
    "Reconciliation",
    "SalesCategory",
    "StaffCommission",
    "validate_daily_summary",
]
