"""
Pure domain layer.

Data transfer objects and the pure steps of the posting pipeline
(validation, period rules, line generation, balancing) with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (callers pass "today" in)
"""

from ledger_kernel.domain.balance import check_balance, require_balanced
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountType,
    BalanceCheck,
    ChartAccount,
    FinanceEvent,
    FiscalPeriodInfo,
    FiscalYearInfo,
    FiscalYearStatus,
    LineSide,
    PeriodStatus,
    PosTotals,
    PostingLine,
    PostingPermission,
    PostingRule,
    PostingRuleSet,
    TransactionCategory,
    ValidationError,
    ValidationResult,
    VatHandling,
)
from ledger_kernel.domain.event_validator import validate_finance_event
from ledger_kernel.domain.line_generator import generate_lines, split_vat
from ledger_kernel.domain.period_rules import can_post
from ledger_kernel.domain.rule_set import rule_set_from_dict, rule_set_to_dict

__all__ = [
    "AccountType",
    "BalanceCheck",
    "ChartAccount",
    "Clock",
    "DeterministicClock",
    "FinanceEvent",
    "FiscalPeriodInfo",
    "FiscalYearInfo",
    "FiscalYearStatus",
    "LineSide",
    "PeriodStatus",
    "PosTotals",
    "PostingLine",
    "PostingPermission",
    "PostingRule",
    "PostingRuleSet",
    "SystemClock",
    "TransactionCategory",
    "ValidationError",
    "ValidationResult",
    "VatHandling",
    "can_post",
    "check_balance",
    "generate_lines",
    "require_balanced",
    "rule_set_from_dict",
    "rule_set_to_dict",
    "split_vat",
    "validate_finance_event",
]
