"""
Balance validator -- the single gate between line generation and the
journal writer.

Invariants enforced:
    A line set is balanced iff |sum(debits) - sum(credits)| < 0.01.
    Unbalanced sets never reach JournalWriter; the pipeline reports both
    sums and the difference.
"""

from decimal import Decimal
from typing import Iterable

from ledger_kernel.db.types import BALANCE_TOLERANCE
from ledger_kernel.domain.dtos import BalanceCheck, PostingLine
from ledger_kernel.exceptions import UnbalancedEntryError


def check_balance(
    lines: Iterable[PostingLine],
    tolerance: Decimal = BALANCE_TOLERANCE,
) -> BalanceCheck:
    lines = tuple(lines)
    total_debits = sum((line.debit_amount for line in lines), Decimal("0"))
    total_credits = sum((line.credit_amount for line in lines), Decimal("0"))
    difference = total_debits - total_credits
    return BalanceCheck(
        total_debits=total_debits,
        total_credits=total_credits,
        difference=difference,
        is_balanced=abs(difference) < tolerance,
    )


def require_balanced(
    lines: Iterable[PostingLine],
    currency: str | None = None,
) -> BalanceCheck:
    """
    Like check_balance, but raises on an unbalanced set.

    Raises:
        UnbalancedEntryError: With both sums and the difference.
    """
    result = check_balance(lines)
    if not result.is_balanced:
        raise UnbalancedEntryError(
            debits=result.total_debits,
            credits=result.total_credits,
            difference=result.difference,
            currency=currency,
        )
    return result
