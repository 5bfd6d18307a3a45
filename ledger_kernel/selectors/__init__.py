"""Read-only query layer."""

from ledger_kernel.selectors.journal_selector import (
    AccountBalanceRow,
    JournalEntryDTO,
    JournalLineDTO,
    JournalSelector,
)

__all__ = [
    "AccountBalanceRow",
    "JournalEntryDTO",
    "JournalLineDTO",
    "JournalSelector",
]
