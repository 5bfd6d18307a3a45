"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the posting pipeline must be able to tell a closed period from
a missing posting rule from an unavailable database without parsing
message strings.  Every exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (period code, sums, smart code, ...)

Business outcomes (validation, fiscal, rule-resolution, balance) are raised
inside the pipeline and converted to a PostingResult at its boundary.  Only
PersistenceError and its subclasses are allowed to escape to the caller.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- EventValidationError
    |
    +-- PeriodError
    |   +-- ClosedPeriodError
    |   +-- PeriodClosingError
    |   +-- FuturePeriodError
    |   +-- PeriodNotFoundError
    |   +-- PeriodAlreadyClosedError
    |   +-- FiscalYearError
    |       +-- YearEndAlreadyProcessedError
    |
    +-- RuleError
    |   +-- PostingRuleNotFoundError
    |   +-- LineGenerationError
    |   +-- RuleSetValidationError
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |
    +-- ReversalError
    |   +-- EntryNotFoundError
    |   +-- EntryAlreadyReversedError
    |
    +-- PersistenceError            (retryable)
    |   +-- PersistenceTimeoutError
    |   |   +-- PeriodLockTimeoutError
    |   +-- ConcurrencyError
    |       +-- OptimisticLockError
    |
    +-- SummarySchemaError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------
Validation   | EVENT_VALIDATION_FAILED       | UFE failed structural/business checks
Period       | CLOSED_PERIOD                 | Posting date falls in a closed period
             | PERIOD_CLOSING                | Period is closing, approval needed
             | FUTURE_PERIOD                 | Date beyond next calendar month
             | PERIOD_NOT_FOUND              | No period with this code
             | PERIOD_ALREADY_CLOSED         | close_period on a closed period
             | FISCAL_YEAR_ERROR             | Fiscal year missing or inconsistent
             | YEAR_END_ALREADY_PROCESSED    | Year-end close run twice
Rule         | POSTING_RULE_NOT_FOUND        | No rule for smart code
             | LINE_GENERATION_FAILED        | Rule lacks a needed account
             | RULE_SET_INVALID              | Rule set failed load-time checks
Posting      | UNBALANCED_ENTRY              | |debits - credits| >= 0.01
Reversal     | ENTRY_NOT_FOUND               | Unknown transaction id
             | ENTRY_ALREADY_REVERSED        | Entry already has a reversal
Persistence  | PERSISTENCE_ERROR             | Store unavailable / rejected write
             | PERSISTENCE_TIMEOUT           | Store call exceeded its timeout
Concurrency  | OPTIMISTIC_LOCK_CONFLICT      | State row changed underneath us
             | PERIOD_LOCK_TIMEOUT           | Period lock not acquired in time
POS          | POS_SUMMARY_SCHEMA            | Daily summary payload malformed

===============================================================================
RETRY SEMANTICS
===============================================================================

``retryable`` is True for PersistenceError and everything under it.  The whole
UFE must be resubmitted; retrying a single line is never safe.  Because the
journal writer enforces (organization, correlation id) uniqueness, a retry
of an event that did commit returns ALREADY_POSTED instead of a duplicate.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False


# Validation


class EventValidationError(LedgerKernelError):
    """A finance event failed validation; carries every violation."""

    code: str = "EVENT_VALIDATION_FAILED"

    def __init__(self, messages: list[str]):
        self.messages = list(messages)
        super().__init__("; ".join(self.messages) or "Finance event is invalid")


# Period-related exceptions


class PeriodError(LedgerKernelError):
    """Base class for fiscal period errors."""

    code: str = "PERIOD_ERROR"


class ClosedPeriodError(PeriodError):
    """Attempted to post to a closed period."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_code: str, effective_date: str):
        self.period_code = period_code
        self.effective_date = effective_date
        super().__init__(
            f"Cannot post to closed period {period_code} "
            f"(transaction_date: {effective_date})"
        )


class PeriodClosingError(PeriodError):
    """Period is in the closing workflow; posting needs elevated approval."""

    code: str = "PERIOD_CLOSING"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(
            f"Period {period_code} is closing; posting requires elevated approval"
        )


class FuturePeriodError(PeriodError):
    """Posting date is beyond the allowed future horizon."""

    code: str = "FUTURE_PERIOD"

    def __init__(self, period_code: str, effective_date: str):
        self.period_code = period_code
        self.effective_date = effective_date
        super().__init__(
            f"Cannot post to future period {period_code} "
            f"(transaction_date: {effective_date}); only the next calendar "
            "month is open for posting"
        )


class PeriodNotFoundError(PeriodError):
    """No fiscal period exists with the given code."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Fiscal period not found: {period_code}")


class PeriodAlreadyClosedError(PeriodError):
    """Period is already closed."""

    code: str = "PERIOD_ALREADY_CLOSED"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Fiscal period {period_code} is already closed")


class FiscalYearError(PeriodError):
    """Fiscal year is missing or in an unexpected state."""

    code: str = "FISCAL_YEAR_ERROR"

    def __init__(self, fiscal_year: int, reason: str):
        self.fiscal_year = fiscal_year
        self.reason = reason
        super().__init__(f"Fiscal year {fiscal_year}: {reason}")


class YearEndAlreadyProcessedError(FiscalYearError):
    """Year-end close has already run for this fiscal year."""

    code: str = "YEAR_END_ALREADY_PROCESSED"

    def __init__(self, fiscal_year: int):
        super().__init__(fiscal_year, "year-end close already processed")


# Rule-resolution exceptions


class RuleError(LedgerKernelError):
    """Base class for posting rule errors."""

    code: str = "RULE_ERROR"


class PostingRuleNotFoundError(RuleError):
    """No posting rule is registered for a smart code."""

    code: str = "POSTING_RULE_NOT_FOUND"

    def __init__(self, smart_code: str, organization_id: str | None = None):
        self.smart_code = smart_code
        self.organization_id = organization_id
        super().__init__(f"No posting rule found for smart code: {smart_code}")


class LineGenerationError(RuleError):
    """A posting rule cannot produce lines for this event."""

    code: str = "LINE_GENERATION_FAILED"

    def __init__(self, smart_code: str, reason: str):
        self.smart_code = smart_code
        self.reason = reason
        super().__init__(f"Cannot generate lines for {smart_code}: {reason}")


class RuleSetValidationError(RuleError):
    """A posting rule set failed its load-time checks."""

    code: str = "RULE_SET_INVALID"

    def __init__(self, errors: list[str], source: str | None = None):
        self.errors = list(errors)
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(
            f"Posting rule set is invalid{where}: " + "; ".join(self.errors)
        )


# Posting exceptions


class PostingError(LedgerKernelError):
    """Base class for posting errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(
        self,
        debits: Decimal,
        credits: Decimal,
        difference: Decimal,
        currency: str | None = None,
    ):
        self.debits = debits
        self.credits = credits
        self.difference = difference
        self.currency = currency
        super().__init__(
            f"Unbalanced entry{f' in {currency}' if currency else ''}: "
            f"debits={debits}, credits={credits}, difference={difference}"
        )


# Reversal exceptions


class ReversalError(LedgerKernelError):
    """Base class for reversal errors."""

    code: str = "REVERSAL_ERROR"


class EntryNotFoundError(ReversalError):
    """Journal entry (transaction) does not exist."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Journal entry not found: {transaction_id}")


class EntryAlreadyReversedError(ReversalError):
    """Journal entry has already been reversed."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, transaction_id: str, reversal_id: str):
        self.transaction_id = transaction_id
        self.reversal_id = reversal_id
        super().__init__(
            f"Journal entry {transaction_id} already reversed by {reversal_id}"
        )


# Persistence exceptions


class PersistenceError(LedgerKernelError):
    """The entity/transaction store is unavailable or rejected a write."""

    code: str = "PERSISTENCE_ERROR"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


class PersistenceTimeoutError(PersistenceError):
    """A store call exceeded its timeout."""

    code: str = "PERSISTENCE_TIMEOUT"


# Concurrency exceptions


class ConcurrencyError(PersistenceError):
    """Base class for concurrency conflicts; resubmitting the event is safe."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Concurrent modification detected via version mismatch."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_id: str, expected_version: int, actual_version: int):
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            "optimistic_lock",
            f"Concurrent modification of {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


class PeriodLockTimeoutError(PersistenceTimeoutError):
    """Could not acquire the period lock within the timeout."""

    code: str = "PERIOD_LOCK_TIMEOUT"

    def __init__(self, period_code: str, timeout: float):
        self.period_code = period_code
        self.timeout = timeout
        super().__init__(
            "period_lock",
            f"Timed out after {timeout}s waiting for period lock {period_code}"
        )


# POS exceptions


class SummarySchemaError(LedgerKernelError):
    """POS daily summary payload is structurally malformed."""

    code: str = "POS_SUMMARY_SCHEMA"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid daily summary: " + "; ".join(self.errors))
