"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the posting
    pipeline: FinanceEvent (input), PostingRule (configuration),
    PostingLine (generator output), period/year snapshots, and the
    validation and balance results.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies.  Conversion from ORM rows happens in the
    service layer.

Invariants enforced:
    - All monetary fields are Decimal, never float.
    - A PostingLine carries exactly one non-zero side.
    - FinanceEvent.lines does not exist: generated lines are a separate
      output, so input lines can never leak into a journal.

Data flow:
    payload -> FinanceEvent -> (PostingRule) -> PostingLine[] -> journal entry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from ledger_kernel.db.types import to_decimal


class TransactionCategory(str, Enum):
    """
    Dispatch key for line generation.

    ``sale`` is accepted as an alias of ``revenue``; any other unknown code
    falls back to GENERIC.
    """

    EXPENSE = "expense"
    REVENUE = "revenue"
    BANK_FEE = "bank_fee"
    POS_DAILY_SUMMARY = "pos_daily_summary"
    GENERIC = "generic"

    @classmethod
    def from_code(cls, code: str) -> TransactionCategory:
        normalized = (code or "").strip().lower()
        if normalized == "sale":
            return cls.REVENUE
        try:
            return cls(normalized)
        except ValueError:
            return cls.GENERIC


class LineSide(str, Enum):
    """Which side of the entry a line is on."""

    DEBIT = "DR"
    CREDIT = "CR"


def parse_transaction_date(value: Any) -> date:
    """
    Parse a UFE transaction date.

    Accepts ``date``/``datetime`` objects, ``YYYY-MM-DD`` strings and full
    ISO-8601 datetimes (``2024-03-15T10:30:00Z``).  The calendar date as
    written is used; no timezone shifting.

    Raises:
        ValueError: If the value is not a valid date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        raise ValueError(f"Invalid transaction date: {value!r}")
    if len(value) > 10:
        # Validates the time part as well
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    return date.fromisoformat(value[:10])


# ---------------------------------------------------------------------------
# Universal Finance Event
# ---------------------------------------------------------------------------


POS_TOTAL_FIELDS = (
    "gross_sales",
    "vat",
    "tips",
    "fees",
    "cash_collected",
    "card_settlement",
    "other_tenders",
    "discounts",
    "commission",
)


@dataclass(frozen=True)
class PosTotals:
    """Aggregate amounts of a POS daily summary event."""

    gross_sales: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    tips: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    cash_collected: Decimal = Decimal("0")
    card_settlement: Decimal = Decimal("0")
    other_tenders: Decimal = Decimal("0")
    discounts: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")

    @property
    def net_sales(self) -> Decimal:
        return self.gross_sales - self.vat

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PosTotals:
        return cls(**{
            name: to_decimal(data[name])
            for name in POS_TOTAL_FIELDS
            if data.get(name) is not None
        })

    def to_payload(self) -> dict[str, str]:
        return {name: str(getattr(self, name)) for name in POS_TOTAL_FIELDS}


@dataclass(frozen=True)
class FinanceEvent:
    """
    Universal Finance Event (UFE): one business occurrence, before ledger
    expansion.

    Built from an already validated payload via ``from_payload``.  The
    event is ephemeral; only the journal entry derived from it is stored.
    """

    organization_id: UUID
    transaction_type: str
    smart_code: str
    transaction_date: date
    total_amount: Decimal
    transaction_currency_code: str
    base_currency_code: str
    exchange_rate: Decimal = Decimal("1")
    source_entity_id: UUID | None = None
    business_context: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    totals: PosTotals | None = None

    @property
    def category(self) -> TransactionCategory:
        return TransactionCategory.from_code(self.transaction_type)

    @property
    def correlation_id(self) -> str | None:
        value = self.metadata.get("correlation_id")
        return str(value) if value else None

    @property
    def idempotency_key(self) -> str | None:
        """``<organization>:<correlation id>`` or None when uncorrelated."""
        if self.correlation_id is None:
            return None
        return f"{self.organization_id}:{self.correlation_id}"

    @property
    def vat_inclusive(self) -> bool | None:
        """Per-event VAT-inclusive override, None when not specified."""
        value = self.business_context.get("vat_inclusive")
        return value if isinstance(value, bool) else None

    @property
    def note(self) -> str:
        return str(self.business_context.get("note") or "")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> FinanceEvent:
        """
        Build an event from a validated payload.

        Raises:
            ValueError / KeyError: If called on an unvalidated payload.
        """
        totals = payload.get("totals")
        source = payload.get("source_entity_id")
        return cls(
            organization_id=UUID(str(payload["organization_id"])),
            transaction_type=str(payload["transaction_type"]),
            smart_code=str(payload["smart_code"]),
            transaction_date=parse_transaction_date(payload["transaction_date"]),
            total_amount=to_decimal(payload["total_amount"]),
            transaction_currency_code=str(payload["transaction_currency_code"]).upper(),
            base_currency_code=str(payload["base_currency_code"]).upper(),
            exchange_rate=to_decimal(payload.get("exchange_rate", "1")),
            source_entity_id=UUID(str(source)) if source else None,
            business_context=dict(payload.get("business_context") or {}),
            metadata=dict(payload.get("metadata") or {}),
            totals=PosTotals.from_mapping(totals) if totals else None,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "organization_id": str(self.organization_id),
            "transaction_type": self.transaction_type,
            "smart_code": self.smart_code,
            "transaction_date": self.transaction_date.isoformat(),
            "total_amount": str(self.total_amount),
            "transaction_currency_code": self.transaction_currency_code,
            "base_currency_code": self.base_currency_code,
            "exchange_rate": str(self.exchange_rate),
            "business_context": dict(self.business_context),
            "metadata": dict(self.metadata),
            "lines": [],
        }
        if self.source_entity_id is not None:
            payload["source_entity_id"] = str(self.source_entity_id)
        if self.totals is not None:
            payload["totals"] = self.totals.to_payload()
        return payload


# ---------------------------------------------------------------------------
# Posting rules
# ---------------------------------------------------------------------------


class AccountType(str, Enum):
    """Chart-of-accounts classification."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def is_income_statement(self) -> bool:
        return self in (AccountType.REVENUE, AccountType.EXPENSE)


@dataclass(frozen=True)
class ChartAccount:
    code: str
    name: str
    account_type: AccountType


@dataclass(frozen=True)
class VatHandling:
    """VAT split instructions of a posting rule."""

    vat_rate: Decimal
    inclusive: bool = True
    vat_account: str | None = None


@dataclass(frozen=True)
class PostingRule:
    """
    Maps one smart code to debit/credit account templates.

    Account tuples are ordered; generators index into them by position
    (e.g. POS: debit[0]=cash, debit[1]=card settlement, debit[2]=fees).
    """

    smart_code: str
    debit_accounts: tuple[str, ...]
    credit_accounts: tuple[str, ...]
    vat_handling: VatHandling | None = None
    description: str = ""
    version: int = 1

    @property
    def has_vat(self) -> bool:
        return self.vat_handling is not None and self.vat_handling.vat_rate > 0


@dataclass(frozen=True)
class PostingRuleSet:
    """
    Typed, versioned posting-rule registry for one organization.

    Contract:
        Built only through ``rule_set_from_dict`` which validates it.  Lookup
        is by exact smart code.
    """

    name: str
    version: int
    rules: Mapping[str, PostingRule]
    accounts: Mapping[str, ChartAccount]
    retained_earnings_account: str
    base_currency: str = "AED"

    def get_rule(self, smart_code: str) -> PostingRule | None:
        return self.rules.get(smart_code)

    def account_name(self, code: str) -> str | None:
        account = self.accounts.get(code)
        return account.name if account else None

    def income_statement_accounts(self) -> tuple[ChartAccount, ...]:
        return tuple(
            account for account in self.accounts.values()
            if account.account_type.is_income_statement
        )


# ---------------------------------------------------------------------------
# Posting lines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostingLine:
    """
    One generated GL line.  Exactly one of debit_amount / credit_amount is
    non-zero.
    """

    line_number: int
    account_code: str
    debit_amount: Decimal
    credit_amount: Decimal
    description: str
    smart_code: str
    account_name: str | None = None
    entity_id: str | None = None
    cost_center: str | None = None
    department: str | None = None

    def __post_init__(self) -> None:
        if self.debit_amount < 0 or self.credit_amount < 0:
            raise ValueError("Posting line amounts must be non-negative")
        if (self.debit_amount > 0) == (self.credit_amount > 0):
            raise ValueError(
                f"Line {self.line_number} must have exactly one non-zero side"
            )

    @property
    def side(self) -> LineSide:
        return LineSide.DEBIT if self.debit_amount > 0 else LineSide.CREDIT

    @property
    def amount(self) -> Decimal:
        return self.debit_amount if self.debit_amount > 0 else self.credit_amount

    @property
    def tags(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (
                ("entity_id", self.entity_id),
                ("cost_center", self.cost_center),
                ("department", self.department),
            )
            if value
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "line_number": self.line_number,
            "account_code": self.account_code,
            "account_name": self.account_name,
            "debit_amount": str(self.debit_amount),
            "credit_amount": str(self.credit_amount),
            "description": self.description,
            "smart_code": self.smart_code,
            **self.tags,
        }


@dataclass(frozen=True)
class BalanceCheck:
    """Outcome of the balance gate."""

    total_debits: Decimal
    total_credits: Decimal
    difference: Decimal
    is_balanced: bool


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationError:
    """
    A single validation error.

    Carries a machine-readable code, a human-readable message and the
    offending field.  Does NOT raise -- it IS the error representation.
    """

    code: str
    message: str
    field: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of validation.

    is_valid is True only when there are no errors.  ``messages`` renders
    every violation as a discrete string.
    """

    is_valid: bool
    errors: tuple[ValidationError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True, errors=())

    @classmethod
    def failure(cls, *errors: ValidationError) -> ValidationResult:
        return cls(is_valid=False, errors=tuple(errors))

    @property
    def messages(self) -> list[str]:
        return [error.message for error in self.errors]

    @property
    def codes(self) -> list[str]:
        return [error.code for error in self.errors]

    def __bool__(self) -> bool:
        return self.is_valid


# ---------------------------------------------------------------------------
# Fiscal calendar
# ---------------------------------------------------------------------------


class PeriodStatus(str, Enum):
    """
    Status of a fiscal period.

    FUTURE / CURRENT / OPEN are derived from the clock; CLOSING and CLOSED
    are only set explicitly.  CLOSED is terminal.
    """

    FUTURE = "future"
    OPEN = "open"
    CURRENT = "current"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def is_time_derived(self) -> bool:
        return self in (PeriodStatus.FUTURE, PeriodStatus.CURRENT, PeriodStatus.OPEN)


class FiscalYearStatus(str, Enum):
    FUTURE = "future"
    CURRENT = "current"
    CLOSED = "closed"


@dataclass(frozen=True)
class FiscalPeriodInfo:
    """Immutable snapshot of a fiscal period's state."""

    id: UUID
    organization_id: UUID
    period_code: str
    fiscal_year: int
    period_number: int
    start_date: date
    end_date: date
    status: PeriodStatus
    is_year_end: bool = False
    version: int = 1
    closing_started_at: datetime | None = None
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    def to_payload(self) -> dict[str, Any]:
        return {
            "period_code": self.period_code,
            "fiscal_year": self.fiscal_year,
            "period_number": self.period_number,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "is_year_end": self.is_year_end,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by_id": str(self.closed_by_id) if self.closed_by_id else None,
        }


@dataclass(frozen=True)
class FiscalYearInfo:
    """Immutable snapshot of a fiscal year's state."""

    id: UUID
    organization_id: UUID
    fiscal_year: int
    start_date: date
    end_date: date
    status: FiscalYearStatus
    base_currency: str
    retained_earnings_account: str
    period_count: int = 12
    year_end_processed: bool = False
    year_end_close_version: int | None = None
    year_end_transaction_id: UUID | None = None
    version: int = 1


@dataclass(frozen=True)
class PostingPermission:
    """Decision of the period state machine for one posting date."""

    allowed: bool
    requires_approval: bool = False
    error: str | None = None
    error_code: str | None = None
    warning: str | None = None
