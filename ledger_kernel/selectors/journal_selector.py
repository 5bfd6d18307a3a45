"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only access to persisted journal entries (transaction
    headers and their lines) and account balances derived from them.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: no mutations.
    - Lines are returned in ascending line_number.
    - Balances are derived from line rows at query time; nothing is stored.

Failure modes:
    - Returns None or empty results when nothing matches.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ledger_kernel.models.transaction import (
    UniversalTransaction,
    UniversalTransactionLine,
)
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class JournalLineDTO:
    """A persisted GL line."""

    line_number: int
    account_code: str
    account_name: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None
    smart_code: str
    line_data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "line_number": self.line_number,
            "account_code": self.account_code,
            "account_name": self.account_name,
            "debit_amount": str(self.debit_amount),
            "credit_amount": str(self.credit_amount),
            "description": self.description,
            "smart_code": self.smart_code,
            **self.line_data,
        }


@dataclass(frozen=True)
class JournalEntryDTO:
    """A persisted journal entry with its lines in line_number order."""

    id: UUID
    organization_id: UUID
    journal_entry_id: str
    transaction_type: str
    transaction_date: date
    fiscal_period_code: str
    smart_code: str
    source_smart_code: str | None
    total_amount: Decimal
    currency: str
    idempotency_key: str | None
    reversal_of_id: UUID | None
    business_context: dict[str, Any]
    metadata: dict[str, Any]
    lines: tuple[JournalLineDTO, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_debits - self.total_credits) < Decimal("0.01")


@dataclass(frozen=True)
class AccountBalanceRow:
    """Debit/credit totals of one account over a date range."""

    account_code: str
    account_name: str | None
    debit_total: Decimal
    credit_total: Decimal
    line_count: int

    @property
    def balance(self) -> Decimal:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total


class JournalSelector(BaseSelector[UniversalTransaction]):
    """Queries over universal_transactions / universal_transaction_lines."""

    def __init__(self, session: Session):
        super().__init__(session)

    def _to_dto(self, txn: UniversalTransaction) -> JournalEntryDTO:
        lines = tuple(
            JournalLineDTO(
                line_number=line.line_number,
                account_code=line.account_code,
                account_name=line.account_name,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                description=line.description,
                smart_code=line.smart_code,
                line_data=dict(line.line_data or {}),
            )
            for line in sorted(txn.lines, key=lambda x: x.line_number)
        )
        return JournalEntryDTO(
            id=txn.id,
            organization_id=txn.organization_id,
            journal_entry_id=txn.transaction_code,
            transaction_type=txn.transaction_type,
            transaction_date=txn.transaction_date,
            fiscal_period_code=txn.fiscal_period_code,
            smart_code=txn.smart_code,
            source_smart_code=txn.source_smart_code,
            total_amount=txn.total_amount,
            currency=txn.transaction_currency_code,
            idempotency_key=txn.idempotency_key,
            reversal_of_id=txn.reversal_of_id,
            business_context=dict(txn.business_context or {}),
            metadata=dict(txn.txn_metadata or {}),
            lines=lines,
        )

    def get_entry(self, transaction_id: UUID) -> JournalEntryDTO | None:
        """Entry by transaction id, or None."""
        txn = self.session.execute(
            select(UniversalTransaction)
            .options(selectinload(UniversalTransaction.lines))
            .where(UniversalTransaction.id == transaction_id)
        ).scalar_one_or_none()
        return self._to_dto(txn) if txn is not None else None

    def find_by_correlation(
        self, organization_id: UUID, correlation_id: str
    ) -> JournalEntryDTO | None:
        """The entry written for an event's correlation id, or None."""
        txn = self.session.execute(
            select(UniversalTransaction)
            .options(selectinload(UniversalTransaction.lines))
            .where(UniversalTransaction.idempotency_key == f"{organization_id}:{correlation_id}")
        ).scalar_one_or_none()
        return self._to_dto(txn) if txn is not None else None

    def find_reversal(self, transaction_id: UUID) -> JournalEntryDTO | None:
        txn = self.session.execute(
            select(UniversalTransaction)
            .options(selectinload(UniversalTransaction.lines))
            .where(UniversalTransaction.reversal_of_id == transaction_id)
        ).scalar_one_or_none()
        return self._to_dto(txn) if txn is not None else None

    def get_entries_by_period(
        self, organization_id: UUID, period_code: str
    ) -> list[JournalEntryDTO]:
        """Entries of one fiscal period in transaction date order."""
        txns = self.session.execute(
            select(UniversalTransaction)
            .options(selectinload(UniversalTransaction.lines))
            .where(
                UniversalTransaction.organization_id == organization_id,
                UniversalTransaction.fiscal_period_code == period_code,
            )
            .order_by(UniversalTransaction.transaction_date, UniversalTransaction.created_at)
        ).scalars().all()
        return [self._to_dto(txn) for txn in txns]

    def count_entries(self, organization_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(UniversalTransaction)
            .where(UniversalTransaction.organization_id == organization_id)
        ).scalar_one()

    def account_balances(
        self,
        organization_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        account_codes: list[str] | None = None,
    ) -> list[AccountBalanceRow]:
        """
        Per-account debit and credit totals for entries dated within
        [start_date, end_date], ordered by account code.
        """
        query = (
            select(
                UniversalTransactionLine.account_code,
                func.max(UniversalTransactionLine.account_name),
                func.coalesce(func.sum(UniversalTransactionLine.debit_amount), 0),
                func.coalesce(func.sum(UniversalTransactionLine.credit_amount), 0),
                func.count(UniversalTransactionLine.id),
            )
            .join(
                UniversalTransaction,
                UniversalTransactionLine.transaction_id == UniversalTransaction.id,
            )
            .where(UniversalTransaction.organization_id == organization_id)
            .group_by(UniversalTransactionLine.account_code)
            .order_by(UniversalTransactionLine.account_code)
        )
        if start_date is not None:
            query = query.where(UniversalTransaction.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(UniversalTransaction.transaction_date <= end_date)
        if account_codes is not None:
            query = query.where(UniversalTransactionLine.account_code.in_(account_codes))

        return [
            AccountBalanceRow(
                account_code=code,
                account_name=name,
                debit_total=Decimal(str(debits)),
                credit_total=Decimal(str(credits)),
                line_count=count,
            )
            for code, name, debits, credits, count in self.session.execute(query).all()
        ]
