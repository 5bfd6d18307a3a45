"""
Module: ledger_kernel.models.transaction
Responsibility: ORM persistence for journal entries (transaction headers)
    and their lines -- the financial record produced by the posting pipeline.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Idempotency: ``idempotency_key`` ("<organization>:<correlation id>") is
      UNIQUE, so the same finance event can never produce two entries.
    - One reversal per entry: ``reversal_of_id`` is UNIQUE.
    - Line order: (transaction_id, line_number) is UNIQUE and the
      relationship is ordered by line_number.
    - Balance: enforced by the journal writer before insert; is_balanced
      is stored for read-side reporting.

Failure modes:
    - IntegrityError on duplicate idempotency_key or reversal_of_id.

Audit relevance:
    Entries are append-only.  There is no update path; corrections are
    new offsetting entries that reference the original via reversal_of_id.
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


class UniversalTransaction(TrackedBase):
    """
    Journal entry header.

    ``id`` is the transaction id returned to callers; ``transaction_code`` is
    the human-facing journal entry number (JE-YYYYMM-XXXXXXXXXXXX).
    """

    __tablename__ = "universal_transactions"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_txn_idempotency"),
        UniqueConstraint("transaction_code", name="uq_txn_code"),
        UniqueConstraint("reversal_of_id", name="uq_txn_reversal_of"),
        Index("idx_txn_org_date", "organization_id", "transaction_date"),
        Index("idx_txn_org_period", "organization_id", "fiscal_period_code"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)

    transaction_code: Mapped[str] = mapped_column(String(40), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    fiscal_period_code: Mapped[str] = mapped_column(String(7), nullable=False)

    # System smart code marking how the entry was produced
    smart_code: Mapped[str] = mapped_column(String(120), nullable=False)

    # Smart code of the originating finance event
    source_smart_code: Mapped[str] = mapped_column(String(120), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    total_debits: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    total_credits: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    is_balanced: Mapped[bool] = mapped_column(Boolean, nullable=False)

    transaction_currency_code: Mapped[str] = mapped_column(String(3), nullable=False)

    base_currency_code: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)

    source_entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("universal_transactions.id"),
        nullable=True,
    )

    business_context: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    txn_metadata: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    lines: Mapped[list["UniversalTransactionLine"]] = relationship(
        back_populates="transaction",
        order_by="UniversalTransactionLine.line_number",
    )

    def __repr__(self) -> str:
        return f"<UniversalTransaction {self.transaction_code} {self.total_amount}>"


class UniversalTransactionLine(TrackedBase):
    """One debit or credit line of a journal entry."""

    __tablename__ = "universal_transaction_lines"

    __table_args__ = (
        UniqueConstraint("transaction_id", "line_number", name="uq_line_number"),
        Index("idx_line_org_account", "organization_id", "account_code"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("universal_transactions.id"),
        nullable=False,
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_code: Mapped[str] = mapped_column(String(50), nullable=False)

    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    smart_code: Mapped[str] = mapped_column(String(120), nullable=False)

    # entity / cost center / department tags
    line_data: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    transaction: Mapped[UniversalTransaction] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<UniversalTransactionLine {self.line_number} {self.account_code} "
            f"Dr {self.debit_amount} Cr {self.credit_amount}>"
        )
