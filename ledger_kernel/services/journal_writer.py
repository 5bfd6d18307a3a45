"""
JournalWriter -- atomic, idempotent journal persistence.

Responsibility:
    Turns a finance event and its generated, balanced lines into one
    persisted journal entry: a transaction header plus one row per line.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PostingPipeline,
    ReversalService and YearEndService after the balance gate.  Flushes
    only; the caller owns commit.

Invariants enforced:
    - Atomicity: header and lines are written in one SAVEPOINT; a failure
      leaves no partial entry behind.
    - Ordering: lines are inserted in ascending line_number.
    - Idempotency: "<organization>:<correlation id>" is a UNIQUE key.  An
      existing entry is returned as ALREADY_EXISTS; a concurrent duplicate
      insert loses on the constraint and re-reads the winner.
    - Balance: re-checked here; an unbalanced set is never written.

Failure modes:
    - UnbalancedEntryError: lines do not balance.
    - EntryAlreadyReversedError: a second reversal of the same entry.
    - PersistenceError: store failure, or a constraint conflict that is
      not an idempotent duplicate.

Audit relevance:
    journal_write_started, line_written and journal_write_completed are
    logged with the transaction id, journal entry number and duration.
    The header carries the system smart code, the originating event's
    smart code and the resolved period code.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import round_for_currency
from ledger_kernel.domain.balance import require_balanced
from ledger_kernel.domain.dtos import FinanceEvent, FiscalPeriodInfo, PostingLine
from ledger_kernel.domain.smart_code import AUTO_JOURNAL_SMART_CODE
from ledger_kernel.exceptions import EntryAlreadyReversedError, PersistenceError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.transaction import (
    UniversalTransaction,
    UniversalTransactionLine,
)
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore

logger = get_logger("services.journal_writer")


class WriteStatus(str, Enum):
    """Status of a write operation."""

    WRITTEN = "written"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class JournalWriteResult:
    """Result of JournalWriter.write()."""

    status: WriteStatus
    transaction_id: UUID
    journal_entry_id: str
    period_code: str

    @classmethod
    def written(cls, header: UniversalTransaction) -> "JournalWriteResult":
        return cls(
            status=WriteStatus.WRITTEN,
            transaction_id=header.id,
            journal_entry_id=header.transaction_code,
            period_code=header.fiscal_period_code,
        )

    @classmethod
    def already_exists(cls, header: UniversalTransaction) -> "JournalWriteResult":
        """Idempotent success: the entry was written by an earlier submission."""
        return cls(
            status=WriteStatus.ALREADY_EXISTS,
            transaction_id=header.id,
            journal_entry_id=header.transaction_code,
            period_code=header.fiscal_period_code,
        )

    @property
    def is_new(self) -> bool:
        return self.status == WriteStatus.WRITTEN


def new_journal_entry_number(event: FinanceEvent) -> str:
    """``JE-YYYYMM-XXXXXXXXXXXX`` from the transaction date and a random suffix."""
    return f"JE-{event.transaction_date:%Y%m}-{uuid4().hex[:12].upper()}"


class JournalWriter(BaseService):
    """Writes journal entries through the entity store."""

    def __init__(self, session: Session, store: EntityStore | None = None):
        super().__init__(session)
        self._store = store or SqlEntityStore(session)

    def find_existing(self, event: FinanceEvent) -> JournalWriteResult | None:
        """The entry already written for this event's correlation id, if any."""
        key = event.idempotency_key
        if key is None:
            return None
        existing = self._store.find_transaction_by_key(key)
        if existing is None:
            return None
        return JournalWriteResult.already_exists(existing)

    def write(
        self,
        event: FinanceEvent,
        lines: Sequence[PostingLine],
        period: FiscalPeriodInfo,
        actor_id: UUID | None = None,
        *,
        smart_code: str = AUTO_JOURNAL_SMART_CODE,
        reversal_of_id: UUID | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> JournalWriteResult:
        """
        Persist one journal entry.

        Preconditions:
            ``lines`` come from the line generator and passed the balance gate.

        Returns:
            WRITTEN with the new ids, or ALREADY_EXISTS with the ids of the
            entry previously written for the same correlation id.
        """
        t0 = time.monotonic()
        balance = require_balanced(lines, event.transaction_currency_code)

        existing = self.find_existing(event)
        if existing is not None:
            logger.info(
                "journal_write_idempotent",
                extra={
                    "transaction_id": str(existing.transaction_id),
                    "journal_entry_id": existing.journal_entry_id,
                },
            )
            return existing

        header = UniversalTransaction(
            id=uuid4(),
            organization_id=event.organization_id,
            transaction_type=event.transaction_type,
            transaction_code=new_journal_entry_number(event),
            transaction_date=event.transaction_date,
            fiscal_period_code=period.period_code,
            smart_code=smart_code,
            source_smart_code=event.smart_code,
            total_amount=round_for_currency(event.total_amount, event.transaction_currency_code),
            total_debits=balance.total_debits,
            total_credits=balance.total_credits,
            is_balanced=balance.is_balanced,
            transaction_currency_code=event.transaction_currency_code,
            base_currency_code=event.base_currency_code,
            exchange_rate=event.exchange_rate,
            source_entity_id=event.source_entity_id,
            idempotency_key=event.idempotency_key,
            reversal_of_id=reversal_of_id,
            business_context=dict(event.business_context),
            txn_metadata={
                "posting_period": period.period_code,
                "fiscal_year": period.fiscal_year,
                "source_smart_code": event.smart_code,
                "ingest_source": event.metadata.get("ingest_source"),
                "original_ref": event.metadata.get("original_ref"),
                "correlation_id": event.correlation_id,
                **(extra_metadata or {}),
            },
            created_by_id=actor_id,
        )
        rows = [
            UniversalTransactionLine(
                organization_id=event.organization_id,
                line_number=line.line_number,
                account_code=line.account_code,
                account_name=line.account_name,
                description=line.description,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                smart_code=line.smart_code,
                line_data=line.tags,
                created_by_id=actor_id,
            )
            for line in lines
        ]

        logger.info(
            "journal_write_started",
            extra={
                "transaction_id": str(header.id),
                "journal_entry_id": header.transaction_code,
                "line_count": len(rows),
                "period_code": period.period_code,
            },
        )

        try:
            self._store.create_transaction(header, rows)
        except IntegrityError as exc:
            return self._resolve_conflict(event, reversal_of_id, exc)

        for row in rows:
            logger.debug(
                "line_written",
                extra={
                    "line_number": row.line_number,
                    "account_code": row.account_code,
                    "debit_amount": row.debit_amount,
                    "credit_amount": row.credit_amount,
                },
            )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info(
            "journal_write_completed",
            extra={
                "transaction_id": str(header.id),
                "journal_entry_id": header.transaction_code,
                "total_debits": balance.total_debits,
                "total_credits": balance.total_credits,
                "duration_ms": duration_ms,
            },
        )
        return JournalWriteResult.written(header)

    def _resolve_conflict(
        self,
        event: FinanceEvent,
        reversal_of_id: UUID | None,
        exc: IntegrityError,
    ) -> JournalWriteResult:
        logger.warning("concurrent_insert_conflict")
        existing = self.find_existing(event)
        if existing is not None:
            return existing
        if reversal_of_id is not None:
            reversal = self._store.find_reversal_of(reversal_of_id)
            if reversal is not None:
                raise EntryAlreadyReversedError(str(reversal_of_id), str(reversal.id)) from exc
        raise PersistenceError("create_transaction", str(exc.orig or exc)) from exc
