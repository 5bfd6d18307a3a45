"""
ReversalService -- offsetting entries for posted journals.

Responsibility:
    Reverses a posted journal entry by writing a new entry with every
    line's debit and credit swapped.  The original is never modified.

Architecture position:
    Kernel > Services -- imperative shell.  Reuses PeriodService for the
    posting decision on the reversal date and JournalWriter for the write.

Invariants enforced:
    - At most one reversal per entry: ``reversal_of_id`` is UNIQUE and the
      reversal's correlation id is derived from the original's id.
    - The reversal date must pass the same period check as any posting;
      reversing into a closed period is refused.
    - The reversal mirrors the original exactly, so it balances whenever
      the original did.

Failure modes:
    - EntryNotFoundError: unknown transaction for this organization.
    - EntryAlreadyReversedError: the entry already has a reversal.
    - ClosedPeriodError / PeriodClosingError / FuturePeriodError: the
      reversal date is not postable.
    - PersistenceError from the store.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain import period_rules
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    FinanceEvent,
    FiscalPeriodInfo,
    LineSide,
    PostingLine,
    PostingPermission,
)
from ledger_kernel.domain.smart_code import REVERSAL_SMART_CODE, line_smart_code
from ledger_kernel.exceptions import (
    ClosedPeriodError,
    EntryAlreadyReversedError,
    EntryNotFoundError,
    FuturePeriodError,
    PeriodClosingError,
    PeriodError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.transaction import UniversalTransaction
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore
from ledger_kernel.services.journal_writer import JournalWriter
from ledger_kernel.services.period_lock import PeriodLockRegistry, default_period_locks
from ledger_kernel.services.period_service import PeriodService

logger = get_logger("services.reversal_service")

REVERSAL_TRANSACTION_TYPE = "reversal"


@dataclass(frozen=True)
class ReversalResult:
    """Ids of the original entry and its reversal."""

    original_transaction_id: UUID
    reversal_transaction_id: UUID
    journal_entry_id: str
    posting_period: str
    lines: tuple[PostingLine, ...]


def reversal_lines(original: UniversalTransaction) -> tuple[PostingLine, ...]:
    """The original's lines with debit and credit swapped, same order."""
    lines = []
    for row in sorted(original.lines, key=lambda x: x.line_number):
        side = LineSide.DEBIT if row.credit_amount > 0 else LineSide.CREDIT
        tags = row.line_data or {}
        lines.append(
            PostingLine(
                line_number=row.line_number,
                account_code=row.account_code,
                account_name=row.account_name,
                debit_amount=row.credit_amount,
                credit_amount=row.debit_amount,
                description=f"Reversal: {row.description or row.account_code}",
                smart_code=line_smart_code(REVERSAL_SMART_CODE, side.value),
                entity_id=tags.get("entity_id"),
                cost_center=tags.get("cost_center"),
                department=tags.get("department"),
            )
        )
    return tuple(lines)


class ReversalService(BaseService):
    """Creates reversal entries."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        store: EntityStore | None = None,
        locks: PeriodLockRegistry | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._store = store or SqlEntityStore(session)
        self._locks = locks or default_period_locks
        self._auto_commit = auto_commit
        self._periods = PeriodService(session, self._clock, self._store, locks=self._locks)
        self._writer = JournalWriter(session, self._store)

    def reverse(
        self,
        organization_id: UUID,
        transaction_id: UUID,
        actor_id: UUID,
        reversal_date: date | None = None,
        *,
        reason: str | None = None,
        elevated_approval: bool = False,
    ) -> ReversalResult:
        """
        Reverse a posted entry on ``reversal_date`` (default: today).

        Raises:
            EntryNotFoundError, EntryAlreadyReversedError, PeriodError.
        """
        original = self._store.get_transaction(organization_id, transaction_id)
        if original is None:
            raise EntryNotFoundError(str(transaction_id))
        existing = self._store.find_reversal_of(original.id)
        if existing is not None:
            raise EntryAlreadyReversedError(str(original.id), str(existing.id))

        day = reversal_date or self._clock.today()
        event = FinanceEvent(
            organization_id=organization_id,
            transaction_type=REVERSAL_TRANSACTION_TYPE,
            smart_code=original.source_smart_code or original.smart_code,
            transaction_date=day,
            total_amount=original.total_amount,
            transaction_currency_code=original.transaction_currency_code,
            base_currency_code=original.base_currency_code,
            exchange_rate=original.exchange_rate or Decimal("1"),
            source_entity_id=original.source_entity_id,
            business_context={"note": reason} if reason else {},
            metadata={
                "correlation_id": f"reversal:{original.id}",
                "ingest_source": "reversal",
                "original_ref": original.transaction_code,
            },
        )
        lines = reversal_lines(original)

        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            transaction_id=original.id,
        ):
            period_code = period_rules.period_code_for(day)
            try:
                with self._locks.shared(organization_id, period_code):
                    period = self._periods.resolve_period(
                        organization_id, day, original.base_currency_code, actor_id,
                        for_posting=True,
                    )
                    permission = self._periods.can_post(period, day, elevated_approval)
                    if not permission.allowed:
                        raise _period_error(permission, period, day)

                    written = self._writer.write(
                        event,
                        lines,
                        period,
                        actor_id,
                        smart_code=REVERSAL_SMART_CODE,
                        reversal_of_id=original.id,
                        extra_metadata={
                            "reversal_of": str(original.id),
                            "reversal_reason": reason,
                        },
                    )
                    if not written.is_new:
                        raise EntryAlreadyReversedError(
                            str(original.id), str(written.transaction_id)
                        )
                    if self._auto_commit:
                        self.session.commit()
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                raise

            logger.info(
                "entry_reversed",
                extra={
                    "original_transaction_id": str(original.id),
                    "reversal_transaction_id": str(written.transaction_id),
                    "journal_entry_id": written.journal_entry_id,
                    "posting_period": written.period_code,
                },
            )
            return ReversalResult(
                original_transaction_id=original.id,
                reversal_transaction_id=written.transaction_id,
                journal_entry_id=written.journal_entry_id,
                posting_period=written.period_code,
                lines=lines,
            )


def _period_error(
    permission: PostingPermission, period: FiscalPeriodInfo, day: date
) -> PeriodError:
    if permission.error_code == PeriodClosingError.code:
        return PeriodClosingError(period.period_code)
    if permission.error_code == FuturePeriodError.code:
        return FuturePeriodError(period.period_code, day.isoformat())
    return ClosedPeriodError(period.period_code, day.isoformat())
