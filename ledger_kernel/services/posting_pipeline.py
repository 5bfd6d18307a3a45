"""
PostingPipeline -- the single entry point for posting one finance event.

Responsibility:
    Runs one Universal Finance Event through the whole posting pipeline
    and returns a PostingResult:

        validate -> resolve period -> can_post -> resolve rule
                 -> generate lines -> balance gate -> write journal

Architecture position:
    Kernel > Services -- imperative shell.  Composes PeriodService,
    RuleResolver and JournalWriter over one Session and owns the commit
    boundary of the unit of work.

Invariants enforced:
    - One UFE is one database transaction: committed only when the journal
      is written (or already existed), rolled back on every other outcome
      when ``auto_commit`` is on.
    - Resubmitting an event with the same correlation id never creates a
      second entry; it returns ALREADY_POSTED with the original ids.
    - The period lock is held shared from period resolution through
      commit, so a close of the same period either completes before the
      posting starts or waits for it to commit.

Failure modes:
    - Validation, fiscal, rule and balance outcomes are returned as data
      (PostingStatus), never raised.
    - PersistenceError and its subclasses (timeouts, lock timeouts,
      optimistic conflicts) propagate after rollback; they are retryable
      and ``post_with_retry`` resubmits the whole event.

Audit relevance:
    posting_started / posting_completed / posting_rejected / posting_failed
    are logged under a LogContext carrying the correlation id,
    organization, actor and smart code, with duration_ms.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain import period_rules
from ledger_kernel.domain.balance import check_balance
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    BalanceCheck,
    FinanceEvent,
    PostingLine,
    ValidationError,
)
from ledger_kernel.domain.event_validator import validate_finance_event
from ledger_kernel.domain.line_generator import generate_lines
from ledger_kernel.exceptions import (
    LedgerKernelError,
    LineGenerationError,
    PostingRuleNotFoundError,
    RuleSetValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore
from ledger_kernel.services.journal_writer import JournalWriter, JournalWriteResult
from ledger_kernel.services.period_lock import PeriodLockRegistry, default_period_locks
from ledger_kernel.services.period_service import FiscalCalendarConfig, PeriodService
from ledger_kernel.services.rule_resolver import RuleResolver, RuleSetCache

logger = get_logger("services.posting_pipeline")


class PostingStatus(str, Enum):
    """Outcome of posting one finance event."""

    POSTED = "posted"
    ALREADY_POSTED = "already_posted"
    VALIDATION_FAILED = "validation_failed"
    PERIOD_REJECTED = "period_rejected"
    RULE_NOT_FOUND = "rule_not_found"
    GENERATION_FAILED = "generation_failed"
    UNBALANCED = "unbalanced"


@dataclass(frozen=True)
class PostingResult:
    """
    Result of PostingPipeline.post().

    ``to_payload`` renders the submission endpoint response.
    """

    status: PostingStatus
    transaction_id: UUID | None = None
    journal_entry_id: str | None = None
    posting_period: str | None = None
    lines: tuple[PostingLine, ...] = ()
    warnings: tuple[str, ...] = ()
    validation_errors: tuple[ValidationError, ...] = ()
    posting_errors: tuple[str, ...] = ()
    error_code: str | None = None
    message: str | None = None
    requires_approval: bool = False
    balance: BalanceCheck | None = None
    gl_lines: tuple[dict[str, Any], ...] = field(default=(), repr=False)

    @property
    def is_success(self) -> bool:
        return self.status in (PostingStatus.POSTED, PostingStatus.ALREADY_POSTED)

    def to_payload(self) -> dict[str, Any]:
        if self.is_success:
            return {
                "success": True,
                "status": self.status.value,
                "transaction_id": str(self.transaction_id),
                "journal_entry_id": self.journal_entry_id,
                "posting_period": self.posting_period,
                "gl_lines": list(self.gl_lines) or [line.to_payload() for line in self.lines],
                "warnings": list(self.warnings),
            }
        payload: dict[str, Any] = {
            "success": False,
            "status": self.status.value,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.validation_errors:
            payload["validation_errors"] = [error.message for error in self.validation_errors]
        else:
            payload["posting_errors"] = list(self.posting_errors)
        if self.posting_period:
            payload["posting_period"] = self.posting_period
        if self.requires_approval:
            payload["requires_approval"] = True
        return payload

    @classmethod
    def validation_failed(cls, errors: tuple[ValidationError, ...]) -> "PostingResult":
        return cls(
            status=PostingStatus.VALIDATION_FAILED,
            validation_errors=errors,
            error_code="EVENT_VALIDATION_FAILED",
            message=f"Finance event failed validation ({len(errors)} error(s))",
        )

    @classmethod
    def rejected(
        cls,
        status: PostingStatus,
        error_code: str,
        message: str,
        **kwargs: Any,
    ) -> "PostingResult":
        return cls(
            status=status,
            error_code=error_code,
            message=message,
            posting_errors=(message,),
            **kwargs,
        )


class PostingPipeline:
    """
    Posts finance events end to end.

    Contract:
        ``post`` returns a PostingResult for every business outcome and
        raises only PersistenceError (retryable).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        store: EntityStore | None = None,
        rule_cache: RuleSetCache | None = None,
        locks: PeriodLockRegistry | None = None,
        calendar: FiscalCalendarConfig | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._store = store or SqlEntityStore(session)
        self._locks = locks or default_period_locks
        self._auto_commit = auto_commit

        self._periods = PeriodService(
            session, self._clock, self._store, calendar, self._locks
        )
        self._resolver = RuleResolver(session, self._store, rule_cache)
        self._writer = JournalWriter(session, self._store)
        self._journal = JournalSelector(session)

    @property
    def periods(self) -> PeriodService:
        return self._periods

    @property
    def resolver(self) -> RuleResolver:
        return self._resolver

    def post(
        self,
        payload: Mapping[str, Any],
        actor_id: UUID,
        *,
        organization_id: UUID | str | None = None,
        elevated_approval: bool = False,
    ) -> PostingResult:
        """
        Post one UFE.

        Args:
            payload: The UFE as submitted (JSON-shaped mapping).
            actor_id: Acting user, recorded on every row written.
            organization_id: Organization of the caller; the payload must
                belong to it.
            elevated_approval: Allows posting into a CLOSING period.
        """
        validation = validate_finance_event(
            payload,
            expected_organization_id=organization_id,
            today=self._clock.today(),
        )
        if not validation.is_valid:
            return PostingResult.validation_failed(validation.errors)

        event = FinanceEvent.from_payload(payload)

        with LogContext.bind(
            correlation_id=event.correlation_id,
            organization_id=event.organization_id,
            actor_id=actor_id,
            smart_code=event.smart_code,
        ):
            t0 = time.monotonic()
            logger.info(
                "posting_started",
                extra={
                    "transaction_type": event.transaction_type,
                    "transaction_date": event.transaction_date.isoformat(),
                    "total_amount": event.total_amount,
                    "currency": event.transaction_currency_code,
                },
            )
            try:
                result = self._post_event(event, actor_id, elevated_approval)
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "posting_failed",
                    exc_info=True,
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            if result.is_success:
                logger.info(
                    "posting_completed",
                    extra={
                        "status": result.status.value,
                        "transaction_id": str(result.transaction_id),
                        "journal_entry_id": result.journal_entry_id,
                        "posting_period": result.posting_period,
                        "line_count": len(result.lines),
                        "duration_ms": duration_ms,
                    },
                )
            else:
                logger.warning(
                    "posting_rejected",
                    extra={
                        "status": result.status.value,
                        "error_code": result.error_code,
                        "reason": result.message,
                        "duration_ms": duration_ms,
                    },
                )
            return result

    def post_with_retry(
        self,
        payload: Mapping[str, Any],
        actor_id: UUID,
        attempts: int = 3,
        backoff_seconds: float = 0.05,
        **kwargs: Any,
    ) -> PostingResult:
        """
        ``post`` that resubmits the whole event on retryable errors.

        Safe because the correlation id makes a committed first attempt
        come back as ALREADY_POSTED.
        """
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        for attempt in range(1, attempts + 1):
            try:
                return self.post(payload, actor_id, **kwargs)
            except LedgerKernelError as exc:
                if not exc.retryable or attempt == attempts:
                    raise
                logger.warning(
                    "posting_retry",
                    extra={
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error_code": exc.code,
                    },
                )
                time.sleep(backoff_seconds * attempt)
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _post_event(
        self,
        event: FinanceEvent,
        actor_id: UUID,
        elevated_approval: bool,
    ) -> PostingResult:
        existing = self._writer.find_existing(event)
        if existing is not None:
            return self._already_posted(existing)

        period_code = period_rules.period_code_for(event.transaction_date)
        with self._locks.shared(event.organization_id, period_code):
            result = self._post_in_period(event, actor_id, elevated_approval)
            if self._auto_commit:
                if result.is_success:
                    self._session.commit()
                else:
                    self._session.rollback()
            return result

    def _post_in_period(
        self,
        event: FinanceEvent,
        actor_id: UUID,
        elevated_approval: bool,
    ) -> PostingResult:
        period = self._periods.resolve_period(
            event.organization_id,
            event.transaction_date,
            event.base_currency_code,
            actor_id,
            for_posting=True,
        )
        permission = self._periods.can_post(period, event.transaction_date, elevated_approval)
        if not permission.allowed:
            return PostingResult.rejected(
                PostingStatus.PERIOD_REJECTED,
                permission.error_code or "PERIOD_REJECTED",
                permission.error or "Posting not allowed in this period",
                posting_period=period.period_code,
                requires_approval=permission.requires_approval,
            )
        warnings = (permission.warning,) if permission.warning else ()

        try:
            rule = self._resolver.resolve(event.organization_id, event.smart_code)
            rule_set = self._resolver.get_rule_set(event.organization_id)
        except (PostingRuleNotFoundError, RuleSetValidationError) as exc:
            return PostingResult.rejected(
                PostingStatus.RULE_NOT_FOUND,
                exc.code,
                str(exc),
                posting_period=period.period_code,
            )

        account_names = {code: account.name for code, account in rule_set.accounts.items()}
        try:
            lines = generate_lines(event, rule, account_names)
        except LineGenerationError as exc:
            return PostingResult.rejected(
                PostingStatus.GENERATION_FAILED,
                exc.code,
                str(exc),
                posting_period=period.period_code,
            )

        balance = check_balance(lines)
        if not balance.is_balanced:
            return PostingResult.rejected(
                PostingStatus.UNBALANCED,
                "UNBALANCED_ENTRY",
                (
                    f"Entry does not balance: debits={balance.total_debits}, "
                    f"credits={balance.total_credits}, difference={balance.difference}"
                ),
                posting_period=period.period_code,
                lines=lines,
                balance=balance,
            )

        written = self._writer.write(event, lines, period, actor_id)
        if not written.is_new:
            return self._already_posted(written)

        return PostingResult(
            status=PostingStatus.POSTED,
            transaction_id=written.transaction_id,
            journal_entry_id=written.journal_entry_id,
            posting_period=written.period_code,
            lines=lines,
            warnings=warnings,
            requires_approval=permission.requires_approval,
            balance=balance,
        )

    def _already_posted(self, existing: JournalWriteResult) -> PostingResult:
        entry = self._journal.get_entry(existing.transaction_id)
        gl_lines = tuple(line.to_payload() for line in entry.lines) if entry else ()
        logger.info(
            "posting_idempotent",
            extra={
                "transaction_id": str(existing.transaction_id),
                "journal_entry_id": existing.journal_entry_id,
            },
        )
        return PostingResult(
            status=PostingStatus.ALREADY_POSTED,
            transaction_id=existing.transaction_id,
            journal_entry_id=existing.journal_entry_id,
            posting_period=existing.period_code,
            warnings=("Event already posted; returning the original entry",),
            gl_lines=gl_lines,
        )
