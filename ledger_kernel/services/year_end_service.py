"""
YearEndService -- fiscal year-end close.

Responsibility:
    Zeroes every income-statement account (revenue and expense) of a
    fiscal year against the retained-earnings account in one closing
    journal dated December 31, then marks the year processed.

Architecture position:
    Kernel > Services -- imperative shell, kept separate from the period
    close workflow.  Balances come from JournalSelector; the closing entry
    goes through JournalWriter like any other journal.

Invariants enforced:
    - Runs at most once per fiscal year (``year_end_processed``); the
      closing entry's correlation id is derived from the year and the
      close version, so a concurrent second run cannot write twice.
    - The fiscal year must have ended and its December period must still
      be open, since the closing entry is posted into it.
    - The closing entry balances by construction: the retained-earnings
      line takes the net of all offsets.

Failure modes:
    - YearEndAlreadyProcessedError: the year was already closed.
    - FiscalYearError: year not ended, or no rule set to classify accounts.
    - ClosedPeriodError: December is already closed.
    - PersistenceError from the store.

Audit relevance:
    year_end_close_started / year_end_close_completed are logged with the
    fiscal year, close version, account count and net income.  The year
    state records the close version and the closing transaction id.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.types import round_money
from ledger_kernel.domain import period_rules
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import FinanceEvent, LineSide, PostingLine, PostingRuleSet
from ledger_kernel.domain.smart_code import YEAR_END_CLOSE_SMART_CODE, line_smart_code
from ledger_kernel.exceptions import (
    ClosedPeriodError,
    FiscalYearError,
    YearEndAlreadyProcessedError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.journal_selector import AccountBalanceRow, JournalSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore
from ledger_kernel.services.journal_writer import JournalWriter
from ledger_kernel.services.period_lock import PeriodLockRegistry, default_period_locks
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.rule_resolver import RuleResolver, RuleSetCache

logger = get_logger("services.year_end_service")

YEAR_END_CLOSE_VERSION = 1
YEAR_END_TRANSACTION_TYPE = "year_end_close"


@dataclass(frozen=True)
class YearEndResult:
    fiscal_year: int
    close_version: int
    transaction_id: UUID | None
    journal_entry_id: str | None
    net_income: Decimal
    lines: tuple[PostingLine, ...]


def closing_lines(
    balances: list[AccountBalanceRow],
    retained_earnings_account: str,
    retained_earnings_name: str | None = None,
) -> tuple[tuple[PostingLine, ...], Decimal]:
    """
    Lines that bring every balance to zero, plus the retained-earnings
    line.  Returns the lines and the year's net income.
    """
    lines: list[PostingLine] = []
    offset_debits = Decimal("0")
    offset_credits = Decimal("0")

    for row in balances:
        net = round_money(row.balance)
        if net == 0:
            continue
        # A debit balance (expense) is closed with a credit and vice versa
        side = LineSide.CREDIT if net > 0 else LineSide.DEBIT
        amount = abs(net)
        lines.append(
            PostingLine(
                line_number=len(lines) + 1,
                account_code=row.account_code,
                account_name=row.account_name,
                debit_amount=amount if side == LineSide.DEBIT else Decimal("0"),
                credit_amount=amount if side == LineSide.CREDIT else Decimal("0"),
                description=f"Year-end close of {row.account_code}",
                smart_code=line_smart_code(YEAR_END_CLOSE_SMART_CODE, side.value),
            )
        )
        if side == LineSide.DEBIT:
            offset_debits += amount
        else:
            offset_credits += amount

    if not lines:
        return (), Decimal("0")

    net_income = offset_debits - offset_credits
    if net_income != 0:
        side = LineSide.CREDIT if net_income > 0 else LineSide.DEBIT
        lines.append(
            PostingLine(
                line_number=len(lines) + 1,
                account_code=retained_earnings_account,
                account_name=retained_earnings_name,
                debit_amount=abs(net_income) if side == LineSide.DEBIT else Decimal("0"),
                credit_amount=net_income if side == LineSide.CREDIT else Decimal("0"),
                description="Net income transferred to retained earnings",
                smart_code=line_smart_code(YEAR_END_CLOSE_SMART_CODE, side.value),
            )
        )
    return tuple(lines), net_income


class YearEndService(BaseService):
    """Runs the year-end close for one organization and fiscal year."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        store: EntityStore | None = None,
        rule_cache: RuleSetCache | None = None,
        locks: PeriodLockRegistry | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._store = store or SqlEntityStore(session)
        self._locks = locks or default_period_locks
        self._auto_commit = auto_commit
        self._periods = PeriodService(session, self._clock, self._store, locks=self._locks)
        self._resolver = RuleResolver(session, self._store, rule_cache)
        self._writer = JournalWriter(session, self._store)
        self._journal = JournalSelector(session)

    def close_year(
        self, organization_id: UUID, fiscal_year: int, actor_id: UUID
    ) -> YearEndResult:
        with LogContext.bind(organization_id=organization_id, actor_id=actor_id):
            try:
                result = self._close_year(organization_id, fiscal_year, actor_id)
                if self._auto_commit:
                    self.session.commit()
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                raise

            logger.info(
                "year_end_close_completed",
                extra={
                    "fiscal_year": fiscal_year,
                    "close_version": YEAR_END_CLOSE_VERSION,
                    "transaction_id": str(result.transaction_id) if result.transaction_id else None,
                    "line_count": len(result.lines),
                    "net_income": result.net_income,
                },
            )
            return result

    def _close_year(
        self, organization_id: UUID, fiscal_year: int, actor_id: UUID
    ) -> YearEndResult:
        year_end = date(fiscal_year, 12, 31)
        if self._clock.today() <= year_end:
            raise FiscalYearError(fiscal_year, "fiscal year has not ended")

        year = self._periods.ensure_fiscal_year(organization_id, fiscal_year, actor_id=actor_id)
        if year.year_end_processed:
            raise YearEndAlreadyProcessedError(fiscal_year)

        rule_set = self._resolver.get_rule_set(organization_id)
        if rule_set is None:
            raise FiscalYearError(fiscal_year, "no posting rule set to classify accounts")

        logger.info(
            "year_end_close_started",
            extra={"fiscal_year": fiscal_year, "close_version": YEAR_END_CLOSE_VERSION},
        )

        december = period_rules.period_code_for(year_end)
        with self._locks.shared(organization_id, december):
            period = self._periods.resolve_period(
                organization_id, year_end, year.base_currency, actor_id, for_posting=True
            )
            if period.is_closed:
                raise ClosedPeriodError(period.period_code, year_end.isoformat())

            lines, net_income = self._closing_lines(organization_id, year.start_date, year_end, rule_set)
            if not lines:
                self._periods.mark_year_end_processed(
                    organization_id, fiscal_year, YEAR_END_CLOSE_VERSION, None, actor_id
                )
                return YearEndResult(
                    fiscal_year=fiscal_year,
                    close_version=YEAR_END_CLOSE_VERSION,
                    transaction_id=None,
                    journal_entry_id=None,
                    net_income=Decimal("0"),
                    lines=(),
                )

            event = FinanceEvent(
                organization_id=organization_id,
                transaction_type=YEAR_END_TRANSACTION_TYPE,
                smart_code=YEAR_END_CLOSE_SMART_CODE,
                transaction_date=year_end,
                total_amount=sum((line.debit_amount for line in lines), Decimal("0")),
                transaction_currency_code=year.base_currency,
                base_currency_code=year.base_currency,
                business_context={"note": f"Year-end close {fiscal_year}"},
                metadata={
                    "correlation_id": f"year-end:{fiscal_year}:v{YEAR_END_CLOSE_VERSION}",
                    "ingest_source": "year_end_close",
                },
            )
            written = self._writer.write(
                event,
                lines,
                period,
                actor_id,
                smart_code=YEAR_END_CLOSE_SMART_CODE,
                extra_metadata={
                    "fiscal_year": fiscal_year,
                    "close_version": YEAR_END_CLOSE_VERSION,
                    "net_income": str(net_income),
                },
            )
            if not written.is_new:
                raise YearEndAlreadyProcessedError(fiscal_year)

            self._periods.mark_year_end_processed(
                organization_id, fiscal_year, YEAR_END_CLOSE_VERSION,
                written.transaction_id, actor_id,
            )
            return YearEndResult(
                fiscal_year=fiscal_year,
                close_version=YEAR_END_CLOSE_VERSION,
                transaction_id=written.transaction_id,
                journal_entry_id=written.journal_entry_id,
                net_income=net_income,
                lines=lines,
            )

    def _closing_lines(
        self,
        organization_id: UUID,
        start: date,
        end: date,
        rule_set: PostingRuleSet,
    ) -> tuple[tuple[PostingLine, ...], Decimal]:
        accounts = [account.code for account in rule_set.income_statement_accounts()]
        if not accounts:
            return (), Decimal("0")
        balances = self._journal.account_balances(organization_id, start, end, accounts)
        return closing_lines(
            balances,
            rule_set.retained_earnings_account,
            rule_set.account_name(rule_set.retained_earnings_account),
        )
