"""
PeriodService -- the fiscal period gatekeeper.

Responsibility:
    Resolves the fiscal period for a posting date (creating period and
    fiscal year lazily), decides whether the date may receive postings,
    and runs the period close workflow (begin closing, cancel closing,
    close).

Architecture position:
    Kernel > Services -- imperative shell.  Period and year state live in
    the entity store as ``fiscal_period`` / ``fiscal_year`` entities with a
    JSON state attribute.  The posting decision itself is the pure state
    machine in ``domain.period_rules``.

Invariants enforced:
    - One period per (organization, YYYY-MM); concurrent lazy creation
      converges on a single row.
    - FUTURE / CURRENT / OPEN are re-derived from the injected clock on
      every read and the transition persisted.  CLOSING / CLOSED are only
      set here, explicitly.  CLOSED is terminal.
    - Close is serialized against postings for the same period: the
      exclusive PeriodLockRegistry lock plus FOR UPDATE on the state row,
      with every state write guarded by the optimistic version.

Failure modes:
    - PeriodNotFoundError / PeriodAlreadyClosedError from close operations.
    - PeriodClosingError from begin_closing on a period already closing.
    - PeriodLockTimeoutError (retryable) when the lock is not acquired.
    - PersistenceError from the store.

Audit relevance:
    period_created, period_status_changed, period_closing_started,
    period_closing_cancelled and period_closed are logged with the
    organization, period code and actor.  closed_at / closed_by_id are
    kept in the period state.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain import period_rules
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    FiscalPeriodInfo,
    FiscalYearInfo,
    FiscalYearStatus,
    PeriodStatus,
    PostingPermission,
)
from ledger_kernel.domain.smart_code import (
    FISCAL_PERIOD_SMART_CODE,
    FISCAL_YEAR_SMART_CODE,
)
from ledger_kernel.exceptions import (
    FiscalYearError,
    OptimisticLockError,
    PeriodAlreadyClosedError,
    PeriodClosingError,
    PeriodNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.entity import CoreDynamicData, CoreEntity
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore
from ledger_kernel.services.period_lock import PeriodLockRegistry, default_period_locks

logger = get_logger("services.period_service")

PERIOD_ENTITY_TYPE = "fiscal_period"
YEAR_ENTITY_TYPE = "fiscal_year"
PERIOD_STATE_FIELD = "period_state"
YEAR_STATE_FIELD = "year_state"


@dataclass
class FiscalCalendarConfig:
    """Organization defaults applied when a fiscal year is created lazily."""

    base_currency: str = "AED"
    retained_earnings_account: str = "3200"
    period_count: int = period_rules.PERIODS_PER_YEAR

    def __post_init__(self) -> None:
        if len(self.base_currency) != 3:
            raise ValueError("base_currency must be a 3-letter currency code")
        if not self.retained_earnings_account:
            raise ValueError("retained_earnings_account is required")
        if self.period_count != period_rules.PERIODS_PER_YEAR:
            raise ValueError("only the 12-period calendar year layout is supported")


class PeriodService(BaseService):
    """
    Fiscal period gatekeeper.

    Contract:
        ``resolve_period`` always returns a period for a valid date;
        ``can_post`` never raises, it returns a PostingPermission.

    Non-goals:
        - Does NOT compute GL effects of closing; year-end reallocation is
          YearEndService.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        store: EntityStore | None = None,
        calendar: FiscalCalendarConfig | None = None,
        locks: PeriodLockRegistry | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._store = store or SqlEntityStore(session)
        self._calendar = calendar or FiscalCalendarConfig()
        self._locks = locks or default_period_locks

    @property
    def locks(self) -> PeriodLockRegistry:
        return self._locks

    def today(self) -> date:
        return self._clock.today()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_period(
        self,
        organization_id: UUID,
        txn_date: date,
        base_currency: str | None = None,
        actor_id: UUID | None = None,
        *,
        for_posting: bool = False,
    ) -> FiscalPeriodInfo:
        """
        Return the period containing ``txn_date``, creating it if needed.

        With ``for_posting`` the state row is read FOR SHARE so that a
        concurrent close in another process waits for this transaction.
        """
        code = period_rules.period_code_for(txn_date)
        entity, _ = self._store.get_or_create_entity(
            organization_id,
            PERIOD_ENTITY_TYPE,
            code,
            f"Fiscal period {code}",
            FISCAL_PERIOD_SMART_CODE,
            actor_id,
        )
        row = self._store.get_dynamic_data(entity.id, PERIOD_STATE_FIELD, for_share=for_posting)

        if row is None:
            row = self._create_period_state(entity, txn_date, actor_id)
            self.ensure_fiscal_year(organization_id, txn_date.year, base_currency, actor_id)

        return self._refresh(entity, row, actor_id)

    def get_period(self, organization_id: UUID, period_code: str) -> FiscalPeriodInfo | None:
        """Existing period by code, with a refreshed status; None if absent."""
        entity = self._store.get_entity(organization_id, PERIOD_ENTITY_TYPE, period_code)
        if entity is None:
            return None
        row = self._store.get_dynamic_data(entity.id, PERIOD_STATE_FIELD)
        if row is None:
            return None
        return self._refresh(entity, row, None)

    def list_periods(self, organization_id: UUID) -> list[FiscalPeriodInfo]:
        """All known periods of an organization, oldest first."""
        periods = []
        for entity in self._store.find_entities(organization_id, PERIOD_ENTITY_TYPE):
            row = self._store.get_dynamic_data(entity.id, PERIOD_STATE_FIELD)
            if row is not None:
                periods.append(self._refresh(entity, row, None))
        return periods

    def period_status(self, organization_id: UUID) -> dict[str, Any]:
        """Period status listing: current period, open periods, closed history."""
        periods = self.list_periods(organization_id)
        current = next((p for p in periods if p.status == PeriodStatus.CURRENT), None)
        return {
            "current_period": current.to_payload() if current else None,
            "open_periods": [
                p.to_payload() for p in periods
                if p.status in (PeriodStatus.OPEN, PeriodStatus.CURRENT, PeriodStatus.CLOSING)
            ],
            "future_periods": [p.to_payload() for p in periods if p.status == PeriodStatus.FUTURE],
            "closed_periods": [p.to_payload() for p in reversed(periods) if p.is_closed],
        }

    # ------------------------------------------------------------------
    # Posting decision
    # ------------------------------------------------------------------

    def can_post(
        self,
        period: FiscalPeriodInfo,
        txn_date: date,
        elevated_approval: bool = False,
    ) -> PostingPermission:
        permission = period_rules.can_post(
            period, txn_date, self._clock.today(), elevated_approval
        )
        if not permission.allowed:
            logger.info(
                "period_posting_rejected",
                extra={
                    "period_code": period.period_code,
                    "status": period.status.value,
                    "error_code": permission.error_code,
                },
            )
        return permission

    # ------------------------------------------------------------------
    # Close workflow
    # ------------------------------------------------------------------

    def close_period(
        self, organization_id: UUID, period_code: str, actor_id: UUID
    ) -> FiscalPeriodInfo:
        """
        Close a fiscal period.

        Accepts any status except CLOSED.  Waits for in-flight postings to
        the period (exclusive lock) and re-reads the state under FOR UPDATE.

        Raises:
            PeriodNotFoundError: If the period doesn't exist.
            PeriodAlreadyClosedError: If it is already closed.
        """
        with self._locks.exclusive(organization_id, period_code):
            entity, row = self._get_state_for_update(organization_id, period_code)
            state = dict(row.field_value_json)
            if state["status"] == PeriodStatus.CLOSED.value:
                raise PeriodAlreadyClosedError(period_code)

            previous = state["status"]
            state.update(
                status=PeriodStatus.CLOSED.value,
                closed_at=self._clock.now_utc().isoformat(),
                closed_by_id=str(actor_id),
            )
            row = self._store.set_dynamic_data(
                entity,
                PERIOD_STATE_FIELD,
                state,
                FISCAL_PERIOD_SMART_CODE,
                expected_version=row.version,
                actor_id=actor_id,
            )

        logger.info(
            "period_closed",
            extra={
                "period_code": period_code,
                "previous_status": previous,
                "closed_by_id": str(actor_id),
            },
        )
        return self._to_info(entity, row)

    def begin_closing(
        self, organization_id: UUID, period_code: str, actor_id: UUID
    ) -> FiscalPeriodInfo:
        """
        Move a period into CLOSING.  Postings then need elevated approval.

        Raises:
            PeriodNotFoundError, PeriodAlreadyClosedError, PeriodClosingError
        """
        with self._locks.exclusive(organization_id, period_code):
            entity, row = self._get_state_for_update(organization_id, period_code)
            state = dict(row.field_value_json)
            if state["status"] == PeriodStatus.CLOSED.value:
                raise PeriodAlreadyClosedError(period_code)
            if state["status"] == PeriodStatus.CLOSING.value:
                raise PeriodClosingError(period_code)

            state.update(
                status=PeriodStatus.CLOSING.value,
                closing_started_at=self._clock.now_utc().isoformat(),
                closing_started_by_id=str(actor_id),
            )
            row = self._store.set_dynamic_data(
                entity,
                PERIOD_STATE_FIELD,
                state,
                FISCAL_PERIOD_SMART_CODE,
                expected_version=row.version,
                actor_id=actor_id,
            )

        logger.info(
            "period_closing_started",
            extra={"period_code": period_code, "actor_id": str(actor_id)},
        )
        return self._to_info(entity, row)

    def cancel_closing(
        self, organization_id: UUID, period_code: str, actor_id: UUID
    ) -> FiscalPeriodInfo:
        """Leave CLOSING; the period returns to its time-derived status."""
        with self._locks.exclusive(organization_id, period_code):
            entity, row = self._get_state_for_update(organization_id, period_code)
            state = dict(row.field_value_json)
            if state["status"] == PeriodStatus.CLOSED.value:
                raise PeriodAlreadyClosedError(period_code)
            if state["status"] != PeriodStatus.CLOSING.value:
                return self._refresh(entity, row, actor_id)

            start = date.fromisoformat(state["start_date"])
            end = date.fromisoformat(state["end_date"])
            state.update(
                status=period_rules.derive_status(start, end, self._clock.today()).value,
                closing_started_at=None,
                closing_started_by_id=None,
            )
            row = self._store.set_dynamic_data(
                entity,
                PERIOD_STATE_FIELD,
                state,
                FISCAL_PERIOD_SMART_CODE,
                expected_version=row.version,
                actor_id=actor_id,
            )

        logger.info(
            "period_closing_cancelled",
            extra={"period_code": period_code, "actor_id": str(actor_id)},
        )
        return self._to_info(entity, row)

    # ------------------------------------------------------------------
    # Fiscal years
    # ------------------------------------------------------------------

    def ensure_fiscal_year(
        self,
        organization_id: UUID,
        fiscal_year: int,
        base_currency: str | None = None,
        actor_id: UUID | None = None,
    ) -> FiscalYearInfo:
        """Get or lazily create the calendar fiscal year ``fiscal_year``."""
        entity, _ = self._store.get_or_create_entity(
            organization_id,
            YEAR_ENTITY_TYPE,
            f"{fiscal_year:04d}",
            f"Fiscal year {fiscal_year}",
            FISCAL_YEAR_SMART_CODE,
            actor_id,
        )
        row = self._store.get_dynamic_data(entity.id, YEAR_STATE_FIELD)
        if row is not None:
            return self._to_year_info(entity, row)

        start, end = date(fiscal_year, 1, 1), date(fiscal_year, 12, 31)
        state = {
            "fiscal_year": fiscal_year,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "status": period_rules.derive_year_status(fiscal_year, self._clock.today()).value,
            "period_count": self._calendar.period_count,
            "base_currency": (base_currency or self._calendar.base_currency).upper(),
            "retained_earnings_account": self._calendar.retained_earnings_account,
            "year_end_processed": False,
            "year_end_close_version": None,
            "year_end_transaction_id": None,
        }
        try:
            row = self._store.set_dynamic_data(
                entity, YEAR_STATE_FIELD, state, FISCAL_YEAR_SMART_CODE,
                expected_version=0, actor_id=actor_id,
            )
        except OptimisticLockError:
            row = self._store.get_dynamic_data(entity.id, YEAR_STATE_FIELD)
            return self._to_year_info(entity, row)

        logger.info(
            "fiscal_year_created",
            extra={
                "fiscal_year": fiscal_year,
                "status": state["status"],
                "base_currency": state["base_currency"],
            },
        )
        return self._to_year_info(entity, row)

    def get_fiscal_year(self, organization_id: UUID, fiscal_year: int) -> FiscalYearInfo | None:
        entity = self._store.get_entity(organization_id, YEAR_ENTITY_TYPE, f"{fiscal_year:04d}")
        if entity is None:
            return None
        row = self._store.get_dynamic_data(entity.id, YEAR_STATE_FIELD)
        return self._to_year_info(entity, row) if row is not None else None

    def mark_year_end_processed(
        self,
        organization_id: UUID,
        fiscal_year: int,
        close_version: int,
        transaction_id: UUID | None,
        actor_id: UUID,
    ) -> FiscalYearInfo:
        """Record a completed year-end close; the year becomes CLOSED."""
        entity = self._store.get_entity(organization_id, YEAR_ENTITY_TYPE, f"{fiscal_year:04d}")
        if entity is None:
            raise FiscalYearError(fiscal_year, "fiscal year does not exist")
        row = self._store.get_dynamic_data(entity.id, YEAR_STATE_FIELD, for_update=True)
        if row is None:
            raise FiscalYearError(fiscal_year, "fiscal year has no state")
        state = dict(row.field_value_json)
        state.update(
            status=FiscalYearStatus.CLOSED.value,
            year_end_processed=True,
            year_end_close_version=close_version,
            year_end_transaction_id=str(transaction_id) if transaction_id else None,
            year_end_processed_at=self._clock.now_utc().isoformat(),
            year_end_processed_by_id=str(actor_id),
        )
        row = self._store.set_dynamic_data(
            entity, YEAR_STATE_FIELD, state, FISCAL_YEAR_SMART_CODE,
            expected_version=row.version, actor_id=actor_id,
        )
        logger.info(
            "fiscal_year_closed",
            extra={"fiscal_year": fiscal_year, "close_version": close_version},
        )
        return self._to_year_info(entity, row)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create_period_state(
        self, entity: CoreEntity, txn_date: date, actor_id: UUID | None
    ) -> CoreDynamicData:
        year, month = txn_date.year, txn_date.month
        start, end = period_rules.period_bounds(year, month)
        status = period_rules.derive_status(start, end, self._clock.today())
        state = {
            "fiscal_year": year,
            "period_number": month,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "status": status.value,
            "is_year_end": month == period_rules.YEAR_END_MONTH,
            "closing_started_at": None,
            "closed_at": None,
            "closed_by_id": None,
        }
        try:
            row = self._store.set_dynamic_data(
                entity, PERIOD_STATE_FIELD, state, FISCAL_PERIOD_SMART_CODE,
                expected_version=0, actor_id=actor_id,
            )
        except OptimisticLockError:
            # A concurrent resolve created it first
            return self._store.get_dynamic_data(entity.id, PERIOD_STATE_FIELD)

        logger.info(
            "period_created",
            extra={
                "period_code": entity.entity_code,
                "status": status.value,
                "is_year_end": state["is_year_end"],
            },
        )
        return row

    def _refresh(
        self, entity: CoreEntity, row: CoreDynamicData, actor_id: UUID | None
    ) -> FiscalPeriodInfo:
        """Persist a time-driven status transition if the clock moved on."""
        state = row.field_value_json
        stored = PeriodStatus(state["status"])
        start = date.fromisoformat(state["start_date"])
        end = date.fromisoformat(state["end_date"])
        fresh = period_rules.refreshed_status(stored, start, end, self._clock.today())
        if fresh == stored:
            return self._to_info(entity, row)

        try:
            row = self._store.set_dynamic_data(
                entity,
                PERIOD_STATE_FIELD,
                {**state, "status": fresh.value},
                FISCAL_PERIOD_SMART_CODE,
                expected_version=row.version,
                actor_id=actor_id,
            )
        except OptimisticLockError:
            # Someone else changed it; their write wins
            row = self._store.get_dynamic_data(entity.id, PERIOD_STATE_FIELD)
            return self._to_info(entity, row)

        logger.info(
            "period_status_changed",
            extra={
                "period_code": entity.entity_code,
                "from_status": stored.value,
                "to_status": fresh.value,
            },
        )
        return self._to_info(entity, row)

    def _get_state_for_update(
        self, organization_id: UUID, period_code: str
    ) -> tuple[CoreEntity, CoreDynamicData]:
        entity = self._store.get_entity(organization_id, PERIOD_ENTITY_TYPE, period_code)
        if entity is None:
            raise PeriodNotFoundError(period_code)
        row = self._store.get_dynamic_data(entity.id, PERIOD_STATE_FIELD, for_update=True)
        if row is None:
            raise PeriodNotFoundError(period_code)
        return entity, row

    @staticmethod
    def _to_info(entity: CoreEntity, row: CoreDynamicData) -> FiscalPeriodInfo:
        state = row.field_value_json
        return FiscalPeriodInfo(
            id=entity.id,
            organization_id=entity.organization_id,
            period_code=entity.entity_code,
            fiscal_year=int(state["fiscal_year"]),
            period_number=int(state["period_number"]),
            start_date=date.fromisoformat(state["start_date"]),
            end_date=date.fromisoformat(state["end_date"]),
            status=PeriodStatus(state["status"]),
            is_year_end=bool(state.get("is_year_end")),
            version=row.version,
            closing_started_at=_opt_datetime(state.get("closing_started_at")),
            closed_at=_opt_datetime(state.get("closed_at")),
            closed_by_id=UUID(state["closed_by_id"]) if state.get("closed_by_id") else None,
        )

    def _to_year_info(self, entity: CoreEntity, row: CoreDynamicData) -> FiscalYearInfo:
        state = row.field_value_json
        status = FiscalYearStatus(state["status"])
        if status == FiscalYearStatus.FUTURE:
            status = period_rules.derive_year_status(int(state["fiscal_year"]), self._clock.today())
        txn_id = state.get("year_end_transaction_id")
        return FiscalYearInfo(
            id=entity.id,
            organization_id=entity.organization_id,
            fiscal_year=int(state["fiscal_year"]),
            start_date=date.fromisoformat(state["start_date"]),
            end_date=date.fromisoformat(state["end_date"]),
            status=status,
            base_currency=state["base_currency"],
            retained_earnings_account=state["retained_earnings_account"],
            period_count=int(state.get("period_count", period_rules.PERIODS_PER_YEAR)),
            year_end_processed=bool(state.get("year_end_processed")),
            year_end_close_version=state.get("year_end_close_version"),
            year_end_transaction_id=UUID(txn_id) if txn_id else None,
            version=row.version,
        )


def _opt_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
