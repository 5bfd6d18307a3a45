"""
POS End-of-Day Service -- posts one business day from a POS daily summary.

State machine over one summary:

    Validate -> PostSales -> PostCommissions* -> PostFees? -> Finalize

Each step builds a Universal Finance Event and posts it through the
kernel PostingPipeline, which commits each event on its own.  Sales
posting is fatal to the day; commission and fee postings are independent
and their failures are reported as warnings.  Correlation ids are derived
from organization, business date and branch, so re-running a day returns
the original entries instead of posting twice.

Usage:
    service = PosEndOfDayService(session, clock=clock)
    report = service.process_day(summary_json, actor_id=actor_id)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import ValidationError
from ledger_kernel.exceptions import PersistenceError, SummarySchemaError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore
from ledger_kernel.services.period_lock import PeriodLockRegistry
from ledger_kernel.services.posting_pipeline import PostingPipeline, PostingResult
from ledger_kernel.services.rule_resolver import RuleSetCache
from ledger_modules.pos.config import PosConfig
from ledger_modules.pos.models import PosDailySummary, StaffCommission
from ledger_modules.pos.validation import computed_vat, validate_daily_summary

logger = get_logger("modules.pos.service")

SUMMARY_ENTITY_TYPE = "pos_daily_summary"
SUMMARY_FIELD = "summary"

SALES_TRANSACTION_TYPE = "pos_daily_summary"
COMMISSION_TRANSACTION_TYPE = "expense"
COMMISSION_CATEGORY = "commission"
FEE_TRANSACTION_TYPE = "bank_fee"


class PosDayStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    VALIDATION_FAILED = "validation_failed"
    SALES_FAILED = "sales_failed"


@dataclass(frozen=True)
class CommissionAccrual:
    staff_id: str
    staff_name: str
    amount: Decimal
    status: str
    transaction_id: UUID | None = None
    journal_entry_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "amount": str(self.amount),
            "status": self.status,
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "journal_entry_id": self.journal_entry_id,
        }


@dataclass(frozen=True)
class PosEndOfDayReport:
    """Aggregate outcome of one processed POS day."""

    status: PosDayStatus
    business_date: str | None = None
    branch_id: str | None = None
    journal_entry_ids: tuple[str, ...] = ()
    transaction_ids: tuple[UUID, ...] = ()
    totals: Mapping[str, str] = field(default_factory=dict)
    commission_accruals: tuple[CommissionAccrual, ...] = ()
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    validation_errors: tuple[ValidationError, ...] = ()
    sales_result: PostingResult | None = None
    fee_result: PostingResult | None = None
    summary_entity_id: UUID | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (PosDayStatus.COMPLETED, PosDayStatus.COMPLETED_WITH_WARNINGS)

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.is_success,
            "status": self.status.value,
            "business_date": self.business_date,
            "branch_id": self.branch_id,
            "journal_entry_ids": list(self.journal_entry_ids),
            "transaction_ids": [str(t) for t in self.transaction_ids],
            "totals": dict(self.totals),
            "commission_accruals": [c.to_payload() for c in self.commission_accruals],
            "warnings": list(self.warnings),
            "errors": list(self.errors) + [e.message for e in self.validation_errors],
            "summary_entity_id": str(self.summary_entity_id) if self.summary_entity_id else None,
        }


class PosEndOfDayService:
    """
    Orchestrates POS end-of-day posting through the kernel pipeline.

    Transaction boundary: every finance event commits independently inside
    PostingPipeline; the summary record is committed here at Finalize.
    """

    def __init__(
        self,
        session: Session,
        config: PosConfig | None = None,
        clock: Clock | None = None,
        store: EntityStore | None = None,
        rule_cache: RuleSetCache | None = None,
        locks: PeriodLockRegistry | None = None,
    ):
        self._session = session
        self._config = config or PosConfig()
        self._clock = clock or SystemClock()
        self._store = store or SqlEntityStore(session)
        self._pipeline = PostingPipeline(
            session,
            clock=self._clock,
            store=self._store,
            rule_cache=rule_cache,
            locks=locks,
            auto_commit=True,
        )

    @property
    def config(self) -> PosConfig:
        return self._config

    def process_day(
        self,
        summary: Mapping[str, Any] | PosDailySummary,
        actor_id: UUID,
    ) -> PosEndOfDayReport:
        t0 = time.monotonic()
        if not isinstance(summary, PosDailySummary):
            try:
                summary = PosDailySummary.from_dict(summary)
            except SummarySchemaError as exc:
                logger.warning("pos_summary_schema_invalid", extra={"errors": exc.errors})
                return PosEndOfDayReport(
                    status=PosDayStatus.VALIDATION_FAILED,
                    errors=tuple(exc.errors),
                )

        day_ref = self._day_ref(summary)
        with LogContext.bind(
            correlation_id=day_ref,
            organization_id=summary.organization_id,
            actor_id=actor_id,
        ):
            logger.info(
                "pos_eod_started",
                extra={
                    "business_date": summary.business_date.isoformat(),
                    "branch_id": summary.branch_id,
                    "staff_count": len(summary.staff),
                },
            )

            # Validate
            validation = validate_daily_summary(summary, self._config, self._clock.today())
            if not validation.is_valid:
                return PosEndOfDayReport(
                    status=PosDayStatus.VALIDATION_FAILED,
                    business_date=summary.business_date.isoformat(),
                    branch_id=summary.branch_id,
                    validation_errors=validation.errors,
                )

            # PostSales
            totals = self._sales_totals(summary)
            sales = self._pipeline.post(
                self._sales_event(summary, totals),
                actor_id,
                organization_id=summary.organization_id,
            )
            if not sales.is_success:
                logger.warning(
                    "pos_eod_sales_failed",
                    extra={"status": sales.status.value, "error_code": sales.error_code},
                )
                return PosEndOfDayReport(
                    status=PosDayStatus.SALES_FAILED,
                    business_date=summary.business_date.isoformat(),
                    branch_id=summary.branch_id,
                    totals=_stringify(totals),
                    errors=tuple(sales.posting_errors) + tuple(
                        e.message for e in sales.validation_errors
                    ),
                    sales_result=sales,
                )

            warnings: list[str] = list(sales.warnings)
            degraded = False
            journal_ids = [sales.journal_entry_id]
            txn_ids = [sales.transaction_id]

            # PostCommissions
            accruals = []
            for row in summary.staff:
                if row.commission <= 0:
                    continue
                accrual = self._post_commission(summary, row, actor_id)
                accruals.append(accrual)
                if accrual.transaction_id is not None:
                    journal_ids.append(accrual.journal_entry_id)
                    txn_ids.append(accrual.transaction_id)
                else:
                    degraded = True
                    warnings.append(
                        f"Commission accrual for {row.staff_name} failed: {accrual.status}"
                    )

            # PostFees
            fee_result = None
            fees = summary.payments.card.fees
            if fees > 0:
                fee_result, fee_warning = self._post_fees(summary, fees, actor_id)
                if fee_warning:
                    degraded = True
                    warnings.append(fee_warning)
                else:
                    journal_ids.append(fee_result.journal_entry_id)
                    txn_ids.append(fee_result.transaction_id)

            # Finalize
            report = PosEndOfDayReport(
                status=(
                    PosDayStatus.COMPLETED_WITH_WARNINGS if degraded else PosDayStatus.COMPLETED
                ),
                business_date=summary.business_date.isoformat(),
                branch_id=summary.branch_id,
                journal_entry_ids=tuple(journal_ids),
                transaction_ids=tuple(txn_ids),
                totals=_stringify(totals),
                commission_accruals=tuple(accruals),
                warnings=tuple(warnings),
                sales_result=sales,
                fee_result=fee_result,
            )
            entity_id = self._record_summary(summary, report, actor_id)

            logger.info(
                "pos_eod_completed",
                extra={
                    "status": report.status.value,
                    "journal_entry_count": len(journal_ids),
                    "warning_count": len(warnings),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return replace(report, summary_entity_id=entity_id)

    # ------------------------------------------------------------------
    # Event builders
    # ------------------------------------------------------------------

    def _day_ref(self, summary: PosDailySummary) -> str:
        return (
            f"pos-eod:{summary.organization_id}:"
            f"{summary.business_date.isoformat()}:{summary.branch_id}"
        )

    def _sales_totals(self, summary: PosDailySummary) -> dict[str, Decimal]:
        payments = summary.payments
        tips = payments.total_tips if self._config.accrue_tips else Decimal("0")
        cash = payments.cash.amount + (payments.cash.tips if self._config.accrue_tips else 0)
        card = payments.card.settlement + (payments.card.tips if self._config.accrue_tips else 0)
        vat = summary.total_vat(computed_vat(summary, self._config))
        return {
            "gross_sales": summary.gross_sales,
            "vat": vat,
            "net_sales": summary.gross_sales - vat,
            "tips": tips,
            "fees": Decimal("0"),
            "cash_collected": cash,
            "card_settlement": card,
            "other_tenders": payments.other_tenders,
            "discounts": summary.adjustments.discounts,
            "commission": summary.total_commission,
        }

    def _base_event(
        self,
        summary: PosDailySummary,
        transaction_type: str,
        smart_code: str,
        amount: Decimal,
        correlation_suffix: str,
        note: str,
    ) -> dict[str, Any]:
        return {
            "organization_id": summary.organization_id,
            "transaction_type": transaction_type,
            "smart_code": smart_code,
            "transaction_date": summary.business_date.isoformat(),
            "total_amount": str(amount),
            "transaction_currency_code": self._config.currency,
            "base_currency_code": self._config.currency,
            "business_context": {
                "branch_id": summary.branch_id,
                "note": note,
            },
            "metadata": {
                "correlation_id": f"{self._day_ref(summary)}:{correlation_suffix}",
                "ingest_source": "pos_eod",
                "original_ref": self._day_ref(summary),
            },
            "lines": [],
        }

    def _sales_event(
        self, summary: PosDailySummary, totals: Mapping[str, Decimal]
    ) -> dict[str, Any]:
        amount = totals["gross_sales"] + totals["tips"]
        event = self._base_event(
            summary,
            SALES_TRANSACTION_TYPE,
            self._config.sales_smart_code,
            amount,
            "sales",
            f"POS sales {summary.business_date.isoformat()} ({summary.branch_id})",
        )
        event["business_context"]["vat_inclusive"] = True
        event["totals"] = {
            name: str(value) for name, value in totals.items() if name != "net_sales"
        }
        return event

    def _post_commission(
        self, summary: PosDailySummary, row: StaffCommission, actor_id: UUID
    ) -> CommissionAccrual:
        event = self._base_event(
            summary,
            COMMISSION_TRANSACTION_TYPE,
            self._config.commission_smart_code,
            row.commission,
            f"commission:{row.staff_id}",
            f"Commission accrual {row.staff_name}",
        )
        event["business_context"].update(
            category=COMMISSION_CATEGORY,
            staff_id=row.staff_id,
            staff_name=row.staff_name,
            revenue=str(row.revenue),
            rate=str(row.rate),
        )
        if _is_uuid(row.staff_id):
            event["source_entity_id"] = row.staff_id

        try:
            result = self._pipeline.post(
                event, actor_id, organization_id=summary.organization_id
            )
        except PersistenceError as exc:
            logger.warning(
                "pos_commission_post_failed",
                extra={"staff_id": row.staff_id, "error_code": exc.code},
            )
            return CommissionAccrual(row.staff_id, row.staff_name, row.commission, exc.code)

        if not result.is_success:
            return CommissionAccrual(
                row.staff_id, row.staff_name, row.commission, result.status.value
            )
        return CommissionAccrual(
            staff_id=row.staff_id,
            staff_name=row.staff_name,
            amount=row.commission,
            status=result.status.value,
            transaction_id=result.transaction_id,
            journal_entry_id=result.journal_entry_id,
        )

    def _post_fees(
        self, summary: PosDailySummary, fees: Decimal, actor_id: UUID
    ) -> tuple[PostingResult | None, str | None]:
        event = self._base_event(
            summary,
            FEE_TRANSACTION_TYPE,
            self._config.fee_smart_code,
            fees,
            "fees",
            f"Card processing fees {summary.business_date.isoformat()}",
        )
        try:
            result = self._pipeline.post(
                event, actor_id, organization_id=summary.organization_id
            )
        except PersistenceError as exc:
            logger.warning("pos_fee_post_failed", extra={"error_code": exc.code})
            return None, f"Card fee posting failed: {exc.code}"
        if not result.is_success:
            return result, f"Card fee posting failed: {result.message}"
        return result, None

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _record_summary(
        self, summary: PosDailySummary, report: PosEndOfDayReport, actor_id: UUID
    ) -> UUID:
        """Persist the summary and its posting report as an audit record."""
        organization_id = UUID(summary.organization_id)
        code = f"{summary.business_date.isoformat()}:{summary.branch_id}"
        try:
            entity, _ = self._store.get_or_create_entity(
                organization_id,
                SUMMARY_ENTITY_TYPE,
                code,
                f"POS day {code}",
                self._config.summary_smart_code,
                actor_id,
            )
            current = self._store.get_dynamic_data(entity.id, SUMMARY_FIELD, for_update=True)
            self._store.set_dynamic_data(
                entity,
                SUMMARY_FIELD,
                {
                    "summary": _json_safe(summary.raw),
                    "report": report.to_payload(),
                    "processed_at": self._clock.now_utc().isoformat(),
                },
                self._config.summary_smart_code,
                expected_version=current.version if current is not None else 0,
                actor_id=actor_id,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("pos_summary_recorded", extra={"summary_entity_id": str(entity.id)})
        return entity.id


def _stringify(values: Mapping[str, Decimal]) -> dict[str, str]:
    return {name: str(value) for name, value in values.items()}


def _json_safe(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True
