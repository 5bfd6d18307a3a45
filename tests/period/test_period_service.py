"""
PeriodService: lazy period/year creation, status refresh, close workflow.

Verifies:
- resolve_period creates the month and its fiscal year on first use
- Time-driven statuses are refreshed as the clock moves
- close / begin_closing / cancel_closing transitions and their errors
- period_status listing
- can_post delegates to the state machine with the injected clock
"""

from datetime import date
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import FiscalYearStatus, PeriodStatus
from ledger_kernel.exceptions import (
    FiscalYearError,
    PeriodAlreadyClosedError,
    PeriodClosingError,
    PeriodNotFoundError,
)
from ledger_kernel.services.period_service import FiscalCalendarConfig


class TestResolvePeriod:
    def test_creates_month_and_year(self, period_service, org_id, test_actor_id):
        period = period_service.resolve_period(org_id, date(2024, 6, 10), actor_id=test_actor_id)

        assert period.period_code == "2024-06"
        assert period.status == PeriodStatus.CURRENT
        assert (period.start_date, period.end_date) == (date(2024, 6, 1), date(2024, 6, 30))
        assert not period.is_year_end

        year = period_service.get_fiscal_year(org_id, 2024)
        assert year is not None
        assert year.status == FiscalYearStatus.CURRENT
        assert year.base_currency == "AED"
        assert year.retained_earnings_account == "3200"
        assert not year.year_end_processed

    def test_resolve_is_stable(self, period_service, org_id):
        first = period_service.resolve_period(org_id, date(2024, 6, 1))
        second = period_service.resolve_period(org_id, date(2024, 6, 30))
        assert first.id == second.id

    def test_december_is_year_end(self, period_service, org_id):
        assert period_service.resolve_period(org_id, date(2023, 12, 31)).is_year_end

    def test_base_currency_recorded_on_year(self, period_service, org_id):
        period_service.resolve_period(org_id, date(2024, 2, 1), base_currency="usd")
        assert period_service.get_fiscal_year(org_id, 2024).base_currency == "USD"

    def test_organizations_are_isolated(self, period_service, org_id):
        period_service.resolve_period(org_id, date(2024, 6, 1))
        assert period_service.get_period(uuid4(), "2024-06") is None

    def test_status_refreshes_when_clock_moves(
        self, period_service, org_id, deterministic_clock, captured_logs
    ):
        period_service.resolve_period(org_id, date(2024, 6, 10))
        deterministic_clock.set_date(date(2024, 7, 2))

        period = period_service.get_period(org_id, "2024-06")

        assert period.status == PeriodStatus.OPEN
        assert any(
            r["message"] == "period_status_changed" and r["to_status"] == "open"
            for r in captured_logs()
        )


class TestCloseWorkflow:
    def test_close_period(self, period_service, org_id, test_actor_id, session):
        period_service.resolve_period(org_id, date(2024, 5, 10))

        closed = period_service.close_period(org_id, "2024-05", test_actor_id)
        session.commit()

        assert closed.status == PeriodStatus.CLOSED
        assert closed.closed_by_id == test_actor_id
        assert closed.closed_at is not None
        assert period_service.get_period(org_id, "2024-05").is_closed

    def test_closed_is_terminal(self, period_service, org_id, test_actor_id):
        period_service.resolve_period(org_id, date(2024, 5, 10))
        period_service.close_period(org_id, "2024-05", test_actor_id)

        with pytest.raises(PeriodAlreadyClosedError):
            period_service.close_period(org_id, "2024-05", test_actor_id)
        with pytest.raises(PeriodAlreadyClosedError):
            period_service.begin_closing(org_id, "2024-05", test_actor_id)

    def test_closed_stays_closed_as_time_passes(
        self, period_service, org_id, test_actor_id, deterministic_clock
    ):
        period_service.resolve_period(org_id, date(2024, 6, 10))
        period_service.close_period(org_id, "2024-06", test_actor_id)
        deterministic_clock.set_date(date(2024, 9, 1))

        assert period_service.get_period(org_id, "2024-06").status == PeriodStatus.CLOSED

    def test_unknown_period(self, period_service, org_id, test_actor_id):
        with pytest.raises(PeriodNotFoundError):
            period_service.close_period(org_id, "2024-01", test_actor_id)

    def test_begin_and_cancel_closing(self, period_service, org_id, test_actor_id):
        period_service.resolve_period(org_id, date(2024, 5, 10))

        closing = period_service.begin_closing(org_id, "2024-05", test_actor_id)
        assert closing.status == PeriodStatus.CLOSING
        assert closing.closing_started_at is not None

        with pytest.raises(PeriodClosingError):
            period_service.begin_closing(org_id, "2024-05", test_actor_id)

        reopened = period_service.cancel_closing(org_id, "2024-05", test_actor_id)
        assert reopened.status == PeriodStatus.OPEN
        assert reopened.closing_started_at is None

    def test_cancel_when_not_closing_is_noop(self, period_service, org_id, test_actor_id):
        period_service.resolve_period(org_id, date(2024, 6, 10))
        assert period_service.cancel_closing(org_id, "2024-06", test_actor_id).status == PeriodStatus.CURRENT

    def test_closing_then_close(self, period_service, org_id, test_actor_id):
        period_service.resolve_period(org_id, date(2024, 5, 10))
        period_service.begin_closing(org_id, "2024-05", test_actor_id)
        assert period_service.close_period(org_id, "2024-05", test_actor_id).is_closed

    def test_close_logs(self, period_service, org_id, test_actor_id, captured_logs):
        period_service.resolve_period(org_id, date(2024, 5, 10))
        period_service.close_period(org_id, "2024-05", test_actor_id)

        closed = [r for r in captured_logs() if r["message"] == "period_closed"]
        assert len(closed) == 1
        assert closed[0]["period_code"] == "2024-05"
        assert closed[0]["previous_status"] == "open"


class TestCanPost:
    def test_closing_period_needs_approval(self, period_service, org_id, test_actor_id):
        period_service.resolve_period(org_id, date(2024, 6, 10))
        period = period_service.begin_closing(org_id, "2024-06", test_actor_id)

        denied = period_service.can_post(period, date(2024, 6, 10))
        approved = period_service.can_post(period, date(2024, 6, 10), elevated_approval=True)

        assert not denied.allowed and denied.requires_approval
        assert approved.allowed and approved.warning

    def test_rejection_is_logged(self, period_service, org_id, test_actor_id, captured_logs):
        period = period_service.resolve_period(org_id, date(2024, 8, 3))
        assert not period_service.can_post(period, date(2024, 8, 3)).allowed

        rejected = [r for r in captured_logs() if r["message"] == "period_posting_rejected"]
        assert rejected[0]["error_code"] == "FUTURE_PERIOD"


class TestPeriodStatus:
    def test_listing(self, period_service, org_id, test_actor_id):
        for day in (date(2024, 4, 2), date(2024, 5, 2), date(2024, 6, 2), date(2024, 7, 2)):
            period_service.resolve_period(org_id, day)
        period_service.close_period(org_id, "2024-04", test_actor_id)

        status = period_service.period_status(org_id)

        assert status["current_period"]["period_code"] == "2024-06"
        assert [p["period_code"] for p in status["open_periods"]] == ["2024-05", "2024-06"]
        assert [p["period_code"] for p in status["future_periods"]] == ["2024-07"]
        assert [p["period_code"] for p in status["closed_periods"]] == ["2024-04"]

    def test_empty_organization(self, period_service, org_id):
        status = period_service.period_status(org_id)
        assert status["current_period"] is None
        assert status["open_periods"] == []


class TestFiscalYear:
    def test_future_year(self, period_service, org_id):
        assert period_service.ensure_fiscal_year(org_id, 2025).status == FiscalYearStatus.FUTURE

    def test_ensure_is_idempotent(self, period_service, org_id):
        first = period_service.ensure_fiscal_year(org_id, 2024)
        assert period_service.ensure_fiscal_year(org_id, 2024).id == first.id

    def test_mark_processed(self, period_service, org_id, test_actor_id):
        period_service.ensure_fiscal_year(org_id, 2023)

        year = period_service.mark_year_end_processed(org_id, 2023, 1, None, test_actor_id)

        assert year.status == FiscalYearStatus.CLOSED
        assert year.year_end_processed
        assert year.year_end_close_version == 1

    def test_mark_missing_year(self, period_service, org_id, test_actor_id):
        with pytest.raises(FiscalYearError):
            period_service.mark_year_end_processed(org_id, 2020, 1, None, test_actor_id)


class TestCalendarConfig:
    def test_defaults(self):
        config = FiscalCalendarConfig()
        assert (config.base_currency, config.retained_earnings_account, config.period_count) == (
            "AED", "3200", 12,
        )

    @pytest.mark.parametrize(
        "kwargs",
        [{"base_currency": "DIRHAM"}, {"retained_earnings_account": ""}, {"period_count": 13}],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            FiscalCalendarConfig(**kwargs)
