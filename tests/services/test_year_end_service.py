"""
Year-end close: every revenue and expense account of the fiscal year is
zeroed against retained earnings in one entry dated December 31.

The clock starts at 2024-06-15 so 2024 activity can be posted, then moves
to 2025-01-15 for the close.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import FiscalYearStatus
from ledger_kernel.exceptions import (
    ClosedPeriodError,
    FiscalYearError,
    YearEndAlreadyProcessedError,
)
from ledger_kernel.selectors.journal_selector import AccountBalanceRow
from ledger_kernel.services.year_end_service import YearEndService, closing_lines
from tests.conftest import RENT, SERVICE_REVENUE, make_ufe

AFTER_YEAR_END = date(2025, 1, 15)


@pytest.fixture
def year_2024_activity(pipeline, org_id, test_actor_id):
    """Revenue 525 (500 net), salary 15000, rent 1000 + 50 VAT."""
    for event in (
        make_ufe(org_id, smart_code=SERVICE_REVENUE, transaction_type="revenue", amount="525"),
        make_ufe(org_id, amount="15000"),
        make_ufe(org_id, smart_code=RENT, amount="1000"),
    ):
        assert pipeline.post(event, test_actor_id).is_success


class TestClosingLines:
    def test_profit(self):
        balances = [
            AccountBalanceRow("4100", "Revenue", Decimal("0"), Decimal("800"), 2),
            AccountBalanceRow("5100", "Salaries", Decimal("300"), Decimal("0"), 1),
        ]

        lines, net_income = closing_lines(balances, "3200", "Retained Earnings")

        assert net_income == Decimal("500.00")
        assert [(l.account_code, l.debit_amount, l.credit_amount) for l in lines] == [
            ("4100", Decimal("800.00"), Decimal("0")),
            ("5100", Decimal("0"), Decimal("300.00")),
            ("3200", Decimal("0"), Decimal("500.00")),
        ]
        assert lines[-1].account_name == "Retained Earnings"

    def test_zero_balances_skipped(self):
        balances = [AccountBalanceRow("4100", None, Decimal("10"), Decimal("10"), 2)]
        assert closing_lines(balances, "3200") == ((), Decimal("0"))

    def test_break_even_has_no_retained_earnings_line(self):
        balances = [
            AccountBalanceRow("4100", None, Decimal("0"), Decimal("100"), 1),
            AccountBalanceRow("5100", None, Decimal("100"), Decimal("0"), 1),
        ]
        lines, net_income = closing_lines(balances, "3200")
        assert net_income == 0
        assert [l.account_code for l in lines] == ["4100", "5100"]


class TestCloseYear:
    def test_closes_income_statement(
        self, year_end_service, year_2024_activity, deterministic_clock,
        org_id, test_actor_id, journal_selector,
    ):
        deterministic_clock.set_date(AFTER_YEAR_END)

        result = year_end_service.close_year(org_id, 2024, test_actor_id)

        assert result.net_income == Decimal("-15500.00")
        assert [(l.account_code, l.debit_amount, l.credit_amount) for l in result.lines] == [
            ("4100", Decimal("500.00"), Decimal("0")),
            ("5100", Decimal("0"), Decimal("15000.00")),
            ("5300", Decimal("0"), Decimal("1000.00")),
            ("3200", Decimal("15500.00"), Decimal("0")),
        ]

        entry = journal_selector.get_entry(result.transaction_id)
        assert entry.transaction_date == date(2024, 12, 31)
        assert entry.fiscal_period_code == "2024-12"
        assert entry.smart_code == "HERA.FIN.GL.YEAR.END.CLOSE.v1"
        assert entry.idempotency_key == f"{org_id}:year-end:2024:v1"
        assert entry.is_balanced

        balances = journal_selector.account_balances(
            org_id, date(2024, 1, 1), date(2024, 12, 31), ["4100", "5100", "5300"]
        )
        assert all(row.balance == 0 for row in balances)

    def test_balance_sheet_accounts_untouched(
        self, year_end_service, year_2024_activity, deterministic_clock,
        org_id, test_actor_id, journal_selector,
    ):
        deterministic_clock.set_date(AFTER_YEAR_END)
        year_end_service.close_year(org_id, 2024, test_actor_id)

        vat = journal_selector.account_balances(org_id, account_codes=["2210", "1410"])
        assert {row.account_code: row.balance for row in vat} == {
            "1410": Decimal("50"),
            "2210": Decimal("-25"),
        }

    def test_marks_year_processed(
        self, year_end_service, period_service, year_2024_activity, deterministic_clock,
        org_id, test_actor_id,
    ):
        deterministic_clock.set_date(AFTER_YEAR_END)
        result = year_end_service.close_year(org_id, 2024, test_actor_id)

        year = period_service.get_fiscal_year(org_id, 2024)
        assert year.status == FiscalYearStatus.CLOSED
        assert year.year_end_processed
        assert year.year_end_close_version == 1
        assert year.year_end_transaction_id == result.transaction_id

    def test_runs_once(
        self, year_end_service, year_2024_activity, deterministic_clock,
        org_id, test_actor_id, journal_selector,
    ):
        deterministic_clock.set_date(AFTER_YEAR_END)
        year_end_service.close_year(org_id, 2024, test_actor_id)
        count = journal_selector.count_entries(org_id)

        with pytest.raises(YearEndAlreadyProcessedError):
            year_end_service.close_year(org_id, 2024, test_actor_id)
        assert journal_selector.count_entries(org_id) == count

    def test_empty_year(self, year_end_service, deterministic_clock, org_id, test_actor_id, period_service):
        deterministic_clock.set_date(AFTER_YEAR_END)

        result = year_end_service.close_year(org_id, 2024, test_actor_id)

        assert result.transaction_id is None
        assert result.lines == ()
        assert period_service.get_fiscal_year(org_id, 2024).year_end_processed

    def test_logs(
        self, year_end_service, year_2024_activity, deterministic_clock,
        org_id, test_actor_id, captured_logs,
    ):
        deterministic_clock.set_date(AFTER_YEAR_END)
        year_end_service.close_year(org_id, 2024, test_actor_id)

        messages = [r["message"] for r in captured_logs()]
        assert "year_end_close_started" in messages
        assert "year_end_close_completed" in messages


class TestCloseYearErrors:
    def test_year_not_ended(self, year_end_service, org_id, test_actor_id):
        with pytest.raises(FiscalYearError, match="has not ended"):
            year_end_service.close_year(org_id, 2024, test_actor_id)

    def test_december_closed(
        self, year_end_service, period_service, deterministic_clock, org_id, test_actor_id, session
    ):
        deterministic_clock.set_date(AFTER_YEAR_END)
        period_service.resolve_period(org_id, date(2024, 12, 31))
        period_service.close_period(org_id, "2024-12", test_actor_id)
        session.commit()

        with pytest.raises(ClosedPeriodError):
            year_end_service.close_year(org_id, 2024, test_actor_id)
        assert not period_service.get_fiscal_year(org_id, 2024).year_end_processed

    def test_no_rule_set(self, session, deterministic_clock, period_locks, test_actor_id):
        deterministic_clock.set_date(AFTER_YEAR_END)
        service = YearEndService(session, deterministic_clock, locks=period_locks)

        with pytest.raises(FiscalYearError, match="no posting rule set"):
            service.close_year(uuid4(), 2024, test_actor_id)
