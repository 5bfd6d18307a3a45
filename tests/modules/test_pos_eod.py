"""
POS end-of-day posting.

Standard day (2024-06-14, branch marina):
- Sales: DR cash 2000, DR card 8000 / CR net sales 9523.81, CR VAT 476.19
- Commissions: DR 5200 / CR 2230 for 600 (Layla) and 360 (Omar)
- Card fees: DR 5610 / CR 1120 for 120

A commission that does not match revenue x rate stops the whole day
before anything is posted.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.exceptions import PersistenceTimeoutError
from ledger_kernel.services.entity_store import SqlEntityStore
from ledger_kernel.services.posting_pipeline import PostingStatus
from ledger_modules.pos.config import PosConfig
from ledger_modules.pos.service import PosDayStatus, PosEndOfDayService
from tests.conftest import make_pos_summary


def _lines(lines):
    return [(l.account_code, l.debit_amount, l.credit_amount) for l in lines]


def _day_ref(org_id):
    return f"pos-eod:{org_id}:2024-06-14:marina"


class TestStandardDay:
    def test_completed(self, pos_service, summary_json, test_actor_id, org_id, journal_selector):
        report = pos_service.process_day(summary_json, test_actor_id)

        assert report.status == PosDayStatus.COMPLETED
        assert report.is_success
        assert report.business_date == "2024-06-14"
        assert report.branch_id == "marina"
        assert len(report.journal_entry_ids) == 4
        assert len(set(report.transaction_ids)) == 4
        assert report.warnings == ()
        assert journal_selector.count_entries(org_id) == 4

    def test_sales_entry(self, pos_service, summary_json, test_actor_id, org_id, journal_selector):
        report = pos_service.process_day(summary_json, test_actor_id)

        assert _lines(report.sales_result.lines) == [
            ("1100", Decimal("2000.00"), Decimal("0")),
            ("1120", Decimal("8000.00"), Decimal("0")),
            ("4100", Decimal("0"), Decimal("9523.81")),
            ("2210", Decimal("0"), Decimal("476.19")),
        ]
        entry = journal_selector.find_by_correlation(org_id, f"{_day_ref(org_id)}:sales")
        assert entry.id == report.sales_result.transaction_id
        assert entry.transaction_date == date(2024, 6, 14)
        assert entry.total_amount == Decimal("10000.00")
        assert entry.metadata["ingest_source"] == "pos_eod"
        assert entry.metadata["original_ref"] == _day_ref(org_id)
        assert entry.is_balanced

    def test_totals(self, pos_service, summary_json, test_actor_id):
        report = pos_service.process_day(summary_json, test_actor_id)

        assert report.totals["gross_sales"] == "10000.00"
        assert report.totals["vat"] == "476.19"
        assert report.totals["net_sales"] == "9523.81"
        assert report.totals["commission"] == "960.00"
        assert report.totals["tips"] == "0"

    def test_commission_accruals(
        self, pos_service, summary_json, test_actor_id, org_id, journal_selector
    ):
        report = pos_service.process_day(summary_json, test_actor_id)

        assert [(c.staff_name, c.amount, c.status) for c in report.commission_accruals] == [
            ("Layla", Decimal("600.00"), "posted"),
            ("Omar", Decimal("360.00"), "posted"),
        ]
        layla = journal_selector.find_by_correlation(
            org_id, f"{_day_ref(org_id)}:commission:STF-001"
        )
        assert _lines(layla.lines) == [
            ("5200", Decimal("600.00"), Decimal("0")),
            ("2230", Decimal("0"), Decimal("600.00")),
        ]
        assert layla.id == report.commission_accruals[0].transaction_id

    def test_commission_is_an_expense_event(
        self, pos_service, summary_json, test_actor_id, org_id, journal_selector
    ):
        pos_service.process_day(summary_json, test_actor_id)

        for staff_id in ("STF-001", "STF-002"):
            entry = journal_selector.find_by_correlation(
                org_id, f"{_day_ref(org_id)}:commission:{staff_id}"
            )
            assert entry.transaction_type == "expense"
            assert entry.business_context["category"] == "commission"
            assert entry.business_context["staff_id"] == staff_id

    def test_card_fees(self, pos_service, summary_json, test_actor_id, org_id, journal_selector):
        report = pos_service.process_day(summary_json, test_actor_id)

        assert report.fee_result.status == PostingStatus.POSTED
        fees = journal_selector.find_by_correlation(org_id, f"{_day_ref(org_id)}:fees")
        assert _lines(fees.lines) == [
            ("5610", Decimal("120.00"), Decimal("0")),
            ("1120", Decimal("0"), Decimal("120.00")),
        ]

    def test_zero_commission_and_fees_skipped(self, pos_service, org_id, test_actor_id):
        data = make_pos_summary(org_id)
        data["staff"][1].update(revenue="0", commission="0")
        data["payments"]["card"]["fees"] = "0"

        report = pos_service.process_day(data, test_actor_id)

        assert report.status == PosDayStatus.COMPLETED
        assert len(report.journal_entry_ids) == 2
        assert report.fee_result is None
        assert [c.staff_id for c in report.commission_accruals] == ["STF-001"]

    def test_accepts_parsed_summary(self, pos_service, parsed_summary, test_actor_id):
        assert pos_service.process_day(parsed_summary, test_actor_id).is_success

    def test_logs(self, pos_service, summary_json, test_actor_id, org_id, captured_logs):
        pos_service.process_day(summary_json, test_actor_id)

        records = captured_logs()
        started = next(r for r in records if r["message"] == "pos_eod_started")
        assert started["correlation_id"] == _day_ref(org_id)
        assert started["staff_count"] == 2
        completed = next(r for r in records if r["message"] == "pos_eod_completed")
        assert completed["journal_entry_count"] == 4
        assert "duration_ms" in completed


class TestAccruedTips:
    @pytest.fixture
    def tips_service(self, session, deterministic_clock, rule_cache, period_locks, installed_rules):
        return PosEndOfDayService(
            session,
            config=PosConfig(accrue_tips=True),
            clock=deterministic_clock,
            rule_cache=rule_cache,
            locks=period_locks,
        )

    def test_tips_credited_to_tips_payable(self, tips_service, summary_json, test_actor_id):
        report = tips_service.process_day(summary_json, test_actor_id)

        assert report.status == PosDayStatus.COMPLETED
        assert _lines(report.sales_result.lines) == [
            ("1100", Decimal("2150.00"), Decimal("0")),
            ("1120", Decimal("8200.00"), Decimal("0")),
            ("4100", Decimal("0"), Decimal("9523.81")),
            ("2210", Decimal("0"), Decimal("476.19")),
            ("2220", Decimal("0"), Decimal("350.00")),
        ]
        assert report.totals["tips"] == "350.00"


class TestValidationFailure:
    def test_commission_mismatch_posts_nothing(
        self, pos_service, org_id, test_actor_id, journal_selector
    ):
        data = make_pos_summary(org_id)
        data["staff"][0]["commission"] = "450.00"

        report = pos_service.process_day(data, test_actor_id)
        payload = report.to_payload()

        assert report.status == PosDayStatus.VALIDATION_FAILED
        assert payload["success"] is False
        assert [e.code for e in report.validation_errors] == ["COMMISSION_MISMATCH"]
        assert "revenue 4000.00 x rate 0.15" in payload["errors"][0]
        assert report.journal_entry_ids == ()
        assert report.summary_entity_id is None
        assert journal_selector.count_entries(org_id) == 0

    def test_schema_failure(self, pos_service, org_id, test_actor_id, captured_logs):
        report = pos_service.process_day(
            {"organization_id": str(org_id), "business_date": "2024-06-14"}, test_actor_id
        )

        assert report.status == PosDayStatus.VALIDATION_FAILED
        assert "sales must be a non-empty object" in report.errors
        assert "payments must be an object" in report.errors
        assert any(r["message"] == "pos_summary_schema_invalid" for r in captured_logs())


class TestSalesFailure:
    def test_unbalanced_sales_stop_the_day(
        self, pos_service, org_id, test_actor_id, journal_selector
    ):
        """A payment gap inside the validation tolerance still fails the balance gate."""
        data = make_pos_summary(org_id)
        data["payments"]["card"]["settlement"] = "7999.50"

        report = pos_service.process_day(data, test_actor_id)

        assert report.status == PosDayStatus.SALES_FAILED
        assert report.sales_result.error_code == "UNBALANCED_ENTRY"
        assert report.commission_accruals == ()
        assert journal_selector.count_entries(org_id) == 0

    def test_closed_period(
        self, pos_service, period_service, org_id, test_actor_id, session, journal_selector
    ):
        period_service.resolve_period(org_id, date(2024, 5, 1))
        period_service.close_period(org_id, "2024-05", test_actor_id)
        session.commit()

        report = pos_service.process_day(
            make_pos_summary(org_id, business_date=date(2024, 5, 31)), test_actor_id
        )

        assert report.status == PosDayStatus.SALES_FAILED
        assert report.sales_result.error_code == "CLOSED_PERIOD"
        assert report.to_payload()["errors"]
        assert journal_selector.count_entries(org_id) == 0


class TestDegradedDay:
    def test_fee_failure_is_a_warning(
        self, pos_service, summary_json, test_actor_id, org_id, journal_selector, monkeypatch
    ):
        pipeline = pos_service._pipeline
        real_post = pipeline.post

        def post(payload, actor_id, **kwargs):
            if payload["transaction_type"] == "bank_fee":
                raise PersistenceTimeoutError("create_transaction", "statement timeout")
            return real_post(payload, actor_id, **kwargs)

        monkeypatch.setattr(pipeline, "post", post)

        report = pos_service.process_day(summary_json, test_actor_id)

        assert report.status == PosDayStatus.COMPLETED_WITH_WARNINGS
        assert report.is_success
        assert report.warnings == ("Card fee posting failed: PERSISTENCE_TIMEOUT",)
        assert journal_selector.count_entries(org_id) == 3

    def test_commission_failure_is_a_warning(
        self, pos_service, summary_json, test_actor_id, monkeypatch
    ):
        pipeline = pos_service._pipeline
        real_post = pipeline.post

        def post(payload, actor_id, **kwargs):
            if payload["business_context"].get("staff_id") == "STF-002":
                raise PersistenceTimeoutError("create_transaction", "statement timeout")
            return real_post(payload, actor_id, **kwargs)

        monkeypatch.setattr(pipeline, "post", post)

        report = pos_service.process_day(summary_json, test_actor_id)

        assert report.status == PosDayStatus.COMPLETED_WITH_WARNINGS
        omar = report.commission_accruals[1]
        assert omar.status == "PERSISTENCE_TIMEOUT"
        assert omar.transaction_id is None
        assert report.warnings == ("Commission accrual for Omar failed: PERSISTENCE_TIMEOUT",)
        assert len(report.journal_entry_ids) == 3


class TestRerun:
    def test_same_day_twice_posts_once(
        self, pos_service, summary_json, test_actor_id, org_id, journal_selector
    ):
        first = pos_service.process_day(summary_json, test_actor_id)
        second = pos_service.process_day(summary_json, test_actor_id)

        assert second.is_success
        assert second.sales_result.status == PostingStatus.ALREADY_POSTED
        assert second.journal_entry_ids == first.journal_entry_ids
        assert second.summary_entity_id == first.summary_entity_id
        assert journal_selector.count_entries(org_id) == 4

    def test_other_branch_is_a_separate_day(
        self, pos_service, org_id, test_actor_id, journal_selector
    ):
        pos_service.process_day(make_pos_summary(org_id), test_actor_id)
        report = pos_service.process_day(
            make_pos_summary(org_id, branch_id="downtown"), test_actor_id
        )

        assert report.sales_result.status == PostingStatus.POSTED
        assert journal_selector.count_entries(org_id) == 8


class TestSummaryRecord:
    def test_recorded_with_report(self, pos_service, summary_json, test_actor_id, session):
        report = pos_service.process_day(summary_json, test_actor_id)

        record = SqlEntityStore(session).get_dynamic_data(report.summary_entity_id, "summary")
        assert record.version == 1
        assert record.field_value_json["summary"]["branch_id"] == "marina"
        assert record.field_value_json["report"]["status"] == "completed"
        assert record.field_value_json["report"]["journal_entry_ids"] == list(
            report.journal_entry_ids
        )
        assert record.field_value_json["processed_at"].startswith("2024-06-15T12:00:00")

    def test_rerun_updates_record(self, pos_service, summary_json, test_actor_id, session):
        pos_service.process_day(summary_json, test_actor_id)
        report = pos_service.process_day(summary_json, test_actor_id)

        record = SqlEntityStore(session).get_dynamic_data(report.summary_entity_id, "summary")
        assert record.version == 2
