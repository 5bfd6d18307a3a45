"""
Idempotent posting by correlation id.

Resubmitting an event with the same ``metadata.correlation_id`` for the
same organization returns ALREADY_POSTED with the original ids and never
writes a second entry.
"""

from datetime import date
from uuid import uuid4

from ledger_config import install_rule_set
from ledger_kernel.services.posting_pipeline import PostingStatus
from tests.conftest import make_ufe


class TestResubmission:
    def test_second_submission_returns_original(
        self, pipeline, org_id, test_actor_id, journal_selector
    ):
        event = make_ufe(org_id, correlation_id="invoice-771")

        first = pipeline.post(event, test_actor_id)
        second = pipeline.post(event, test_actor_id)

        assert first.status == PostingStatus.POSTED
        assert second.status == PostingStatus.ALREADY_POSTED
        assert second.transaction_id == first.transaction_id
        assert second.journal_entry_id == first.journal_entry_id
        assert second.posting_period == "2024-06"
        assert journal_selector.count_entries(org_id) == 1

    def test_already_posted_payload(self, pipeline, org_id, test_actor_id):
        event = make_ufe(org_id, correlation_id="invoice-772")
        pipeline.post(event, test_actor_id)

        payload = pipeline.post(event, test_actor_id).to_payload()

        assert payload["success"] is True
        assert payload["status"] == "already_posted"
        assert payload["warnings"] == ["Event already posted; returning the original entry"]
        assert [line["account_code"] for line in payload["gl_lines"]] == ["5100", "1110"]

    def test_changed_payload_same_correlation_is_still_duplicate(
        self, pipeline, org_id, test_actor_id, journal_selector
    ):
        pipeline.post(make_ufe(org_id, correlation_id="dup", amount="100"), test_actor_id)
        again = pipeline.post(make_ufe(org_id, correlation_id="dup", amount="999"), test_actor_id)

        assert again.status == PostingStatus.ALREADY_POSTED
        entry = journal_selector.get_entry(again.transaction_id)
        assert entry.total_amount == 100

    def test_duplicate_checked_before_period_gate(
        self, pipeline, period_service, org_id, test_actor_id, session
    ):
        """A retry after the period closed still reports the original entry."""
        event = make_ufe(org_id, correlation_id="late-retry", transaction_date=date(2024, 5, 20))
        first = pipeline.post(event, test_actor_id)
        period_service.close_period(org_id, "2024-05", test_actor_id)
        session.commit()

        again = pipeline.post(event, test_actor_id)

        assert again.status == PostingStatus.ALREADY_POSTED
        assert again.transaction_id == first.transaction_id

    def test_failed_attempt_can_be_resubmitted(self, pipeline, org_id, test_actor_id):
        bad = make_ufe(org_id, correlation_id="fix-me", transaction_date=date(2024, 8, 1))
        assert pipeline.post(bad, test_actor_id).status == PostingStatus.PERIOD_REJECTED

        fixed = make_ufe(org_id, correlation_id="fix-me", transaction_date=date(2024, 6, 1))
        assert pipeline.post(fixed, test_actor_id).status == PostingStatus.POSTED

    def test_retry_wrapper_is_idempotent(self, pipeline, org_id, test_actor_id, journal_selector):
        event = make_ufe(org_id, correlation_id="retry-me")
        pipeline.post_with_retry(event, test_actor_id)
        result = pipeline.post_with_retry(event, test_actor_id)

        assert result.status == PostingStatus.ALREADY_POSTED
        assert journal_selector.count_entries(org_id) == 1


class TestKeyScope:
    def test_key_is_per_organization(self, pipeline, session, org_id, test_actor_id, salon_rules):
        other_org = uuid4()
        install_rule_set(session, other_org, salon_rules, test_actor_id)
        session.commit()

        first = pipeline.post(make_ufe(org_id, correlation_id="shared"), test_actor_id)
        second = pipeline.post(make_ufe(other_org, correlation_id="shared"), test_actor_id)

        assert first.status == second.status == PostingStatus.POSTED
        assert first.transaction_id != second.transaction_id

    def test_uncorrelated_events_always_post(self, pipeline, org_id, test_actor_id, journal_selector):
        event = make_ufe(org_id)
        event["metadata"] = {}

        pipeline.post(event, test_actor_id)
        pipeline.post(event, test_actor_id)

        assert journal_selector.count_entries(org_id) == 2

    def test_lookup_by_correlation(self, pipeline, org_id, test_actor_id, journal_selector):
        result = pipeline.post(make_ufe(org_id, correlation_id="lookup-1"), test_actor_id)

        entry = journal_selector.find_by_correlation(org_id, "lookup-1")

        assert entry.id == result.transaction_id
        assert entry.idempotency_key == f"{org_id}:lookup-1"
