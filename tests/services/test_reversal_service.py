"""
ReversalService: a posted entry is never edited, it is reversed by a new
entry with debits and credits swapped.

Verifies:
- Reversal lines mirror the original, same accounts and order
- The reversal links back to the original and nets every account to zero
- One reversal per entry
- The reversal date must be postable; a closed original period is fine
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    ClosedPeriodError,
    EntryAlreadyReversedError,
    EntryNotFoundError,
    FuturePeriodError,
    PeriodError,
)
from ledger_kernel.services.posting_pipeline import PostingStatus
from tests.conftest import RENT, make_ufe


@pytest.fixture
def posted_rent(pipeline, org_id, test_actor_id):
    result = pipeline.post(make_ufe(org_id, smart_code=RENT, amount="1000"), test_actor_id)
    assert result.status == PostingStatus.POSTED
    return result


class TestReverse:
    def test_swaps_sides(self, reversal_service, posted_rent, org_id, test_actor_id):
        result = reversal_service.reverse(org_id, posted_rent.transaction_id, test_actor_id)

        assert [(l.account_code, l.debit_amount, l.credit_amount) for l in result.lines] == [
            ("5300", Decimal("0"), Decimal("1000.00")),
            ("1410", Decimal("0"), Decimal("50.00")),
            ("1110", Decimal("1050.00"), Decimal("0")),
        ]
        assert result.original_transaction_id == posted_rent.transaction_id
        assert result.posting_period == "2024-06"

    def test_persisted_with_link(
        self, reversal_service, posted_rent, org_id, test_actor_id, journal_selector
    ):
        result = reversal_service.reverse(
            org_id, posted_rent.transaction_id, test_actor_id, reason="Duplicate invoice"
        )

        entry = journal_selector.get_entry(result.reversal_transaction_id)
        assert entry.reversal_of_id == posted_rent.transaction_id
        assert entry.smart_code == "HERA.FIN.GL.TXN.JE.REVERSAL.v1"
        assert entry.transaction_type == "reversal"
        assert entry.idempotency_key == f"{org_id}:reversal:{posted_rent.transaction_id}"
        assert entry.metadata["reversal_reason"] == "Duplicate invoice"
        assert entry.metadata["original_ref"] == posted_rent.journal_entry_id
        assert entry.lines[0].smart_code == "HERA.FIN.GL.TXN.JE.REVERSAL.CR.v1"
        assert entry.is_balanced

        found = journal_selector.find_reversal(posted_rent.transaction_id)
        assert found.id == result.reversal_transaction_id

    def test_accounts_net_to_zero(
        self, reversal_service, posted_rent, org_id, test_actor_id, journal_selector
    ):
        reversal_service.reverse(org_id, posted_rent.transaction_id, test_actor_id)

        balances = journal_selector.account_balances(org_id)

        assert {row.account_code for row in balances} == {"5300", "1410", "1110"}
        assert all(row.balance == 0 for row in balances)

    def test_reversal_of_reversal_allowed(
        self, reversal_service, posted_rent, org_id, test_actor_id
    ):
        first = reversal_service.reverse(org_id, posted_rent.transaction_id, test_actor_id)
        again = reversal_service.reverse(org_id, first.reversal_transaction_id, test_actor_id)

        assert again.lines[0].debit_amount == Decimal("1000.00")

    def test_logs(self, reversal_service, posted_rent, org_id, test_actor_id, captured_logs):
        reversal_service.reverse(org_id, posted_rent.transaction_id, test_actor_id)

        record = next(r for r in captured_logs() if r["message"] == "entry_reversed")
        assert record["original_transaction_id"] == str(posted_rent.transaction_id)
        assert record["organization_id"] == str(org_id)


class TestReverseErrors:
    def test_unknown_entry(self, reversal_service, org_id, test_actor_id):
        with pytest.raises(EntryNotFoundError) as exc_info:
            reversal_service.reverse(org_id, uuid4(), test_actor_id)
        assert exc_info.value.code == "ENTRY_NOT_FOUND"

    def test_other_organizations_entry(self, reversal_service, posted_rent, test_actor_id):
        with pytest.raises(EntryNotFoundError):
            reversal_service.reverse(uuid4(), posted_rent.transaction_id, test_actor_id)

    def test_only_once(self, reversal_service, posted_rent, org_id, test_actor_id, journal_selector):
        first = reversal_service.reverse(org_id, posted_rent.transaction_id, test_actor_id)

        with pytest.raises(EntryAlreadyReversedError) as exc_info:
            reversal_service.reverse(org_id, posted_rent.transaction_id, test_actor_id)

        assert exc_info.value.reversal_id == str(first.reversal_transaction_id)
        assert journal_selector.count_entries(org_id) == 2


class TestReversalPeriod:
    def test_closed_original_period_reversed_today(
        self, pipeline, reversal_service, period_service, org_id, test_actor_id, session
    ):
        posted = pipeline.post(make_ufe(org_id, transaction_date=date(2024, 5, 10)), test_actor_id)
        period_service.close_period(org_id, "2024-05", test_actor_id)
        session.commit()

        result = reversal_service.reverse(org_id, posted.transaction_id, test_actor_id)

        assert result.posting_period == "2024-06"

    def test_into_closed_period_rejected(
        self, reversal_service, period_service, posted_rent, org_id, test_actor_id, session,
        journal_selector,
    ):
        period_service.resolve_period(org_id, date(2024, 5, 1))
        period_service.close_period(org_id, "2024-05", test_actor_id)
        session.commit()

        with pytest.raises(ClosedPeriodError) as exc_info:
            reversal_service.reverse(
                org_id, posted_rent.transaction_id, test_actor_id, reversal_date=date(2024, 5, 31)
            )

        assert isinstance(exc_info.value, PeriodError)
        assert journal_selector.find_reversal(posted_rent.transaction_id) is None

    def test_too_far_ahead_rejected(self, reversal_service, posted_rent, org_id, test_actor_id):
        with pytest.raises(FuturePeriodError):
            reversal_service.reverse(
                org_id, posted_rent.transaction_id, test_actor_id, reversal_date=date(2024, 9, 1)
            )
