"""
Finance event validation at the pipeline boundary.

Verifies:
- A well-formed UFE passes
- Every violation is reported, not just the first
- Input lines must be empty
- Amounts must be positive, currencies ISO 4217, dates parseable and in range
- The event must belong to the calling organization
"""

from datetime import date
from uuid import uuid4

from ledger_kernel.domain.event_validator import validate_finance_event
from tests.conftest import POS_SUMMARY, TODAY, make_ufe


class TestValidEvent:
    def test_minimal_event_passes(self):
        result = validate_finance_event(make_ufe(uuid4()), today=TODAY)
        assert result.is_valid
        assert result.errors == ()

    def test_iso_datetime_is_accepted(self):
        payload = make_ufe(uuid4(), transaction_date="2024-06-10T09:30:00Z")
        assert validate_finance_event(payload, today=TODAY).is_valid

    def test_missing_lines_key_is_accepted(self):
        payload = make_ufe(uuid4())
        del payload["lines"]
        assert validate_finance_event(payload, today=TODAY).is_valid


class TestStructuralErrors:
    def test_every_missing_field_is_reported(self):
        result = validate_finance_event({}, today=TODAY)

        assert not result.is_valid
        missing = {e.field for e in result.errors if e.code == "MISSING_FIELD"}
        assert missing == {
            "organization_id",
            "transaction_type",
            "smart_code",
            "transaction_date",
            "total_amount",
            "transaction_currency_code",
            "base_currency_code",
        }

    def test_errors_accumulate_across_fields(self):
        payload = make_ufe(
            "not-a-uuid",
            smart_code="bad code",
            amount="-5",
            transaction_currency_code="XYZ",
        )
        result = validate_finance_event(payload, today=TODAY)

        assert set(result.codes) >= {
            "INVALID_ORGANIZATION_ID",
            "INVALID_SMART_CODE",
            "NON_POSITIVE_AMOUNT",
            "INVALID_CURRENCY",
        }
        assert len(result.messages) == len(result.errors)

    def test_zero_amount_rejected(self):
        result = validate_finance_event(make_ufe(uuid4(), amount="0"), today=TODAY)
        assert result.codes == ["NON_POSITIVE_AMOUNT"]

    def test_non_numeric_amount_rejected(self):
        result = validate_finance_event(make_ufe(uuid4(), amount="abc"), today=TODAY)
        assert result.codes == ["INVALID_AMOUNT"]

    def test_amount_beyond_column_precision_rejected(self):
        result = validate_finance_event(make_ufe(uuid4(), amount="1E+29"), today=TODAY)
        assert result.codes == ["AMOUNT_OUT_OF_RANGE"]
        assert result.errors[0].field == "total_amount"

    def test_largest_storable_amount_passes(self):
        payload = make_ufe(uuid4(), amount="99999999999999999999999999999.99")
        assert validate_finance_event(payload, today=TODAY).is_valid

    def test_exchange_rate_beyond_column_precision_rejected(self):
        payload = make_ufe(uuid4(), exchange_rate="1E+20")
        result = validate_finance_event(payload, today=TODAY)
        assert result.codes == ["AMOUNT_OUT_OF_RANGE"]
        assert result.errors[0].field == "exchange_rate"

    def test_pos_total_beyond_column_precision_rejected(self):
        payload = make_ufe(
            uuid4(),
            smart_code=POS_SUMMARY,
            transaction_type="pos_daily_summary",
            totals={"gross_sales": "1E+30"},
        )
        result = validate_finance_event(payload, today=TODAY)
        assert result.codes == ["AMOUNT_OUT_OF_RANGE"]
        assert result.errors[0].field == "totals.gross_sales"

    def test_malformed_date_rejected(self):
        result = validate_finance_event(
            make_ufe(uuid4(), transaction_date="15/06/2024"), today=TODAY
        )
        assert result.codes == ["INVALID_DATE"]

    def test_impossible_date_rejected(self):
        result = validate_finance_event(
            make_ufe(uuid4(), transaction_date="2024-02-30"), today=TODAY
        )
        assert result.codes == ["INVALID_DATE"]

    def test_date_outside_year_window_rejected(self):
        result = validate_finance_event(
            make_ufe(uuid4(), transaction_date=date(2010, 1, 5)), today=TODAY
        )
        assert result.codes == ["DATE_OUT_OF_RANGE"]

    def test_non_object_payload(self):
        result = validate_finance_event(["not", "a", "dict"])
        assert result.codes == ["INVALID_PAYLOAD"]

    def test_metadata_must_be_object(self):
        result = validate_finance_event(make_ufe(uuid4(), metadata="x"), today=TODAY)
        assert result.codes == ["INVALID_FIELD_TYPE"]


class TestBusinessRules:
    def test_non_empty_input_lines_rejected(self):
        payload = make_ufe(
            uuid4(),
            lines=[{"account_code": "5100", "debit_amount": "100"}],
        )
        result = validate_finance_event(payload, today=TODAY)
        assert result.codes == ["LINES_NOT_EMPTY"]

    def test_pos_summary_requires_totals(self):
        payload = make_ufe(
            uuid4(),
            smart_code=POS_SUMMARY,
            transaction_type="pos_daily_summary",
        )
        result = validate_finance_event(payload, today=TODAY)
        assert not result.is_valid
        assert any(e.field == "totals" for e in result.errors)


class TestOrganizationMatch:
    def test_matching_organization_passes(self):
        org = uuid4()
        result = validate_finance_event(
            make_ufe(org), expected_organization_id=org, today=TODAY
        )
        assert result.is_valid

    def test_mismatched_organization_rejected(self):
        result = validate_finance_event(
            make_ufe(uuid4()), expected_organization_id=uuid4(), today=TODAY
        )
        assert result.codes == ["ORGANIZATION_MISMATCH"]
