"""FinanceEventValidator -- Pure validation of Universal Finance Event payloads."""

import re
from datetime import date
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from ledger_kernel.db.types import (
    MAX_EXCHANGE_RATE,
    MAX_MONEY_AMOUNT,
    is_valid_currency,
    to_decimal,
)
from ledger_kernel.domain.dtos import (
    POS_TOTAL_FIELDS,
    TransactionCategory,
    ValidationError,
    ValidationResult,
    parse_transaction_date,
)
from ledger_kernel.domain.smart_code import is_valid_smart_code
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.event_validator")

REQUIRED_FIELDS: tuple[str, ...] = (
    "organization_id",
    "transaction_type",
    "smart_code",
    "transaction_date",
    "total_amount",
    "transaction_currency_code",
    "base_currency_code",
)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")

# Sanity window for transaction years, relative to today's year
YEARS_BACK = 5
YEARS_FORWARD = 1


def validate_finance_event(
    payload: Mapping[str, Any],
    *,
    expected_organization_id: UUID | str | None = None,
    today: date | None = None,
) -> ValidationResult:
    """
    Validate a UFE payload at the pipeline boundary.

    Runs structural checks, then business rules, then the organization
    match, and returns every violation found.  Never raises for bad input.
    """
    if not isinstance(payload, Mapping):
        return ValidationResult.failure(
            ValidationError(
                code="INVALID_PAYLOAD",
                message="Finance event must be a JSON object",
            )
        )

    errors: list[ValidationError] = []
    errors.extend(validate_structure(payload, today=today))
    errors.extend(validate_business_rules(payload))
    errors.extend(validate_organization(payload, expected_organization_id))

    if errors:
        logger.warning(
            "validation_failed",
            extra={
                "smart_code": payload.get("smart_code"),
                "error_count": len(errors),
                "error_codes": [e.code for e in errors],
            },
        )
        return ValidationResult.failure(*errors)

    logger.debug(
        "validation_passed",
        extra={"smart_code": payload.get("smart_code")},
    )
    return ValidationResult.success()


def validate_structure(
    payload: Mapping[str, Any],
    today: date | None = None,
) -> list[ValidationError]:
    """Required fields, formats and positive amounts."""
    errors: list[ValidationError] = []

    for name in REQUIRED_FIELDS:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append(
                ValidationError(
                    code="MISSING_FIELD",
                    message=f"{name} is required",
                    field=name,
                )
            )

    org = payload.get("organization_id")
    if org is not None and not _is_uuid(org):
        errors.append(
            ValidationError(
                code="INVALID_ORGANIZATION_ID",
                message="organization_id must be a UUID",
                field="organization_id",
            )
        )

    source = payload.get("source_entity_id")
    if source and not _is_uuid(source):
        errors.append(
            ValidationError(
                code="INVALID_SOURCE_ENTITY_ID",
                message="source_entity_id must be a UUID",
                field="source_entity_id",
            )
        )

    smart_code = payload.get("smart_code")
    if smart_code and not is_valid_smart_code(smart_code):
        errors.append(
            ValidationError(
                code="INVALID_SMART_CODE",
                message=f"smart_code '{smart_code}' does not match the smart code format",
                field="smart_code",
            )
        )

    for name in ("transaction_currency_code", "base_currency_code"):
        errors.extend(_validate_currency(payload.get(name), name))

    errors.extend(_validate_date(payload.get("transaction_date"), today))

    errors.extend(_validate_positive(payload.get("total_amount"), "total_amount"))
    if payload.get("exchange_rate") is not None:
        errors.extend(
            _validate_positive(payload.get("exchange_rate"), "exchange_rate", MAX_EXCHANGE_RATE)
        )

    for name in ("business_context", "metadata"):
        value = payload.get(name)
        if value is not None and not isinstance(value, Mapping):
            errors.append(
                ValidationError(
                    code="INVALID_FIELD_TYPE",
                    message=f"{name} must be an object",
                    field=name,
                )
            )

    return errors


def validate_business_rules(payload: Mapping[str, Any]) -> list[ValidationError]:
    """Input lines must be empty; POS summaries need a totals block."""
    errors: list[ValidationError] = []

    lines = payload.get("lines")
    if lines is not None and (not isinstance(lines, (list, tuple)) or len(lines) > 0):
        errors.append(
            ValidationError(
                code="LINES_NOT_EMPTY",
                message="lines must be empty; GL lines are generated from posting rules",
                field="lines",
            )
        )

    category = TransactionCategory.from_code(str(payload.get("transaction_type") or ""))
    if category == TransactionCategory.POS_DAILY_SUMMARY:
        totals = payload.get("totals")
        if not isinstance(totals, Mapping):
            errors.append(
                ValidationError(
                    code="MISSING_TOTALS",
                    message="totals are required for pos_daily_summary events",
                    field="totals",
                )
            )
        else:
            for name in POS_TOTAL_FIELDS:
                if totals.get(name) is None:
                    continue
                try:
                    amount = to_decimal(totals[name])
                except ValueError:
                    errors.append(
                        ValidationError(
                            code="INVALID_AMOUNT",
                            message=f"totals.{name} must be a number",
                            field=f"totals.{name}",
                        )
                    )
                    continue
                if amount < 0:
                    errors.append(
                        ValidationError(
                            code="NEGATIVE_AMOUNT",
                            message=f"totals.{name} must not be negative",
                            field=f"totals.{name}",
                        )
                    )
                elif amount >= MAX_MONEY_AMOUNT:
                    errors.append(
                        ValidationError(
                            code="AMOUNT_OUT_OF_RANGE",
                            message=f"totals.{name} exceeds the largest storable amount",
                            field=f"totals.{name}",
                        )
                    )

    return errors


def validate_organization(
    payload: Mapping[str, Any],
    expected_organization_id: UUID | str | None,
) -> list[ValidationError]:
    """The event must belong to the organization of the calling context."""
    if expected_organization_id is None:
        return []
    org = payload.get("organization_id")
    if org is None or str(org).lower() != str(expected_organization_id).lower():
        return [
            ValidationError(
                code="ORGANIZATION_MISMATCH",
                message="organization_id does not match the calling organization",
                field="organization_id",
            )
        ]
    return []


def _is_uuid(value: Any) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _validate_currency(value: Any, name: str) -> list[ValidationError]:
    if value is None:
        return []
    if not isinstance(value, str) or len(value) != 3:
        return [
            ValidationError(
                code="INVALID_CURRENCY",
                message=f"{name} must be a 3-letter currency code",
                field=name,
            )
        ]
    if not is_valid_currency(value):
        return [
            ValidationError(
                code="INVALID_CURRENCY",
                message=f"Invalid ISO 4217 currency code: {value}",
                field=name,
            )
        ]
    return []


def _validate_date(value: Any, today: date | None) -> list[ValidationError]:
    if value is None:
        return []
    if isinstance(value, str) and not DATE_PATTERN.match(value):
        return [
            ValidationError(
                code="INVALID_DATE",
                message="transaction_date must be YYYY-MM-DD or an ISO-8601 datetime",
                field="transaction_date",
            )
        ]
    try:
        txn_date = parse_transaction_date(value)
    except ValueError:
        return [
            ValidationError(
                code="INVALID_DATE",
                message=f"transaction_date '{value}' is not a valid date",
                field="transaction_date",
            )
        ]

    if today is not None and not (
        today.year - YEARS_BACK <= txn_date.year <= today.year + YEARS_FORWARD
    ):
        return [
            ValidationError(
                code="DATE_OUT_OF_RANGE",
                message=(
                    f"transaction_date year {txn_date.year} is outside "
                    f"{today.year - YEARS_BACK}-{today.year + YEARS_FORWARD}"
                ),
                field="transaction_date",
            )
        ]
    return []


def _validate_positive(
    value: Any, name: str, limit: Decimal = MAX_MONEY_AMOUNT
) -> list[ValidationError]:
    if value is None:
        return []
    try:
        amount = to_decimal(value)
    except ValueError:
        return [
            ValidationError(
                code="INVALID_AMOUNT",
                message=f"{name} must be a number",
                field=name,
            )
        ]
    if amount <= 0:
        return [
            ValidationError(
                code="NON_POSITIVE_AMOUNT",
                message=f"{name} must be greater than zero",
                field=name,
            )
        ]
    if amount >= limit:
        return [
            ValidationError(
                code="AMOUNT_OUT_OF_RANGE",
                message=f"{name} exceeds the largest storable amount",
                field=name,
            )
        ]
    return []
