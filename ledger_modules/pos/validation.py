"""
POS daily summary business checks.

Runs after the schema parse and before anything is posted.  Every check
runs and every violation is reported; a summary with any error posts
nothing.

Checks:
    payments     cash + card settlement + vouchers + other within
                 ``payment_tolerance`` of gross sales (tips excluded)
    VAT          each category's VAT within ``vat_tolerance`` of
                 gross * r / (1 + r); net within 0.01 of gross - VAT
    totals       a reported sales total agrees with the categories
    commission   |commission - revenue * rate| <= ``commission_tolerance``
    date         business date not after today
    drawer       |actual - expected| equals |variance| within 0.01
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.dtos import ValidationError, ValidationResult
from ledger_kernel.domain.line_generator import split_vat
from ledger_kernel.logging_config import get_logger
from ledger_modules.pos.config import PosConfig
from ledger_modules.pos.models import PosDailySummary

logger = get_logger("modules.pos.validation")

CENT = Decimal("0.01")


def computed_vat(summary: PosDailySummary, config: PosConfig) -> dict[str, Decimal]:
    """VAT per category at the standard rate, VAT-inclusive gross."""
    return {
        category.name: split_vat(
            category.gross, config.standard_vat_rate, True, config.currency
        )[1]
        for category in summary.sales
    }


def validate_daily_summary(
    summary: PosDailySummary,
    config: PosConfig,
    today: date,
) -> ValidationResult:
    errors: list[ValidationError] = []

    try:
        UUID(summary.organization_id)
    except ValueError:
        errors.append(
            ValidationError(
                code="INVALID_ORGANIZATION_ID",
                message="organization_id must be a UUID",
                field="organization_id",
            )
        )

    if summary.currency and summary.currency != config.currency:
        errors.append(
            ValidationError(
                code="CURRENCY_MISMATCH",
                message=f"summary currency {summary.currency} does not match {config.currency}",
                field="currency",
            )
        )

    gross = summary.gross_sales
    paid = summary.payments.total
    if abs(paid - gross) > config.payment_tolerance:
        errors.append(
            ValidationError(
                code="PAYMENT_MISMATCH",
                message=(
                    f"payment total {paid} does not match gross sales {gross} "
                    f"(tolerance {config.payment_tolerance})"
                ),
                field="payments",
            )
        )

    expected_vat = computed_vat(summary, config)
    for category in summary.sales:
        vat = category.vat if category.vat is not None else expected_vat[category.name]
        if abs(vat - expected_vat[category.name]) > config.vat_tolerance:
            errors.append(
                ValidationError(
                    code="VAT_MISMATCH",
                    message=(
                        f"sales.{category.name} VAT {vat} does not match "
                        f"{expected_vat[category.name]} at rate {config.standard_vat_rate}"
                    ),
                    field=f"sales.{category.name}.vat",
                )
            )
        if category.net is not None and abs(category.net - (category.gross - vat)) > CENT:
            errors.append(
                ValidationError(
                    code="NET_MISMATCH",
                    message=(
                        f"sales.{category.name} net {category.net} is not "
                        f"gross {category.gross} minus VAT {vat}"
                    ),
                    field=f"sales.{category.name}.net",
                )
            )

    reported = summary.reported_total
    if reported is not None:
        total_vat = summary.total_vat(expected_vat)
        mismatched = abs(reported.gross - gross) > CENT
        if reported.vat is not None and abs(reported.vat - total_vat) > CENT:
            mismatched = True
        if reported.net is not None and abs(reported.net - (gross - total_vat)) > CENT:
            mismatched = True
        if mismatched:
            errors.append(
                ValidationError(
                    code="SALES_TOTAL_MISMATCH",
                    message="sales.total does not agree with the category totals",
                    field="sales.total",
                )
            )

    for index, row in enumerate(summary.staff):
        expected = row.expected_commission
        if abs(row.commission - expected) > config.commission_tolerance:
            errors.append(
                ValidationError(
                    code="COMMISSION_MISMATCH",
                    message=(
                        f"commission {row.commission} for {row.staff_name} does not "
                        f"match revenue {row.revenue} x rate {row.rate} = {expected}"
                    ),
                    field=f"staff[{index}].commission",
                )
            )

    if summary.business_date > today:
        errors.append(
            ValidationError(
                code="FUTURE_BUSINESS_DATE",
                message=f"business_date {summary.business_date} is in the future",
                field="business_date",
            )
        )

    rec = summary.reconciliation
    if rec is not None and abs(abs(rec.actual - rec.expected) - abs(rec.variance)) > CENT:
        errors.append(
            ValidationError(
                code="RECONCILIATION_MISMATCH",
                message=(
                    f"drawer variance {rec.variance} does not match "
                    f"actual {rec.actual} - expected {rec.expected}"
                ),
                field="reconciliation.variance",
            )
        )

    if errors:
        logger.warning(
            "pos_summary_validation_failed",
            extra={
                "business_date": summary.business_date.isoformat(),
                "branch_id": summary.branch_id,
                "error_codes": [e.code for e in errors],
            },
        )
        return ValidationResult.failure(*errors)
    return ValidationResult.success()
