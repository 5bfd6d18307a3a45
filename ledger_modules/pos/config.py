"""
POS End-of-Day Configuration Schema.

Defines the tolerances, smart codes and tip treatment used when a POS
daily summary is validated and posted.  Override at instantiation:

    config = PosConfig(standard_vat_rate=Decimal("0.15"), currency="SAR")
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Self

from ledger_kernel.db.types import is_valid_currency, to_decimal
from ledger_kernel.domain.smart_code import is_valid_smart_code
from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.pos.config")


@dataclass
class PosConfig:
    """Configuration schema for the POS end-of-day orchestrator."""

    # VAT
    standard_vat_rate: Decimal = Decimal("0.05")

    # Validation tolerances, in currency units
    payment_tolerance: Decimal = Decimal("1.00")
    vat_tolerance: Decimal = Decimal("1.00")
    commission_tolerance: Decimal = Decimal("0.50")

    # Tips paid out to staff the same day stay out of the sales journal
    accrue_tips: bool = False

    # Smart codes of the generated finance events
    sales_smart_code: str = "HERA.SALON.POS.DAILY.SUMMARY.V1"
    commission_smart_code: str = "HERA.SALON.FINANCE.EXPENSE.COMMISSION.V1"
    fee_smart_code: str = "HERA.SALON.FINANCE.BANK.FEE.V1"
    summary_smart_code: str = "HERA.SALON.POS.DAILY.RECORD.V1"

    currency: str = "AED"

    def __post_init__(self):
        for name in (
            "standard_vat_rate",
            "payment_tolerance",
            "vat_tolerance",
            "commission_tolerance",
        ):
            setattr(self, name, to_decimal(getattr(self, name)))

        if not Decimal("0") <= self.standard_vat_rate < Decimal("1"):
            raise ValueError(
                f"standard_vat_rate must be in [0, 1), got {self.standard_vat_rate}"
            )
        for name in ("payment_tolerance", "vat_tolerance", "commission_tolerance"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

        for name in (
            "sales_smart_code",
            "commission_smart_code",
            "fee_smart_code",
            "summary_smart_code",
        ):
            if not is_valid_smart_code(getattr(self, name)):
                raise ValueError(f"{name} '{getattr(self, name)}' is not a valid smart code")

        self.currency = self.currency.upper()
        if not is_valid_currency(self.currency):
            raise ValueError(f"currency '{self.currency}' is not an ISO 4217 code")

        logger.debug(
            "pos_config_initialized",
            extra={
                "standard_vat_rate": self.standard_vat_rate,
                "accrue_tips": self.accrue_tips,
                "currency": self.currency,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        logger.info("pos_config_loading_from_dict", extra={"keys": sorted(data.keys())})
        return cls(**data)
