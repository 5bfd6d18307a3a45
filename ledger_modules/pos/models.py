"""
POS Daily Summary Models (``ledger_modules.pos.models``).

Responsibility
--------------
Frozen dataclass value objects for one branch's business day as reported
by the POS: sales per category, payments by tender, staff commission
rows, adjustments and the optional cash-drawer reconciliation.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Built from the
submitted JSON via ``PosDailySummary.from_dict`` and consumed by
``validate_daily_summary`` and ``PosEndOfDayService``.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``from_dict`` collects every schema problem and raises one
  ``SummarySchemaError``; it performs no business checks.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from ledger_kernel.db.types import to_decimal
from ledger_kernel.domain.dtos import parse_transaction_date
from ledger_kernel.exceptions import SummarySchemaError

ZERO = Decimal("0")

SALES_CATEGORIES = ("services", "products", "packages")


@dataclass(frozen=True)
class SalesCategory:
    """Gross sales of one category (VAT inclusive) with its VAT and net."""
    name: str
    gross: Decimal
    vat: Decimal | None = None
    net: Decimal | None = None
    count: int = 0


@dataclass(frozen=True)
class CashPayment:
    amount: Decimal = ZERO
    tips: Decimal = ZERO


@dataclass(frozen=True)
class CardPayment:
    """Card tender: settlement is the amount charged for sales."""
    settlement: Decimal = ZERO
    fees: Decimal = ZERO
    tips: Decimal = ZERO


@dataclass(frozen=True)
class Payments:
    cash: CashPayment = field(default_factory=CashPayment)
    card: CardPayment = field(default_factory=CardPayment)
    vouchers: Decimal = ZERO
    other: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        """Tenders received for sales, tips excluded."""
        return self.cash.amount + self.card.settlement + self.vouchers + self.other

    @property
    def total_tips(self) -> Decimal:
        return self.cash.tips + self.card.tips

    @property
    def other_tenders(self) -> Decimal:
        return self.vouchers + self.other


@dataclass(frozen=True)
class StaffCommission:
    """One staff member's commission line for the day."""
    staff_id: str
    staff_name: str
    revenue: Decimal
    rate: Decimal
    commission: Decimal
    tips_allocated: Decimal = ZERO

    @property
    def expected_commission(self) -> Decimal:
        return self.revenue * self.rate


@dataclass(frozen=True)
class Adjustments:
    discounts: Decimal = ZERO
    refunds: Decimal = ZERO
    voids: Decimal = ZERO


@dataclass(frozen=True)
class Reconciliation:
    """Cash drawer count: expected vs counted cash."""
    expected: Decimal
    actual: Decimal
    variance: Decimal


@dataclass(frozen=True)
class SalesTotal:
    """Totals line as reported by the POS, cross-checked against categories."""
    gross: Decimal
    vat: Decimal | None = None
    net: Decimal | None = None


@dataclass(frozen=True)
class PosDailySummary:
    """One POS business day for one branch."""
    organization_id: str
    business_date: date
    branch_id: str
    sales: tuple[SalesCategory, ...]
    payments: Payments
    staff: tuple[StaffCommission, ...] = ()
    adjustments: Adjustments = field(default_factory=Adjustments)
    reconciliation: Reconciliation | None = None
    reported_total: SalesTotal | None = None
    currency: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def gross_sales(self) -> Decimal:
        return sum((c.gross for c in self.sales), ZERO)

    @property
    def total_commission(self) -> Decimal:
        return sum((s.commission for s in self.staff), ZERO)

    def total_vat(self, computed: Mapping[str, Decimal] | None = None) -> Decimal:
        """Sum of category VAT; ``computed`` fills categories without one."""
        total = ZERO
        for category in self.sales:
            if category.vat is not None:
                total += category.vat
            elif computed is not None:
                total += computed.get(category.name, ZERO)
        return total

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PosDailySummary":
        """
        Parse a submitted summary.

        Raises:
            SummarySchemaError: Listing every structural problem.
        """
        if not isinstance(data, Mapping):
            raise SummarySchemaError(["summary must be a JSON object"])
        parser = _Parser()

        organization_id = parser.text(data, "organization_id")
        branch_id = str(data.get("branch_id") or "main")
        business_date = parser.day(data, "business_date")

        sales: list[SalesCategory] = []
        raw_sales = data.get("sales")
        reported_total = None
        if not isinstance(raw_sales, Mapping) or not raw_sales:
            parser.errors.append("sales must be a non-empty object")
        else:
            for name, block in raw_sales.items():
                if name == "total":
                    if isinstance(block, Mapping):
                        reported_total = SalesTotal(
                            gross=parser.amount(block, "gross", "sales.total"),
                            vat=parser.opt_amount(block, "vat", "sales.total"),
                            net=parser.opt_amount(block, "net", "sales.total"),
                        )
                    else:
                        parser.errors.append("sales.total must be an object")
                    continue
                if name not in SALES_CATEGORIES:
                    parser.errors.append(
                        f"sales.{name} is not a known category {SALES_CATEGORIES}"
                    )
                    continue
                if not isinstance(block, Mapping):
                    parser.errors.append(f"sales.{name} must be an object")
                    continue
                sales.append(
                    SalesCategory(
                        name=name,
                        gross=parser.amount(block, "gross", f"sales.{name}"),
                        vat=parser.opt_amount(block, "vat", f"sales.{name}"),
                        net=parser.opt_amount(block, "net", f"sales.{name}"),
                        count=parser.count(block, "count", f"sales.{name}"),
                    )
                )

        payments = parser.payments(data.get("payments"))

        staff: list[StaffCommission] = []
        raw_staff = data.get("staff") or []
        if not isinstance(raw_staff, list):
            parser.errors.append("staff must be a list")
            raw_staff = []
        for index, row in enumerate(raw_staff):
            where = f"staff[{index}]"
            if not isinstance(row, Mapping):
                parser.errors.append(f"{where} must be an object")
                continue
            staff_id = row.get("staff_id")
            if not staff_id:
                parser.errors.append(f"{where}.staff_id is required")
            staff.append(
                StaffCommission(
                    staff_id=str(staff_id or ""),
                    staff_name=str(row.get("staff_name") or staff_id or ""),
                    revenue=parser.amount(row, "revenue", where),
                    rate=parser.amount(row, "rate", where),
                    commission=parser.amount(row, "commission", where),
                    tips_allocated=parser.opt_amount(row, "tips_allocated", where) or ZERO,
                )
            )

        adjustments = Adjustments()
        raw_adj = data.get("adjustments")
        if raw_adj is not None:
            if isinstance(raw_adj, Mapping):
                adjustments = Adjustments(
                    discounts=parser.opt_amount(raw_adj, "discounts", "adjustments") or ZERO,
                    refunds=parser.opt_amount(raw_adj, "refunds", "adjustments") or ZERO,
                    voids=parser.opt_amount(raw_adj, "voids", "adjustments") or ZERO,
                )
            else:
                parser.errors.append("adjustments must be an object")

        reconciliation = None
        raw_rec = data.get("reconciliation")
        if raw_rec is not None:
            if isinstance(raw_rec, Mapping):
                reconciliation = Reconciliation(
                    expected=parser.amount(raw_rec, "expected", "reconciliation", signed=True),
                    actual=parser.amount(raw_rec, "actual", "reconciliation", signed=True),
                    variance=parser.amount(raw_rec, "variance", "reconciliation", signed=True),
                )
            else:
                parser.errors.append("reconciliation must be an object")

        if parser.errors:
            raise SummarySchemaError(parser.errors)

        currency = data.get("currency")
        return cls(
            organization_id=organization_id,
            business_date=business_date,
            branch_id=branch_id,
            sales=tuple(sales),
            payments=payments,
            staff=tuple(staff),
            adjustments=adjustments,
            reconciliation=reconciliation,
            reported_total=reported_total,
            currency=str(currency).upper() if currency else None,
            raw=dict(data),
        )


class _Parser:
    """Collects schema errors while reading typed values."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def text(self, data: Mapping[str, Any], key: str) -> str:
        value = data.get(key)
        if not value or not str(value).strip():
            self.errors.append(f"{key} is required")
            return ""
        return str(value)

    def day(self, data: Mapping[str, Any], key: str) -> date:
        try:
            return parse_transaction_date(data.get(key))
        except ValueError:
            self.errors.append(f"{key} must be a YYYY-MM-DD date")
            return date.min

    def amount(
        self, data: Mapping[str, Any], key: str, where: str, signed: bool = False
    ) -> Decimal:
        if data.get(key) is None:
            self.errors.append(f"{where}.{key} is required")
            return ZERO
        value = self.opt_amount(data, key, where, signed)
        return ZERO if value is None else value

    def opt_amount(
        self, data: Mapping[str, Any], key: str, where: str, signed: bool = False
    ) -> Decimal | None:
        raw = data.get(key)
        if raw is None:
            return None
        try:
            value = to_decimal(raw)
        except ValueError:
            self.errors.append(f"{where}.{key} must be a number")
            return None
        if value < 0 and not signed:
            self.errors.append(f"{where}.{key} must not be negative")
            return None
        return value

    def count(self, data: Mapping[str, Any], key: str, where: str) -> int:
        raw = data.get(key, 0)
        if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
            self.errors.append(f"{where}.{key} must be a non-negative integer")
            return 0
        return raw

    def payments(self, raw: Any) -> Payments:
        if not isinstance(raw, Mapping):
            self.errors.append("payments must be an object")
            return Payments()
        cash = raw.get("cash") or {}
        card = raw.get("card") or {}
        if not isinstance(cash, Mapping) or not isinstance(card, Mapping):
            self.errors.append("payments.cash and payments.card must be objects")
            return Payments()
        return Payments(
            cash=CashPayment(
                amount=self.opt_amount(cash, "amount", "payments.cash") or ZERO,
                tips=self.opt_amount(cash, "tips", "payments.cash") or ZERO,
            ),
            card=CardPayment(
                settlement=self.opt_amount(card, "settlement", "payments.card") or ZERO,
                fees=self.opt_amount(card, "fees", "payments.card") or ZERO,
                tips=self.opt_amount(card, "tips", "payments.card") or ZERO,
            ),
            vouchers=self.opt_amount(raw, "vouchers", "payments") or ZERO,
            other=self.opt_amount(raw, "other", "payments") or ZERO,
        )
