"""
LineGenerator -- Pure expansion of a finance event into GL lines.

Responsibility:
    Dispatches on the event's transaction category and turns
    (FinanceEvent, PostingRule) into an ordered tuple of PostingLines.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Decimal arithmetic only; every amount is rounded ROUND_HALF_UP to the
      transaction currency's minor units.
    - VAT splits reconstruct the gross exactly: inclusive net = total - VAT,
      exclusive gross = net + VAT.
    - Zero-amount lines are never produced.
    - Line numbers are 1-based and ascending in generation order.

Failure modes:
    - LineGenerationError when the rule lacks an account template that a
      non-zero amount needs, or a POS event has no totals.

Dispatch:
    generic           DR debit[0] / CR credit[0] for the full amount
    expense           DR expense net, DR input VAT, CR payable gross
    revenue           DR cash gross, CR revenue net, CR output VAT
    bank_fee          DR fee expense / CR bank for the full amount
    pos_daily_summary DR cash, DR card settlement, DR fees, DR other tenders,
                      CR net sales, CR VAT payable, CR tips payable
"""

from decimal import Decimal
from typing import Callable, Mapping

from ledger_kernel.db.types import round_for_currency
from ledger_kernel.domain.dtos import (
    FinanceEvent,
    LineSide,
    PostingLine,
    PostingRule,
    TransactionCategory,
)
from ledger_kernel.domain.smart_code import line_smart_code
from ledger_kernel.exceptions import LineGenerationError

ZERO = Decimal("0")


def split_vat(
    amount: Decimal,
    rate: Decimal,
    inclusive: bool,
    currency: str | None = None,
) -> tuple[Decimal, Decimal, Decimal]:
    """
    Split an amount into (net, vat, gross).

    inclusive: VAT = amount * rate / (1 + rate), net = amount - VAT.
    exclusive: net = amount, VAT = amount * rate, gross = net + VAT.
    """
    amount = round_for_currency(amount, currency)
    if inclusive:
        vat = round_for_currency(amount * rate / (1 + rate), currency)
        return amount - vat, vat, amount
    vat = round_for_currency(amount * rate, currency)
    return amount, vat, amount + vat


class _LineBuilder:
    """Accumulates lines with sequential numbering and shared tags."""

    def __init__(
        self,
        event: FinanceEvent,
        rule: PostingRule,
        account_names: Mapping[str, str] | None,
    ):
        self.event = event
        self.rule = rule
        self.account_names = account_names or {}
        self.lines: list[PostingLine] = []
        context = event.business_context
        self.entity_id = str(event.source_entity_id) if event.source_entity_id else None
        self.cost_center = _opt_str(context.get("cost_center") or context.get("branch_id"))
        self.department = _opt_str(context.get("department"))

    def add(self, side: LineSide, account: str, amount: Decimal, description: str) -> None:
        if amount == ZERO:
            return
        debit = amount if side == LineSide.DEBIT else ZERO
        credit = amount if side == LineSide.CREDIT else ZERO
        self.lines.append(
            PostingLine(
                line_number=len(self.lines) + 1,
                account_code=account,
                account_name=self.account_names.get(account),
                debit_amount=debit,
                credit_amount=credit,
                description=description,
                smart_code=line_smart_code(self.event.smart_code, side.value),
                entity_id=self.entity_id,
                cost_center=self.cost_center,
                department=self.department,
            )
        )

    def account(self, side: LineSide, index: int, purpose: str) -> str:
        accounts = self.rule.debit_accounts if side == LineSide.DEBIT else self.rule.credit_accounts
        if index >= len(accounts) or not accounts[index]:
            label = "debit" if side == LineSide.DEBIT else "credit"
            raise LineGenerationError(
                self.rule.smart_code,
                f"rule has no {label}_accounts[{index}] for {purpose}",
            )
        return accounts[index]

    def vat_account(self, fallback_side: LineSide, fallback_index: int) -> str:
        handling = self.rule.vat_handling
        if handling is not None and handling.vat_account:
            return handling.vat_account
        return self.account(fallback_side, fallback_index, "VAT")

    def rounded(self, amount: Decimal) -> Decimal:
        return round_for_currency(amount, self.event.transaction_currency_code)

    def describe(self, default: str) -> str:
        return self.event.note or self.rule.description or default


def generate_lines(
    event: FinanceEvent,
    rule: PostingRule,
    account_names: Mapping[str, str] | None = None,
) -> tuple[PostingLine, ...]:
    """Expand ``event`` into GL lines according to ``rule``."""
    generator = _GENERATORS.get(event.category, _generate_generic)
    builder = _LineBuilder(event, rule, account_names)
    generator(builder)
    if not builder.lines:
        raise LineGenerationError(rule.smart_code, "event produced no non-zero lines")
    return tuple(builder.lines)


def _generate_generic(b: _LineBuilder) -> None:
    amount = b.rounded(b.event.total_amount)
    description = b.describe(b.event.transaction_type)
    b.add(LineSide.DEBIT, b.account(LineSide.DEBIT, 0, "amount"), amount, description)
    b.add(LineSide.CREDIT, b.account(LineSide.CREDIT, 0, "amount"), amount, description)


def _vat_inclusive(b: _LineBuilder) -> bool:
    override = b.event.vat_inclusive
    if override is not None:
        return override
    return b.rule.vat_handling.inclusive


def _generate_expense(b: _LineBuilder) -> None:
    if not b.rule.has_vat:
        _generate_generic(b)
        return
    net, vat, gross = split_vat(
        b.event.total_amount,
        b.rule.vat_handling.vat_rate,
        _vat_inclusive(b),
        b.event.transaction_currency_code,
    )
    description = b.describe("Expense")
    b.add(LineSide.DEBIT, b.account(LineSide.DEBIT, 0, "expense"), net, description)
    b.add(LineSide.DEBIT, b.vat_account(LineSide.DEBIT, 1), vat, "Input VAT")
    b.add(LineSide.CREDIT, b.account(LineSide.CREDIT, 0, "payment"), gross, description)


def _generate_revenue(b: _LineBuilder) -> None:
    if not b.rule.has_vat:
        _generate_generic(b)
        return
    net, vat, gross = split_vat(
        b.event.total_amount,
        b.rule.vat_handling.vat_rate,
        _vat_inclusive(b),
        b.event.transaction_currency_code,
    )
    description = b.describe("Revenue")
    b.add(LineSide.DEBIT, b.account(LineSide.DEBIT, 0, "receipt"), gross, description)
    b.add(LineSide.CREDIT, b.account(LineSide.CREDIT, 0, "revenue"), net, description)
    b.add(LineSide.CREDIT, b.vat_account(LineSide.CREDIT, 1), vat, "Output VAT")


def _generate_bank_fee(b: _LineBuilder) -> None:
    amount = b.rounded(b.event.total_amount)
    description = b.describe("Bank fee")
    b.add(LineSide.DEBIT, b.account(LineSide.DEBIT, 0, "fee expense"), amount, description)
    b.add(LineSide.CREDIT, b.account(LineSide.CREDIT, 0, "bank"), amount, description)


def _generate_pos_summary(b: _LineBuilder) -> None:
    totals = b.event.totals
    if totals is None:
        raise LineGenerationError(b.rule.smart_code, "POS summary event has no totals")

    debits = (
        (0, totals.cash_collected, "Cash collected"),
        (1, totals.card_settlement, "Card settlement"),
        (2, totals.fees, "Card processing fees"),
        (3, totals.other_tenders, "Vouchers and other tenders"),
    )
    for index, amount, description in debits:
        amount = b.rounded(amount)
        if amount > ZERO:
            b.add(LineSide.DEBIT, b.account(LineSide.DEBIT, index, description), amount, description)

    net_sales = b.rounded(totals.net_sales)
    vat = b.rounded(totals.vat)
    tips = b.rounded(totals.tips)
    if net_sales < ZERO:
        raise LineGenerationError(b.rule.smart_code, "VAT exceeds gross sales")
    if net_sales > ZERO:
        b.add(LineSide.CREDIT, b.account(LineSide.CREDIT, 0, "net sales"), net_sales, "Net sales")
    if vat > ZERO:
        b.add(LineSide.CREDIT, b.vat_account(LineSide.CREDIT, 1), vat, "VAT payable")
    if tips > ZERO:
        b.add(LineSide.CREDIT, b.account(LineSide.CREDIT, 2, "tips payable"), tips, "Tips payable")


_GENERATORS: dict[TransactionCategory, Callable[[_LineBuilder], None]] = {
    TransactionCategory.GENERIC: _generate_generic,
    TransactionCategory.EXPENSE: _generate_expense,
    TransactionCategory.REVENUE: _generate_revenue,
    TransactionCategory.BANK_FEE: _generate_bank_fee,
    TransactionCategory.POS_DAILY_SUMMARY: _generate_pos_summary,
}


def _opt_str(value: object) -> str | None:
    return str(value) if value else None
