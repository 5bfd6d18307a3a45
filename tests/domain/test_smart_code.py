"""Smart code format and per-line tag derivation."""

import pytest

from ledger_kernel.domain.smart_code import (
    AUTO_JOURNAL_SMART_CODE,
    REVERSAL_SMART_CODE,
    YEAR_END_CLOSE_SMART_CODE,
    is_valid_smart_code,
    line_smart_code,
)


class TestFormat:
    @pytest.mark.parametrize(
        "code",
        [
            "HERA.SALON.FINANCE.EXPENSE.RENT.V1",
            "HERA.SALON.POS.DAILY.SUMMARY.v2",
            AUTO_JOURNAL_SMART_CODE,
            REVERSAL_SMART_CODE,
            YEAR_END_CLOSE_SMART_CODE,
        ],
    )
    def test_valid(self, code):
        assert is_valid_smart_code(code)

    @pytest.mark.parametrize(
        "code",
        [
            "",
            "hera.salon.finance.expense.v1",
            "HERA.SALON.V1",  # too few segments
            "HERA.SALON.FINANCE.EXPENSE.RENT",  # no version
            "HERA.SALON.FINANCE.EXPENSE.RENT.V",
            "HERA.S.FINANCE.EXPENSE.V1",  # segment too short
            None,
            42,
        ],
    )
    def test_invalid(self, code):
        assert not is_valid_smart_code(code)


class TestLineSmartCode:
    def test_side_goes_before_version(self):
        assert (
            line_smart_code("HERA.SALON.FINANCE.EXPENSE.RENT.v1", "DR")
            == "HERA.SALON.FINANCE.EXPENSE.RENT.DR.v1"
        )

    def test_credit(self):
        assert line_smart_code(REVERSAL_SMART_CODE, "CR") == "HERA.FIN.GL.TXN.JE.REVERSAL.CR.v1"

    def test_derived_code_is_still_valid(self):
        assert is_valid_smart_code(line_smart_code("HERA.SALON.FINANCE.BANK.FEE.V1", "DR"))
