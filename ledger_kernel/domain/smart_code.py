"""
Smart codes -- dotted, versioned taxonomy strings.

A smart code such as ``HERA.SALON.FINANCE.EXPENSE.RENT.v1`` is both the
posting-rule lookup key of a finance event and the audit tag stamped on
every persisted record and line.
"""

import re

SMART_CODE_PATTERN = re.compile(
    r"^[A-Z][A-Z0-9]{1,15}(?:\.[A-Z0-9_]{2,30}){3,8}\.[Vv][0-9]+$"
)

# System smart codes stamped on journal headers
AUTO_JOURNAL_SMART_CODE = "HERA.FIN.GL.TXN.JE.AUTO.v1"
REVERSAL_SMART_CODE = "HERA.FIN.GL.TXN.JE.REVERSAL.v1"
YEAR_END_CLOSE_SMART_CODE = "HERA.FIN.GL.YEAR.END.CLOSE.v1"

# Entity smart codes
FISCAL_PERIOD_SMART_CODE = "HERA.FIN.FISCAL.PERIOD.ENTITY.v1"
FISCAL_YEAR_SMART_CODE = "HERA.FIN.FISCAL.YEAR.ENTITY.v1"
POSTING_RULES_SMART_CODE = "HERA.FIN.CONFIG.POSTING.RULES.v1"


def is_valid_smart_code(value: object) -> bool:
    return isinstance(value, str) and SMART_CODE_PATTERN.match(value) is not None


def line_smart_code(smart_code: str, side: str) -> str:
    """
    Derive the per-line audit tag from an event smart code.

    The side segment (``DR`` / ``CR``) goes in front of the version:
    ``HERA.SALON.FINANCE.EXPENSE.RENT.v1`` -> ``HERA.SALON.FINANCE.EXPENSE.RENT.DR.v1``.
    """
    head, _, version = smart_code.rpartition(".")
    if not head:
        return f"{smart_code}.{side}"
    return f"{head}.{side}.{version}"
