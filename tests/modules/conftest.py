"""
Shared fixtures for POS module tests.

Every fixture is opt-in.  Each test declares the summary it starts from in
its function signature.
"""

from typing import Any

import pytest

from ledger_modules.pos.models import PosDailySummary
from tests.conftest import TODAY, make_pos_summary


@pytest.fixture
def summary_json(org_id) -> dict[str, Any]:
    """The standard day: gross 10000, commissions 600 and 360, fees 120."""
    return make_pos_summary(org_id)


@pytest.fixture
def parsed_summary(summary_json) -> PosDailySummary:
    return PosDailySummary.from_dict(summary_json)


@pytest.fixture
def today():
    return TODAY
