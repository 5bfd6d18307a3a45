"""ORM models for the ledger kernel."""

from ledger_kernel.models.entity import CoreDynamicData, CoreEntity
from ledger_kernel.models.transaction import (
    UniversalTransaction,
    UniversalTransactionLine,
)

__all__ = [
    "CoreDynamicData",
    "CoreEntity",
    "UniversalTransaction",
    "UniversalTransactionLine",
]
