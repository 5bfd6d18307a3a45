"""
Kernel services -- the imperative shell around the pure domain.

Services take a Session from the caller.  The stateful building blocks
(PeriodService, RuleResolver, JournalWriter) only flush; PostingPipeline,
ReversalService and YearEndService own the commit boundary of their unit
of work.
"""

from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore
from ledger_kernel.services.journal_writer import (
    JournalWriter,
    JournalWriteResult,
    WriteStatus,
)
from ledger_kernel.services.period_lock import PeriodLockRegistry, default_period_locks
from ledger_kernel.services.period_service import FiscalCalendarConfig, PeriodService
from ledger_kernel.services.posting_pipeline import (
    PostingPipeline,
    PostingResult,
    PostingStatus,
)
from ledger_kernel.services.reversal_service import ReversalResult, ReversalService
from ledger_kernel.services.rule_resolver import RuleResolver, RuleSetCache
from ledger_kernel.services.year_end_service import (
    YEAR_END_CLOSE_VERSION,
    YearEndResult,
    YearEndService,
)

__all__ = [
    "EntityStore",
    "FiscalCalendarConfig",
    "JournalWriteResult",
    "JournalWriter",
    "PeriodLockRegistry",
    "PeriodService",
    "PostingPipeline",
    "PostingResult",
    "PostingStatus",
    "ReversalResult",
    "ReversalService",
    "RuleResolver",
    "RuleSetCache",
    "SqlEntityStore",
    "WriteStatus",
    "YEAR_END_CLOSE_VERSION",
    "YearEndResult",
    "YearEndService",
    "default_period_locks",
]
