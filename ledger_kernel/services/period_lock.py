"""
PeriodLockRegistry -- in-process serialization of period close vs posting.

Responsibility:
    One reader/writer lock per (organization, period code).  Postings hold
    the lock shared for their whole unit of work (resolve period, check,
    write, commit); closing a period takes it exclusively.  A close
    therefore waits for in-flight postings to commit and every posting
    started after it sees the closed status.

Architecture position:
    Kernel > Services.  Complements the database row locks taken by
    PeriodService (FOR SHARE while posting, FOR UPDATE while closing), which
    carry the same guarantee across processes on PostgreSQL.

Invariants enforced:
    - Writer preference: once a close is waiting, new postings queue behind
      it, so a busy period cannot starve its close.
    - Bounded waits: every acquisition has a timeout and fails with the
      retryable PeriodLockTimeoutError, never a business rejection.

Locks are not re-entrant.  Never acquire a period lock while already
holding one for the same period.
"""

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from ledger_kernel.exceptions import PeriodLockTimeoutError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.period_lock")

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


class _ReadWriteLock:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_shared(self, timeout: float | None) -> bool:
        with self._cond:
            acquired = self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0,
                timeout,
            )
            if acquired:
                self._readers += 1
            return acquired

    def release_shared(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_exclusive(self, timeout: float | None) -> bool:
        with self._cond:
            self._waiting_writers += 1
            try:
                acquired = self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0,
                    timeout,
                )
                if acquired:
                    self._writer = True
                return acquired
            finally:
                self._waiting_writers -= 1
                # Readers blocked on this waiting writer must re-check
                self._cond.notify_all()

    def release_exclusive(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def has_writer(self) -> bool:
        return self._writer


class PeriodLockRegistry:
    """Process-wide registry of per-period reader/writer locks."""

    def __init__(self, timeout: float | None = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._locks: dict[tuple[str, str], _ReadWriteLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, organization_id: UUID | str, period_code: str) -> _ReadWriteLock:
        key = (str(organization_id), period_code)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = _ReadWriteLock()
            return lock

    @contextmanager
    def shared(
        self,
        organization_id: UUID | str,
        period_code: str,
        timeout: float | None = None,
    ) -> Iterator[None]:
        """Hold the period for posting."""
        lock = self._lock_for(organization_id, period_code)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire_shared(wait):
            logger.warning(
                "period_lock_timeout",
                extra={"period_code": period_code, "mode": "shared", "timeout": wait},
            )
            raise PeriodLockTimeoutError(period_code, wait)
        try:
            yield
        finally:
            lock.release_shared()

    @contextmanager
    def exclusive(
        self,
        organization_id: UUID | str,
        period_code: str,
        timeout: float | None = None,
    ) -> Iterator[None]:
        """Hold the period for a status change (close, begin/cancel closing)."""
        lock = self._lock_for(organization_id, period_code)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire_exclusive(wait):
            logger.warning(
                "period_lock_timeout",
                extra={"period_code": period_code, "mode": "exclusive", "timeout": wait},
            )
            raise PeriodLockTimeoutError(period_code, wait)
        try:
            yield
        finally:
            lock.release_exclusive()

    def is_held_exclusive(self, organization_id: UUID | str, period_code: str) -> bool:
        return self._lock_for(organization_id, period_code).has_writer

    def shared_holders(self, organization_id: UUID | str, period_code: str) -> int:
        return self._lock_for(organization_id, period_code).readers


# Shared by every service in the process unless one is injected
default_period_locks = PeriodLockRegistry()
