"""
Base class for read-only selectors.

Selectors take a Session from the caller, run queries and return frozen
DTOs.  They never add, flush, commit or delete.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Read-only query access over one model family."""

    def __init__(self, session: Session):
        self.session = session
