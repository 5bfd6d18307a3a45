"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor contract: every service receives a SQLAlchemy
    ``Session`` (or an EntityStore built on one) and persists with
    ``session.flush()``.  Services never commit; the caller
    (PostingPipeline with ``auto_commit``, session_scope(), or a test)
    owns transaction boundaries.

Failure modes:
    - A subclass calling ``session.commit()`` breaks the atomicity of
      multi-step operations such as period creation + journal write.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.
    """

    def __init__(self, session: Session):
        self.session = session
