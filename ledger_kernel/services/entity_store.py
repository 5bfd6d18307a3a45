"""
EntityStore -- port and SQLAlchemy adapter for the entity/attribute/
transaction store.

Responsibility:
    The only module that talks to the store's tables.  Everything the
    pipeline persists goes through this interface: typed entities, their
    JSON dynamic data, and journal transactions with their lines.

Architecture position:
    Kernel > Services.  ``EntityStore`` is the port that services depend
    on; ``SqlEntityStore`` is the adapter over a SQLAlchemy session.

Invariants enforced:
    - Entity get-or-create is race safe: the unique constraint on
      (organization, type, code) decides, the loser re-reads the winner.
    - Dynamic data writes are optimistic: ``expected_version`` must match
      the stored version, and the UPDATE is a compare-and-swap on it.
    - A transaction header and all its lines are flushed inside one
      SAVEPOINT -- either all rows exist or none do.

Failure modes:
    - PersistenceTimeoutError: pool checkout or statement timeout.
    - PersistenceError: any other SQLAlchemy failure.
    - IntegrityError from create_transaction is NOT translated; the
      journal writer resolves it as an idempotent duplicate.
    - OptimisticLockError on a version mismatch.
"""

from abc import ABC, abstractmethod
from functools import wraps
from typing import Any, Callable, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, selectinload

from ledger_kernel.exceptions import (
    OptimisticLockError,
    PersistenceError,
    PersistenceTimeoutError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.entity import CoreDynamicData, CoreEntity
from ledger_kernel.models.transaction import (
    UniversalTransaction,
    UniversalTransactionLine,
)

logger = get_logger("services.entity_store")

F = TypeVar("F", bound=Callable[..., Any])

_TIMEOUT_MARKERS = ("statement timeout", "canceling statement", "lock timeout", "timed out")


def _translate_errors(operation: str) -> Callable[[F], F]:
    """Map SQLAlchemy failures onto the kernel's persistence errors."""

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except IntegrityError:
                raise
            except PoolTimeoutError as exc:
                logger.warning("store_timeout", extra={"operation": operation})
                raise PersistenceTimeoutError(operation, str(exc)) from exc
            except OperationalError as exc:
                message = str(exc).lower()
                if any(marker in message for marker in _TIMEOUT_MARKERS):
                    logger.warning("store_timeout", extra={"operation": operation})
                    raise PersistenceTimeoutError(operation, str(exc.orig or exc)) from exc
                logger.warning("store_unavailable", extra={"operation": operation})
                raise PersistenceError(operation, str(exc.orig or exc)) from exc
            except SQLAlchemyError as exc:
                logger.warning("store_error", extra={"operation": operation})
                raise PersistenceError(operation, str(exc)) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


class EntityStore(ABC):
    """Port: generic entity / dynamic data / transaction store."""

    @abstractmethod
    def get_entity(
        self, organization_id: UUID, entity_type: str, entity_code: str
    ) -> CoreEntity | None: ...

    @abstractmethod
    def find_entities(self, organization_id: UUID, entity_type: str) -> list[CoreEntity]: ...

    @abstractmethod
    def get_or_create_entity(
        self,
        organization_id: UUID,
        entity_type: str,
        entity_code: str,
        entity_name: str,
        smart_code: str,
        actor_id: UUID | None = None,
    ) -> tuple[CoreEntity, bool]: ...

    @abstractmethod
    def create_entity(
        self,
        organization_id: UUID,
        entity_type: str,
        entity_code: str,
        entity_name: str,
        smart_code: str,
        actor_id: UUID | None = None,
    ) -> CoreEntity: ...

    @abstractmethod
    def get_dynamic_data(
        self,
        entity_id: UUID,
        field_name: str,
        *,
        for_update: bool = False,
        for_share: bool = False,
    ) -> CoreDynamicData | None: ...

    @abstractmethod
    def set_dynamic_data(
        self,
        entity: CoreEntity,
        field_name: str,
        value: dict[str, Any],
        smart_code: str,
        *,
        expected_version: int | None = None,
        actor_id: UUID | None = None,
    ) -> CoreDynamicData: ...

    @abstractmethod
    def create_transaction(
        self,
        header: UniversalTransaction,
        lines: list[UniversalTransactionLine],
    ) -> UniversalTransaction: ...

    @abstractmethod
    def get_transaction(
        self, organization_id: UUID, transaction_id: UUID
    ) -> UniversalTransaction | None: ...

    @abstractmethod
    def find_transaction_by_key(self, idempotency_key: str) -> UniversalTransaction | None: ...

    @abstractmethod
    def find_reversal_of(self, transaction_id: UUID) -> UniversalTransaction | None: ...


class SqlEntityStore(EntityStore):
    """
    EntityStore over a SQLAlchemy session.

    Flushes only; the session owner commits.  Row locks
    (``SELECT ... FOR UPDATE``) are requested with ``for_update=True`` and
    are a no-op on SQLite, which serializes writers itself.
    """

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -- entities -----------------------------------------------------------

    @_translate_errors("get_entity")
    def get_entity(
        self, organization_id: UUID, entity_type: str, entity_code: str
    ) -> CoreEntity | None:
        return self._session.execute(
            select(CoreEntity).where(
                CoreEntity.organization_id == organization_id,
                CoreEntity.entity_type == entity_type,
                CoreEntity.entity_code == entity_code,
            )
        ).scalar_one_or_none()

    @_translate_errors("find_entities")
    def find_entities(self, organization_id: UUID, entity_type: str) -> list[CoreEntity]:
        return list(
            self._session.execute(
                select(CoreEntity)
                .where(
                    CoreEntity.organization_id == organization_id,
                    CoreEntity.entity_type == entity_type,
                )
                .order_by(CoreEntity.entity_code)
            ).scalars()
        )

    @_translate_errors("create_entity")
    def create_entity(
        self,
        organization_id: UUID,
        entity_type: str,
        entity_code: str,
        entity_name: str,
        smart_code: str,
        actor_id: UUID | None = None,
    ) -> CoreEntity:
        entity = CoreEntity(
            organization_id=organization_id,
            entity_type=entity_type,
            entity_code=entity_code,
            entity_name=entity_name,
            smart_code=smart_code,
            created_by_id=actor_id,
        )
        with self._session.begin_nested():
            self._session.add(entity)
            self._session.flush()
        return entity

    def get_or_create_entity(
        self,
        organization_id: UUID,
        entity_type: str,
        entity_code: str,
        entity_name: str,
        smart_code: str,
        actor_id: UUID | None = None,
    ) -> tuple[CoreEntity, bool]:
        existing = self.get_entity(organization_id, entity_type, entity_code)
        if existing is not None:
            return existing, False
        try:
            return (
                self.create_entity(
                    organization_id, entity_type, entity_code, entity_name, smart_code, actor_id
                ),
                True,
            )
        except IntegrityError:
            # Lost a concurrent create; the savepoint is already rolled back
            logger.info(
                "entity_create_conflict",
                extra={"entity_type": entity_type, "entity_code": entity_code},
            )
            winner = self.get_entity(organization_id, entity_type, entity_code)
            if winner is None:
                raise PersistenceError(
                    "get_or_create_entity",
                    f"{entity_type}:{entity_code} conflicted but cannot be read",
                )
            return winner, False

    # -- dynamic data -------------------------------------------------------

    @_translate_errors("get_dynamic_data")
    def get_dynamic_data(
        self,
        entity_id: UUID,
        field_name: str,
        *,
        for_update: bool = False,
        for_share: bool = False,
    ) -> CoreDynamicData | None:
        stmt = select(CoreDynamicData).where(
            CoreDynamicData.entity_id == entity_id,
            CoreDynamicData.field_name == field_name,
        )
        if for_update:
            stmt = stmt.with_for_update()
        elif for_share:
            stmt = stmt.with_for_update(read=True)
        return self._session.execute(stmt).scalar_one_or_none()

    @_translate_errors("set_dynamic_data")
    def set_dynamic_data(
        self,
        entity: CoreEntity,
        field_name: str,
        value: dict[str, Any],
        smart_code: str,
        *,
        expected_version: int | None = None,
        actor_id: UUID | None = None,
    ) -> CoreDynamicData:
        row = self.get_dynamic_data(entity.id, field_name)

        if row is None:
            if expected_version not in (None, 0):
                raise OptimisticLockError(f"{entity.entity_code}.{field_name}", expected_version, 0)
            row = CoreDynamicData(
                entity_id=entity.id,
                organization_id=entity.organization_id,
                field_name=field_name,
                field_value_json=value,
                smart_code=smart_code,
                version=1,
                created_by_id=actor_id,
            )
            try:
                with self._session.begin_nested():
                    self._session.add(row)
                    self._session.flush()
            except IntegrityError as exc:
                raise OptimisticLockError(f"{entity.entity_code}.{field_name}", 0, 1) from exc
            return row

        current = row.version
        if expected_version is not None and current != expected_version:
            raise OptimisticLockError(f"{entity.entity_code}.{field_name}", expected_version, current)

        result = self._session.execute(
            update(CoreDynamicData)
            .where(CoreDynamicData.id == row.id, CoreDynamicData.version == current)
            .values(
                field_value_json=value,
                smart_code=smart_code,
                version=current + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._session.refresh(row)
            raise OptimisticLockError(f"{entity.entity_code}.{field_name}", current, row.version)
        self._session.refresh(row)
        return row

    # -- transactions -------------------------------------------------------

    @_translate_errors("create_transaction")
    def create_transaction(
        self,
        header: UniversalTransaction,
        lines: list[UniversalTransactionLine],
    ) -> UniversalTransaction:
        with self._session.begin_nested():
            self._session.add(header)
            self._session.flush()
            for line in sorted(lines, key=lambda item: item.line_number):
                line.transaction_id = header.id
                self._session.add(line)
            self._session.flush()
        return header

    @_translate_errors("get_transaction")
    def get_transaction(
        self, organization_id: UUID, transaction_id: UUID
    ) -> UniversalTransaction | None:
        return self._session.execute(
            select(UniversalTransaction)
            .options(selectinload(UniversalTransaction.lines))
            .where(
                UniversalTransaction.id == transaction_id,
                UniversalTransaction.organization_id == organization_id,
            )
        ).scalar_one_or_none()

    @_translate_errors("find_transaction_by_key")
    def find_transaction_by_key(self, idempotency_key: str) -> UniversalTransaction | None:
        return self._session.execute(
            select(UniversalTransaction).where(
                UniversalTransaction.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()

    @_translate_errors("find_reversal_of")
    def find_reversal_of(self, transaction_id: UUID) -> UniversalTransaction | None:
        return self._session.execute(
            select(UniversalTransaction).where(
                UniversalTransaction.reversal_of_id == transaction_id
            )
        ).scalar_one_or_none()
