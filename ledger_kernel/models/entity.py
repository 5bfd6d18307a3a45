"""
Module: ledger_kernel.models.entity
Responsibility: ORM persistence for the generic entity/attribute store --
    typed entities and the dynamic-data attributes attached to them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Entities hold everything that is not a journal: fiscal periods and years,
the per-organization posting rule configuration, POS daily summary audit
records.  Their state lives in ``core_dynamic_data`` as JSON blobs.

Invariants enforced:
    - (organization_id, entity_type, entity_code) is unique, so lazy
      get-or-create of a period or configuration object yields one row
      even under concurrent creation.
    - (entity_id, field_name) is unique; every write bumps ``version``
      for optimistic concurrency.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


class CoreEntity(TrackedBase):
    """A typed record owned by one organization."""

    __tablename__ = "core_entities"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "entity_type", "entity_code",
            name="uq_entity_org_type_code",
        ),
        Index("idx_entity_org_type", "organization_id", "entity_type"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. "fiscal_period", "fiscal_year", "posting_rules", "pos_daily_summary"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)

    entity_code: Mapped[str] = mapped_column(String(100), nullable=False)

    smart_code: Mapped[str] = mapped_column(String(120), nullable=False)

    dynamic_data: Mapped[list["CoreDynamicData"]] = relationship(
        back_populates="entity",
        order_by="CoreDynamicData.field_name",
    )

    def __repr__(self) -> str:
        return f"<CoreEntity {self.entity_type}:{self.entity_code}>"


class CoreDynamicData(TrackedBase):
    """One named JSON attribute of an entity."""

    __tablename__ = "core_dynamic_data"

    __table_args__ = (
        UniqueConstraint("entity_id", "field_name", name="uq_dynamic_entity_field"),
        Index("idx_dynamic_org", "organization_id"),
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("core_entities.id"),
        nullable=False,
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    field_name: Mapped[str] = mapped_column(String(100), nullable=False)

    field_value_json: Mapped[dict[str, Any]] = mapped_column(nullable=False)

    smart_code: Mapped[str] = mapped_column(String(120), nullable=False)

    # Optimistic concurrency counter, starts at 1
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    entity: Mapped[CoreEntity] = relationship(back_populates="dynamic_data")

    def __repr__(self) -> str:
        return f"<CoreDynamicData {self.field_name} v{self.version}>"
