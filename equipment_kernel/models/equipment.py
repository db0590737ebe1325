"""
Module: equipment_kernel.models.equipment
Responsibility: ORM persistence for equipment groups and serialized units.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/statuses.py only.

Invariants enforced:
    - serial_number is unique (uq_unit_serial).
    - A unit's status is one of UnitStatus; it changes only through
      EquipmentRegistry.transition (compare-and-swap UPDATE).
    - Units are never deleted.  LIQUIDATION is terminal.

Failure modes:
    - IntegrityError on duplicate serial or unknown group code.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from equipment_kernel.db.base import TrackedBase, UUIDString
from equipment_kernel.domain.statuses import UnitStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class EquipmentGroup(TrackedBase):
    """
    Classification of interchangeable units (by type/model).

    Contract:
        The group row is the lock target that serializes competing borrow
        approvals for the group.  Nominal unit counts are never stored;
        availability is always derived from EquipmentUnit rows.
    """

    __tablename__ = "equipment_groups"

    __table_args__ = (
        UniqueConstraint("code", name="uq_group_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<EquipmentGroup {self.code}>"


class EquipmentUnit(TrackedBase):
    """
    One physical, serially-identified item of equipment.

    Guarantees:
        - status AVAILABLE <=> no active AllocationRecord references the unit.
        - first_used_at is written at most once.
    """

    __tablename__ = "equipment_units"

    __table_args__ = (
        UniqueConstraint("serial_number", name="uq_unit_serial"),
        Index("idx_unit_group_status", "group_code", "status"),
        Index("idx_unit_room", "room_id"),
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    group_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("equipment_groups.code"),
        nullable=False,
    )

    status: Mapped[UnitStatus] = mapped_column(
        SAEnum(
            UnitStatus,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            name="unit_status",
        ),
        default=UnitStatus.AVAILABLE,
        nullable=False,
    )

    # Room identifier supplied by master data; opaque to the engine.
    room_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    first_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Import receipt that produced the unit, if any.
    import_receipt_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<EquipmentUnit {self.serial_number}: {self.status.value}>"

    @property
    def is_available(self) -> bool:
        return self.status == UnitStatus.AVAILABLE

    @property
    def is_liquidated(self) -> bool:
        return self.status == UnitStatus.LIQUIDATION
