"""
Module: equipment_kernel.models.allocation
Responsibility: ORM persistence for active unit-to-receipt bindings.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one active allocation per serial number: a row exists only
      while the binding is active, and serial_number is UNIQUE
      (uq_allocation_serial), so the database itself rejects a second one.

Failure modes:
    - IntegrityError on a second allocation for the same serial; the
      AllocationLedger maps it to DuplicateAllocationError.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from equipment_kernel.db.base import Base, UUIDString


class AllocationRecord(Base):
    """The binding of one EquipmentUnit to one Receipt."""

    __tablename__ = "allocation_records"

    __table_args__ = (
        UniqueConstraint("serial_number", name="uq_allocation_serial"),
        Index("idx_allocation_receipt_group", "receipt_id", "group_code"),
    )

    receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("receipts.id"),
        nullable=False,
    )

    serial_number: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("equipment_units.serial_number"),
        nullable=False,
    )

    # Denormalized from the unit so per-group counts need no join.
    group_code: Mapped[str] = mapped_column(String(50), nullable=False)

    allocated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    allocated_by: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<AllocationRecord {self.serial_number} -> {self.receipt_id}>"
