"""
Module: equipment_kernel.models.receipt
Responsibility: ORM persistence for receipts (borrow, transfer, liquidation,
    import) and their request lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/statuses.py only.

Invariants enforced:
    - receipt_number is unique per receipt (uq_receipt_number).
    - Status changes are driven by ReceiptStateMachine through the
      workflow tables; the receipt row is locked (FOR UPDATE) first.
    - Lines are immutable after creation.

Failure modes:
    - IntegrityError on duplicate receipt number or (receipt, line_no).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from equipment_kernel.db.base import Base, TrackedBase, UUIDString
from equipment_kernel.domain.statuses import LineKind, ReceiptStatus, ReceiptType
from equipment_kernel.models.equipment import _enum_values


class Receipt(TrackedBase):
    """
    A request document driving one workflow instance.

    Contract:
        One Receipt owns one or more RequestLines.  Which of the optional
        columns are populated depends on receipt_type:

        * borrow: room_id (destination), borrow_date, due_date
        * transfer: from_room_id, to_room_id
        * liquidation: reason
        * import: supplier_id, room_id (where received units land)
    """

    __tablename__ = "receipts"

    __table_args__ = (
        UniqueConstraint("receipt_number", name="uq_receipt_number"),
        Index("idx_receipt_type_status", "receipt_type", "status"),
        Index("idx_receipt_created", "created_at"),
    )

    receipt_number: Mapped[str] = mapped_column(String(20), nullable=False)

    receipt_type: Mapped[ReceiptType] = mapped_column(
        SAEnum(
            ReceiptType,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            name="receipt_type",
        ),
        nullable=False,
    )

    status: Mapped[ReceiptStatus] = mapped_column(
        SAEnum(
            ReceiptStatus,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            name="receipt_status",
        ),
        default=ReceiptStatus.REQUESTED,
        nullable=False,
    )

    # Opaque identity codes from the auth collaborator
    requester_code: Mapped[str] = mapped_column(String(50), nullable=False)
    approver_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    room_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    from_room_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_room_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    borrow_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    lines: Mapped[list["RequestLine"]] = relationship(
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="RequestLine.line_no",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Receipt {self.receipt_number} "
            f"{self.receipt_type.value}: {self.status.value}>"
        )

    @property
    def group_lines(self) -> list["RequestLine"]:
        return [line for line in self.lines if line.line_kind == LineKind.GROUP]

    @property
    def unit_lines(self) -> list["RequestLine"]:
        return [line for line in self.lines if line.line_kind == LineKind.UNIT]


class RequestLine(Base):
    """
    One line of a receipt.

    A GROUP line carries group_code + quantity (borrow, import).  A UNIT
    line names one serial_number (transfer, liquidation); its quantity is
    always 1 and group_code is copied from the unit at creation.
    """

    __tablename__ = "request_lines"

    __table_args__ = (
        UniqueConstraint("receipt_id", "line_no", name="uq_request_line_no"),
        Index("idx_request_line_group", "group_code"),
    )

    receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("receipts.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    line_kind: Mapped[LineKind] = mapped_column(
        SAEnum(
            LineKind,
            native_enum=False,
            length=10,
            values_callable=_enum_values,
            name="line_kind",
        ),
        nullable=False,
    )

    group_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("equipment_groups.code"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    receipt: Mapped[Receipt] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        target = self.serial_number or f"{self.group_code} x{self.quantity}"
        return f"<RequestLine {self.line_no}: {target}>"
