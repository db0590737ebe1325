"""
DTOs -- immutable data crossing the engine boundary.

Responsibility:
    Input specs for receipt creation and the read models returned by the
    public facade.  Callers never receive ORM entities.

Architecture position:
    Kernel > Domain -- zero I/O, no ORM imports.  Conversion from ORM rows
    happens in selectors/.

Failure modes:
    ``ImportLineSpec.from_mapping`` raises InvalidPriceError for a price
    that is not a number.  Otherwise specs are not validated on
    construction; the ReceiptStateMachine raises typed ValidationErrors
    for blank codes, non-positive quantities and negative prices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Mapping, TypeVar
from uuid import UUID

from equipment_kernel.domain.statuses import (
    LineKind,
    ReceiptStatus,
    ReceiptType,
    UnitStatus,
)
from equipment_kernel.exceptions import InvalidPriceError

T = TypeVar("T")


# -----------------------------------------------------------------------------
# Input specs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class GroupLineSpec:
    """One ``{groupCode, quantity}`` line of a borrow request."""

    group_code: str
    quantity: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> GroupLineSpec:
        """Accept ``groupCode``/``group_code`` keys as sent by HTTP handlers."""
        return cls(
            group_code=data.get("groupCode", data.get("group_code", "")),
            quantity=data.get("quantity", 0),
        )


@dataclass(frozen=True)
class ImportLineSpec:
    """One line of an import receipt: how many new units of a group."""

    group_code: str
    quantity: int
    unit_price: Decimal | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ImportLineSpec:
        """
        Build from an HTTP payload; ``unitPrice`` may be a string or number.

        Raises:
            InvalidPriceError: the price does not parse as a decimal.
        """
        group_code = data.get("groupCode", data.get("group_code", ""))
        price = data.get("unitPrice", data.get("unit_price"))
        if price is not None:
            try:
                price = Decimal(str(price))
            except InvalidOperation:
                raise InvalidPriceError(group_code, price) from None
        return cls(
            group_code=group_code,
            quantity=data.get("quantity", 0),
            unit_price=price,
        )


# -----------------------------------------------------------------------------
# Read models
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class UnitInfo:
    serial_number: str
    group_code: str
    status: UnitStatus
    room_id: str | None
    first_used_at: datetime | None = None
    import_receipt_id: UUID | None = None


@dataclass(frozen=True)
class GroupInfo:
    code: str
    name: str
    available: int


@dataclass(frozen=True)
class RequestLineInfo:
    """A request line plus how many units are currently bound to it."""

    line_kind: LineKind
    group_code: str
    quantity: int
    allocated: int
    serial_number: str | None = None
    unit_price: Decimal | None = None

    @property
    def outstanding(self) -> int:
        return max(self.quantity - self.allocated, 0)

    @property
    def is_fulfilled(self) -> bool:
        return self.allocated >= self.quantity


@dataclass(frozen=True)
class AllocationInfo:
    receipt_id: UUID
    serial_number: str
    group_code: str
    allocated_at: datetime


@dataclass(frozen=True)
class ReceiptInfo:
    """Snapshot of a receipt, its lines and its active allocations."""

    id: UUID
    receipt_number: str
    receipt_type: ReceiptType
    status: ReceiptStatus
    requester_code: str
    approver_code: str | None
    created_at: datetime | None
    lines: tuple[RequestLineInfo, ...] = ()
    allocations: tuple[AllocationInfo, ...] = ()
    room_id: str | None = None
    from_room_id: str | None = None
    to_room_id: str | None = None
    supplier_id: str | None = None
    borrow_date: date | None = None
    due_date: date | None = None
    note: str | None = None
    reason: str | None = None
    rejection_reason: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def allocated_serials(self) -> tuple[str, ...]:
        return tuple(a.serial_number for a in self.allocations)

    @property
    def is_partial(self) -> bool:
        """True while some but not all group quantity is allocated."""
        allocated = sum(line.allocated for line in self.lines)
        requested = sum(line.quantity for line in self.lines)
        return 0 < allocated < requested


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a newest-first listing."""

    items: tuple[T, ...]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptTransitionEvent:
    """A committed receipt status change, published after commit."""

    receipt_id: UUID
    receipt_type: ReceiptType
    old_status: ReceiptStatus
    new_status: ReceiptStatus
    action: str
    occurred_at: datetime
    actor_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """The fire-and-forget payload ``{receiptId, type, oldStatus, newStatus}``."""
        return {
            "receiptId": str(self.receipt_id),
            "type": self.receipt_type.value,
            "oldStatus": self.old_status.value,
            "newStatus": self.new_status.value,
        }
