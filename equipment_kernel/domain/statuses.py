"""
Status enums (``equipment_kernel.domain.statuses``).

Responsibility
--------------
One enum per status axis, replacing free-form status strings.  Values are
the strings persisted in the database.

Architecture position
---------------------
**Kernel domain layer** -- pure values.  ZERO I/O.
"""

from enum import Enum


class UnitStatus(str, Enum):
    """Status of a serialized equipment unit.

    AVAILABLE means no active allocation; every other value means exactly
    one active allocation references the unit.  LIQUIDATION is terminal.
    """

    AVAILABLE = "available"
    RESERVED = "reserved"
    IN_USE = "in_use"
    PENDING_TRANSFER = "pending_transfer"
    LIQUIDATION = "liquidation"


class ReceiptType(str, Enum):
    """Kind of request document driving a workflow."""

    BORROW = "borrow"
    TRANSFER = "transfer"
    LIQUIDATION = "liquidation"
    IMPORT = "import"


class ReceiptStatus(str, Enum):
    """Union of all receipt statuses.

    Which of these a receipt may hold is decided by its type's workflow
    (``equipment_kernel.domain.workflow.WORKFLOWS``).
    """

    REQUESTED = "requested"
    APPROVED = "approved"
    PROCESSING = "processing"
    BORROWED = "borrowed"
    RETURNED = "returned"
    TRANSFERRED = "transferred"
    LIQUIDATED = "liquidated"
    RECEIVED = "received"
    REJECTED = "rejected"


class LineKind(str, Enum):
    """Shape of a request line."""

    GROUP = "group"  # group code + quantity
    UNIT = "unit"    # one explicit serial number


# Status a unit takes while bound to a receipt of the given type.
HOLD_STATUS: dict[ReceiptType, UnitStatus] = {
    ReceiptType.BORROW: UnitStatus.RESERVED,
    ReceiptType.TRANSFER: UnitStatus.PENDING_TRANSFER,
    ReceiptType.LIQUIDATION: UnitStatus.LIQUIDATION,
}

# Receipt number prefixes, one counter per type.
RECEIPT_NUMBER_PREFIX: dict[ReceiptType, str] = {
    ReceiptType.BORROW: "BR",
    ReceiptType.TRANSFER: "TR",
    ReceiptType.LIQUIDATION: "LQ",
    ReceiptType.IMPORT: "IM",
}

# Borrow statuses whose unfulfilled quantity is promised against the pool.
OUTSTANDING_BORROW_STATUSES: frozenset[ReceiptStatus] = frozenset({
    ReceiptStatus.APPROVED,
    ReceiptStatus.PROCESSING,
})
