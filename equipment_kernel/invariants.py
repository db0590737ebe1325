"""
Kernel Invariants Contract.

These invariants hold at every commit boundary. No configuration,
collaborator, or caller option may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across EquipmentRegistry, AllocationLedger,
ReservationEngine, ReceiptStateMachine and the allocation_records unique
constraint.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    SINGLE_ACTIVE_ALLOCATION = "single_active_allocation"
    """At most one active AllocationRecord exists per serial number.
    Enforced by the compare-and-swap in EquipmentRegistry.transition and
    the UNIQUE constraint on allocation_records.serial_number."""

    LINE_QUANTITY_BOUND = "line_quantity_bound"
    """For a group request, allocated units never exceed the requested
    quantity. Enforced by ReceiptStateMachine before each scan-in."""

    STATUS_MATCHES_ALLOCATION = "status_matches_allocation"
    """A unit is 'available' exactly when no active AllocationRecord
    references it. Enforced by AllocationLedger, which writes the record
    and flips the unit status in the same transaction."""

    FORWARD_ONLY_RECEIPT_STATUS = "forward_only_receipt_status"
    """Receipt status only moves forward along its workflow; rejected is
    reachable from requested only. Enforced by the workflow transition
    tables in domain/workflow.py."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# Packages equipment_kernel.domain must never import (it performs no I/O).
FORBIDDEN_DOMAIN_IMPORTS: tuple[str, ...] = (
    "sqlalchemy",
    "equipment_kernel.db",
    "equipment_kernel.models",
    "equipment_kernel.services",
    "equipment_kernel.selectors",
)
