"""
Pure domain layer.

Value objects, status enums, workflow tables and DTOs with no dependency
on the ORM, the database or wall-clock time (SystemClock aside).
"""

from equipment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from equipment_kernel.domain.dtos import (
    AllocationInfo,
    GroupInfo,
    GroupLineSpec,
    ImportLineSpec,
    Page,
    ReceiptInfo,
    ReceiptTransitionEvent,
    RequestLineInfo,
    UnitInfo,
)
from equipment_kernel.domain.statuses import (
    LineKind,
    ReceiptStatus,
    ReceiptType,
    UnitStatus,
)
from equipment_kernel.domain.workflow import WORKFLOWS, Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AllocationInfo",
    "GroupInfo",
    "GroupLineSpec",
    "ImportLineSpec",
    "Page",
    "ReceiptInfo",
    "ReceiptTransitionEvent",
    "RequestLineInfo",
    "UnitInfo",
    "LineKind",
    "ReceiptStatus",
    "ReceiptType",
    "UnitStatus",
    "WORKFLOWS",
    "Guard",
    "Transition",
    "Workflow",
]
