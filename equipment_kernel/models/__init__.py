"""ORM models for the equipment kernel."""

from equipment_kernel.models.allocation import AllocationRecord
from equipment_kernel.models.equipment import EquipmentGroup, EquipmentUnit
from equipment_kernel.models.receipt import Receipt, RequestLine
from equipment_kernel.models.sequence import SequenceCounter

__all__ = [
    "AllocationRecord",
    "EquipmentGroup",
    "EquipmentUnit",
    "Receipt",
    "RequestLine",
    "SequenceCounter",
]
