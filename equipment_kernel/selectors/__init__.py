"""Read-only query selectors."""

from equipment_kernel.selectors.base import BaseSelector
from equipment_kernel.selectors.equipment_selector import EquipmentSelector
from equipment_kernel.selectors.receipt_selector import ReceiptSelector

__all__ = ["BaseSelector", "EquipmentSelector", "ReceiptSelector"]
