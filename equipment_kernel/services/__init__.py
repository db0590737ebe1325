"""Write-side services of the equipment kernel."""

from equipment_kernel.services.allocation_ledger import AllocationLedger
from equipment_kernel.services.collaborators import (
    LoggingNotifier,
    MasterDataCollaborator,
    NotificationCollaborator,
)
from equipment_kernel.services.equipment_registry import EquipmentRegistry
from equipment_kernel.services.receipt_state_machine import ReceiptStateMachine
from equipment_kernel.services.reservation_engine import ReservationEngine
from equipment_kernel.services.reservation_service import EquipmentReservationService
from equipment_kernel.services.sequence_service import SequenceService
from equipment_kernel.services.transaction_coordinator import (
    TransactionCoordinator,
    UnitOfWork,
)

__all__ = [
    "AllocationLedger",
    "EquipmentRegistry",
    "EquipmentReservationService",
    "LoggingNotifier",
    "MasterDataCollaborator",
    "NotificationCollaborator",
    "ReceiptStateMachine",
    "ReservationEngine",
    "SequenceService",
    "TransactionCoordinator",
    "UnitOfWork",
]
