"""
AllocationLedger -- which unit currently belongs to which receipt.

Responsibility:
    Creates and deletes AllocationRecord rows and keeps each unit's status
    in step with them.  Every record write is paired with an
    EquipmentRegistry compare-and-swap in the same transaction.

Architecture position:
    Kernel > Services.  Called by ReceiptStateMachine; calls
    EquipmentRegistry.

Invariants enforced:
    - At most one active record per serial.  Checked up front, and backed
      by the UNIQUE constraint on allocation_records.serial_number for
      the concurrent case.
    - A unit is AVAILABLE exactly when no record references it: a record
      is only created alongside AVAILABLE -> hold and only deleted
      alongside hold -> AVAILABLE (or another release target).
    - scan_in is not idempotent: a second scan of the same serial without
      an intervening scan_out is a DuplicateAllocationError.

Failure modes:
    - DuplicateAllocationError: serial already held (by any receipt).
    - UnitNotFoundError: unknown serial.
    - UnitStatusConflictError: unit not AVAILABLE, or its status moved
      under us.
    - AllocationNotFoundError: scan_out of a serial the receipt does not hold.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from equipment_kernel.domain.clock import Clock, SystemClock
from equipment_kernel.domain.statuses import UnitStatus
from equipment_kernel.exceptions import (
    AllocationNotFoundError,
    DuplicateAllocationError,
    UnitStatusConflictError,
)
from equipment_kernel.logging_config import get_logger
from equipment_kernel.models.allocation import AllocationRecord
from equipment_kernel.services.base import BaseService
from equipment_kernel.services.equipment_registry import KEEP_ROOM, EquipmentRegistry

logger = get_logger("services.allocation_ledger")


class AllocationLedger(BaseService[AllocationRecord]):
    """
    Incremental unit-to-receipt binding.

    Contract:
        Callers pass the status a bound unit holds for their receipt type
        (RESERVED for borrow, PENDING_TRANSFER for transfer, LIQUIDATION
        for liquidation).  Receipt-level rules (line quotas, group match,
        receipt status) are the state machine's concern.
    """

    def __init__(
        self,
        session: Session,
        registry: EquipmentRegistry,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._registry = registry
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find_active(self, serial_number: str) -> AllocationRecord | None:
        """The active record for a serial, whichever receipt holds it."""
        return self.session.execute(
            select(AllocationRecord)
            .where(AllocationRecord.serial_number == serial_number)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def records_for(self, receipt_id: UUID) -> list[AllocationRecord]:
        return list(
            self.session.execute(
                select(AllocationRecord)
                .where(AllocationRecord.receipt_id == receipt_id)
                .order_by(AllocationRecord.serial_number)
            ).scalars()
        )

    def count_allocated(self, receipt_id: UUID, group_code: str) -> int:
        return self.session.execute(
            select(func.count(AllocationRecord.id)).where(
                AllocationRecord.receipt_id == receipt_id,
                AllocationRecord.group_code == group_code,
            )
        ).scalar_one()

    def allocated_by_group(self, receipt_id: UUID) -> dict[str, int]:
        rows = self.session.execute(
            select(AllocationRecord.group_code, func.count(AllocationRecord.id))
            .where(AllocationRecord.receipt_id == receipt_id)
            .group_by(AllocationRecord.group_code)
        ).all()
        return {group_code: count for group_code, count in rows}

    # -------------------------------------------------------------------------
    # Binding
    # -------------------------------------------------------------------------

    def scan_in(
        self,
        receipt_id: UUID,
        serial_number: str,
        hold_status: UnitStatus = UnitStatus.RESERVED,
        actor_code: str | None = None,
    ) -> AllocationRecord:
        """
        Bind an AVAILABLE unit to the receipt.

        Postconditions:
            One new AllocationRecord; unit status AVAILABLE -> hold_status.

        Raises:
            DuplicateAllocationError, UnitNotFoundError,
            UnitStatusConflictError.
        """
        existing = self.find_active(serial_number)
        if existing is not None:
            logger.warning(
                "duplicate_allocation_rejected",
                extra={
                    "serial_number": serial_number,
                    "receipt_id": str(receipt_id),
                    "held_by_receipt_id": str(existing.receipt_id),
                },
            )
            raise DuplicateAllocationError(serial_number, str(existing.receipt_id))

        unit = self._registry.get_unit(serial_number)
        if unit.status != UnitStatus.AVAILABLE:
            raise UnitStatusConflictError(
                serial_number, UnitStatus.AVAILABLE.value, UnitStatus(unit.status).value
            )

        savepoint = self.session.begin_nested()
        try:
            record = AllocationRecord(
                receipt_id=receipt_id,
                serial_number=serial_number,
                group_code=unit.group_code,
                allocated_at=self._clock.now(),
                allocated_by=actor_code,
            )
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            # A concurrent scan-in committed a record for this serial first.
            savepoint.rollback()
            raise DuplicateAllocationError(serial_number) from exc

        self._registry.transition(serial_number, UnitStatus.AVAILABLE, hold_status)

        logger.info(
            "unit_scanned_in",
            extra={
                "receipt_id": str(receipt_id),
                "serial_number": serial_number,
                "group_code": unit.group_code,
                "hold_status": hold_status.value,
            },
        )
        return record

    def scan_out(
        self,
        receipt_id: UUID,
        serial_number: str,
        hold_status: UnitStatus = UnitStatus.RESERVED,
    ) -> str:
        """
        Unbind a unit from the receipt and make it AVAILABLE again.

        Raises:
            AllocationNotFoundError: the receipt does not hold the serial.
            UnitStatusConflictError: the unit is not in hold_status.
        """
        record = self.session.execute(
            select(AllocationRecord).where(
                AllocationRecord.receipt_id == receipt_id,
                AllocationRecord.serial_number == serial_number,
            )
        ).scalar_one_or_none()
        if record is None:
            raise AllocationNotFoundError(str(receipt_id), serial_number)

        self._registry.transition(serial_number, hold_status, UnitStatus.AVAILABLE)
        self.session.delete(record)
        self.session.flush()

        logger.info(
            "unit_scanned_out",
            extra={"receipt_id": str(receipt_id), "serial_number": serial_number},
        )
        return serial_number

    def release_all(
        self,
        receipt_id: UUID,
        from_status: UnitStatus,
        to_status: UnitStatus = UnitStatus.AVAILABLE,
        *,
        room_id: object = KEEP_ROOM,
    ) -> list[str]:
        """
        End every binding of the receipt.

        Each unit moves from_status -> to_status (optionally into a new
        room) and its record is deleted.

        Returns:
            The released serial numbers, sorted.
        """
        records = self.records_for(receipt_id)
        released = []
        for record in records:
            self._registry.transition(
                record.serial_number, from_status, to_status, room_id=room_id
            )
            self.session.delete(record)
            released.append(record.serial_number)
        self.session.flush()

        logger.info(
            "allocations_released",
            extra={
                "receipt_id": str(receipt_id),
                "serials": released,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return released

    def transition_all(
        self,
        receipt_id: UUID,
        from_status: UnitStatus,
        to_status: UnitStatus,
        *,
        room_id: object = KEEP_ROOM,
        first_used_at=None,
    ) -> list[str]:
        """Move every unit held by the receipt to a new status, keeping the records."""
        serials = [r.serial_number for r in self.records_for(receipt_id)]
        for serial in serials:
            self._registry.transition(
                serial,
                from_status,
                to_status,
                room_id=room_id,
                first_used_at=first_used_at,
            )
        return serials
