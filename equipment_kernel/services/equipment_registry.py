"""
EquipmentRegistry -- authoritative status of every serialized unit.

Responsibility:
    Owns the ``equipment_units`` and ``equipment_groups`` rows.  The one
    primitive the rest of the engine builds on is ``transition()``, a
    compare-and-swap on the unit's status.

Architecture position:
    Kernel > Services.  Called by AllocationLedger (scan-in/scan-out,
    release) and ReceiptStateMachine (import receive, group locks).

Invariants enforced:
    - Status changes are a single ``UPDATE ... WHERE serial = :s AND
      status = :expected``.  Zero rows updated means another transaction
      got there first (or the caller's expectation is wrong), surfaced as
      UnitStatusConflictError.  Two concurrent flips of the same unit can
      never both succeed.
    - A unit's first-use timestamp is written once (COALESCE in the UPDATE).
    - Units are never deleted.

Failure modes:
    - UnitNotFoundError / GroupNotFoundError for unknown identifiers.
    - UnitStatusConflictError when the compare-and-swap loses.
    - DuplicateSerialError when registering an existing serial.
"""

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from equipment_kernel.domain.clock import Clock, SystemClock
from equipment_kernel.domain.statuses import UnitStatus
from equipment_kernel.exceptions import (
    DuplicateSerialError,
    GroupNotFoundError,
    UnitNotFoundError,
    UnitStatusConflictError,
)
from equipment_kernel.logging_config import get_logger
from equipment_kernel.models.equipment import EquipmentGroup, EquipmentUnit
from equipment_kernel.services.base import BaseService

logger = get_logger("services.equipment_registry")

# Sentinel: leave room_id untouched in transition().
KEEP_ROOM = object()


class EquipmentRegistry(BaseService[EquipmentUnit]):
    """
    Unit and group persistence with compare-and-swap status changes.

    Guarantees:
        - ``transition()`` touches only status, room and first-use metadata.
        - Objects returned after a transition reflect the database row.

    Non-goals:
        - Does NOT know about receipts or allocations.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        serial_separator: str = "-",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._serial_separator = serial_separator

    @property
    def serial_separator(self) -> str:
        return self._serial_separator

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def get_group(self, group_code: str) -> EquipmentGroup:
        group = self.session.execute(
            select(EquipmentGroup).where(EquipmentGroup.code == group_code)
        ).scalar_one_or_none()
        if group is None:
            raise GroupNotFoundError(group_code)
        return group

    def register_group(
        self,
        code: str,
        name: str,
        actor_code: str,
        description: str | None = None,
    ) -> EquipmentGroup:
        """
        Create the group row, or return the existing one unchanged.

        The engine only needs the row to lock and count against; naming
        and editing groups belongs to master data.
        """
        existing = self.session.execute(
            select(EquipmentGroup).where(EquipmentGroup.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        savepoint = self.session.begin_nested()
        try:
            group = EquipmentGroup(
                code=code,
                name=name,
                description=description,
                created_by=actor_code,
            )
            self.session.add(group)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            return self.get_group(code)

        logger.info(
            "equipment_group_registered",
            extra={"group_code": code, "actor_code": actor_code},
        )
        return group

    def lock_groups(self, group_codes: Iterable[str]) -> list[EquipmentGroup]:
        """
        Row-lock the given groups in code order.

        Approvals competing for a group serialize here: the second waits
        until the first commits, then recounts.  A fixed lock order keeps
        two multi-group approvals from deadlocking.

        Raises:
            GroupNotFoundError: for the first code without a group row.
        """
        codes = sorted(set(group_codes))
        if not codes:
            return []
        groups = list(
            self.session.execute(
                select(EquipmentGroup)
                .where(EquipmentGroup.code.in_(codes))
                .order_by(EquipmentGroup.code)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        found = {g.code for g in groups}
        for code in codes:
            if code not in found:
                raise GroupNotFoundError(code)
        logger.debug("equipment_groups_locked", extra={"group_codes": codes})
        return groups

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    def get_unit(self, serial_number: str) -> EquipmentUnit:
        """Load a unit, refreshed from the database."""
        unit = self.session.execute(
            select(EquipmentUnit)
            .where(EquipmentUnit.serial_number == serial_number)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(serial_number)
        return unit

    def get_status(self, serial_number: str) -> UnitStatus:
        status = self.session.execute(
            select(EquipmentUnit.status)
            .where(EquipmentUnit.serial_number == serial_number)
        ).scalar_one_or_none()
        if status is None:
            raise UnitNotFoundError(serial_number)
        return UnitStatus(status)

    def transition(
        self,
        serial_number: str,
        from_status: UnitStatus,
        to_status: UnitStatus,
        *,
        room_id: object = KEEP_ROOM,
        first_used_at: datetime | None = None,
    ) -> EquipmentUnit:
        """
        Compare-and-swap the unit's status.

        Args:
            serial_number: Unit to change.
            from_status: Status the unit must hold at write time.
            to_status: New status.
            room_id: New room, or KEEP_ROOM to leave it.
            first_used_at: Stamped only if the unit has none yet.

        Returns:
            The refreshed unit.

        Raises:
            UnitNotFoundError: no such serial.
            UnitStatusConflictError: current status != from_status.
        """
        values: dict = {"status": to_status}
        if room_id is not KEEP_ROOM:
            values["room_id"] = room_id
        if first_used_at is not None:
            values["first_used_at"] = func.coalesce(
                EquipmentUnit.first_used_at, first_used_at
            )

        result = self.session.execute(
            update(EquipmentUnit)
            .where(
                EquipmentUnit.serial_number == serial_number,
                EquipmentUnit.status == from_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            actual = self.get_status(serial_number)
            logger.warning(
                "unit_status_conflict",
                extra={
                    "serial_number": serial_number,
                    "expected_status": from_status.value,
                    "actual_status": actual.value,
                    "target_status": to_status.value,
                },
            )
            raise UnitStatusConflictError(
                serial_number, from_status.value, actual.value
            )

        logger.info(
            "unit_status_transitioned",
            extra={
                "serial_number": serial_number,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return self.get_unit(serial_number)

    def add_unit(
        self,
        serial_number: str,
        group_code: str,
        actor_code: str,
        room_id: str | None = None,
        import_receipt_id: UUID | None = None,
        description: str | None = None,
    ) -> EquipmentUnit:
        """
        Register one new AVAILABLE unit.

        Raises:
            GroupNotFoundError: unknown group.
            DuplicateSerialError: serial already registered.
        """
        self.get_group(group_code)

        exists = self.session.execute(
            select(EquipmentUnit.id).where(EquipmentUnit.serial_number == serial_number)
        ).first()
        if exists is not None:
            raise DuplicateSerialError(serial_number)

        savepoint = self.session.begin_nested()
        try:
            unit = EquipmentUnit(
                serial_number=serial_number,
                group_code=group_code,
                status=UnitStatus.AVAILABLE,
                room_id=room_id,
                import_receipt_id=import_receipt_id,
                description=description,
                created_by=actor_code,
            )
            self.session.add(unit)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateSerialError(serial_number) from exc

        logger.info(
            "equipment_unit_registered",
            extra={
                "serial_number": serial_number,
                "group_code": group_code,
                "room_id": room_id,
            },
        )
        return unit

    def create_units(
        self,
        group_code: str,
        quantity: int,
        serial_prefix: str,
        actor_code: str,
        room_id: str | None = None,
        import_receipt_id: UUID | None = None,
    ) -> list[EquipmentUnit]:
        """Create ``quantity`` AVAILABLE units named ``<prefix>-001``, ``-002`` ..."""
        sep = self._serial_separator
        return [
            self.add_unit(
                serial_number=f"{serial_prefix}{sep}{i:03d}",
                group_code=group_code,
                actor_code=actor_code,
                room_id=room_id,
                import_receipt_id=import_receipt_id,
            )
            for i in range(1, quantity + 1)
        ]
