"""
Module: equipment_kernel.selectors.equipment_selector
Responsibility: Named read queries over equipment groups and units.
Architecture position: Kernel > Selectors.
"""

from sqlalchemy import func, select

from equipment_kernel.domain.dtos import GroupInfo, UnitInfo
from equipment_kernel.domain.statuses import UnitStatus
from equipment_kernel.models.equipment import EquipmentGroup, EquipmentUnit
from equipment_kernel.selectors.base import BaseSelector


def unit_to_info(unit: EquipmentUnit) -> UnitInfo:
    return UnitInfo(
        serial_number=unit.serial_number,
        group_code=unit.group_code,
        status=UnitStatus(unit.status),
        room_id=unit.room_id,
        first_used_at=unit.first_used_at,
        import_receipt_id=unit.import_receipt_id,
    )


class EquipmentSelector(BaseSelector[EquipmentUnit]):
    """Read access to groups and units."""

    def get_unit(self, serial_number: str) -> UnitInfo | None:
        unit = self.session.execute(
            select(EquipmentUnit).where(EquipmentUnit.serial_number == serial_number)
        ).scalar_one_or_none()
        return unit_to_info(unit) if unit is not None else None

    def group_exists(self, group_code: str) -> bool:
        return self.session.execute(
            select(EquipmentGroup.id).where(EquipmentGroup.code == group_code)
        ).first() is not None

    def existing_group_codes(self, group_codes: set[str]) -> set[str]:
        """Return the subset of ``group_codes`` that have a group row."""
        if not group_codes:
            return set()
        rows = self.session.execute(
            select(EquipmentGroup.code).where(EquipmentGroup.code.in_(group_codes))
        ).scalars()
        return set(rows)

    def count_available(self, group_code: str) -> int:
        """Physical availability: units of the group in status AVAILABLE."""
        return self.session.execute(
            select(func.count(EquipmentUnit.id)).where(
                EquipmentUnit.group_code == group_code,
                EquipmentUnit.status == UnitStatus.AVAILABLE,
            )
        ).scalar_one()

    def find_available_units_in_group(
        self,
        group_code: str,
        limit: int | None = None,
    ) -> list[UnitInfo]:
        """Available units of a group, ordered by serial number."""
        stmt = (
            select(EquipmentUnit)
            .where(
                EquipmentUnit.group_code == group_code,
                EquipmentUnit.status == UnitStatus.AVAILABLE,
            )
            .order_by(EquipmentUnit.serial_number)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [unit_to_info(u) for u in self.session.execute(stmt).scalars()]

    def units_in_group(self, group_code: str) -> list[UnitInfo]:
        stmt = (
            select(EquipmentUnit)
            .where(EquipmentUnit.group_code == group_code)
            .order_by(EquipmentUnit.serial_number)
        )
        return [unit_to_info(u) for u in self.session.execute(stmt).scalars()]

    def find_units_in_room(
        self,
        room_id: str,
        status: UnitStatus | None = None,
    ) -> list[UnitInfo]:
        """Units currently located in a room, optionally of one status."""
        stmt = select(EquipmentUnit).where(EquipmentUnit.room_id == room_id)
        if status is not None:
            stmt = stmt.where(EquipmentUnit.status == status)
        stmt = stmt.order_by(EquipmentUnit.group_code, EquipmentUnit.serial_number)
        return [unit_to_info(u) for u in self.session.execute(stmt).scalars()]

    def list_groups(self) -> list[GroupInfo]:
        available = (
            select(
                EquipmentUnit.group_code,
                func.count(EquipmentUnit.id).label("available"),
            )
            .where(EquipmentUnit.status == UnitStatus.AVAILABLE)
            .group_by(EquipmentUnit.group_code)
            .subquery()
        )
        rows = self.session.execute(
            select(EquipmentGroup.code, EquipmentGroup.name, available.c.available)
            .outerjoin(available, available.c.group_code == EquipmentGroup.code)
            .order_by(EquipmentGroup.code)
        ).all()
        return [
            GroupInfo(code=code, name=name, available=count or 0)
            for code, name, count in rows
        ]
