"""
EquipmentRegistry.

Covers:
- Compare-and-swap status transitions (win, lose, unknown serial)
- Room moves and the write-once first-use stamp
- Group registration idempotence and group locks
- Unit registration and import serial naming
"""

from datetime import UTC, timedelta

import pytest

from equipment_kernel.domain.statuses import UnitStatus
from equipment_kernel.exceptions import (
    DuplicateSerialError,
    GroupNotFoundError,
    UnitNotFoundError,
    UnitStatusConflictError,
)


def _as_utc_naive(value):
    # SQLite hands back naive datetimes; PostgreSQL returns them in the session zone.
    return value.astimezone(UTC).replace(tzinfo=None) if value.tzinfo else value


class TestTransition:
    """Compare-and-swap on unit status."""

    def test_transition_when_expected_status_matches(self, registry, stock_units):
        serial = stock_units("PROJ-01", 1)[0]
        unit = registry.transition(serial, UnitStatus.AVAILABLE, UnitStatus.RESERVED)
        assert unit.status == UnitStatus.RESERVED
        assert registry.get_status(serial) == UnitStatus.RESERVED

    def test_transition_loses_when_status_moved(self, registry, stock_units):
        """A stale expectation is a conflict and changes nothing."""
        serial = stock_units("PROJ-01", 1)[0]
        registry.transition(serial, UnitStatus.AVAILABLE, UnitStatus.RESERVED)

        with pytest.raises(UnitStatusConflictError) as exc_info:
            registry.transition(serial, UnitStatus.AVAILABLE, UnitStatus.PENDING_TRANSFER)

        assert exc_info.value.expected == "available"
        assert exc_info.value.actual == "reserved"
        assert registry.get_status(serial) == UnitStatus.RESERVED

    def test_transition_unknown_serial(self, registry, db_tables):
        with pytest.raises(UnitNotFoundError):
            registry.transition("NOPE-001", UnitStatus.AVAILABLE, UnitStatus.RESERVED)

    def test_room_changes_only_when_given(self, registry, stock_units):
        serial = stock_units("PROJ-01", 1, room_id="R-101")[0]
        unit = registry.transition(serial, UnitStatus.AVAILABLE, UnitStatus.RESERVED)
        assert unit.room_id == "R-101"
        unit = registry.transition(serial, UnitStatus.RESERVED, UnitStatus.IN_USE, room_id="R-305")
        assert unit.room_id == "R-305"

    def test_first_use_stamped_once(self, registry, stock_units, deterministic_clock):
        serial = stock_units("PROJ-01", 1)[0]
        first = deterministic_clock.now()
        registry.transition(serial, UnitStatus.AVAILABLE, UnitStatus.IN_USE, first_used_at=first)
        registry.transition(serial, UnitStatus.IN_USE, UnitStatus.AVAILABLE)
        unit = registry.transition(
            serial,
            UnitStatus.AVAILABLE,
            UnitStatus.IN_USE,
            first_used_at=first + timedelta(days=3),
        )
        assert unit.first_used_at is not None
        assert _as_utc_naive(unit.first_used_at) == _as_utc_naive(first)

    def test_conflict_is_logged(self, registry, stock_units, captured_logs):
        serial = stock_units("PROJ-01", 1)[0]
        with pytest.raises(UnitStatusConflictError):
            registry.transition(serial, UnitStatus.IN_USE, UnitStatus.AVAILABLE)
        records = [r for r in captured_logs() if r["message"] == "unit_status_conflict"]
        assert records and records[0]["actual_status"] == "available"


class TestGroups:
    def test_register_group_is_idempotent(self, registry, test_actor_code):
        first = registry.register_group("CAM-02", "Cameras", test_actor_code)
        again = registry.register_group("CAM-02", "Renamed", test_actor_code)
        assert again.id == first.id
        assert again.name == "Cameras"

    def test_get_group_unknown(self, registry, db_tables):
        with pytest.raises(GroupNotFoundError):
            registry.get_group("NOPE")

    def test_lock_groups_returns_sorted(self, registry, test_actor_code):
        for code in ("LAP-03", "CAM-02", "PROJ-01"):
            registry.register_group(code, code, test_actor_code)
        locked = registry.lock_groups(["PROJ-01", "CAM-02", "LAP-03", "CAM-02"])
        assert [g.code for g in locked] == ["CAM-02", "LAP-03", "PROJ-01"]

    def test_lock_groups_missing_group(self, registry, test_actor_code):
        registry.register_group("CAM-02", "Cameras", test_actor_code)
        with pytest.raises(GroupNotFoundError) as exc_info:
            registry.lock_groups(["CAM-02", "GHOST"])
        assert exc_info.value.group_code == "GHOST"

    def test_lock_no_groups(self, registry, db_tables):
        assert registry.lock_groups([]) == []


class TestUnits:
    def test_add_unit_is_available(self, registry, stock_units):
        serial = stock_units("PROJ-01", 1, room_id="R-102")[0]
        unit = registry.get_unit(serial)
        assert unit.status == UnitStatus.AVAILABLE
        assert unit.room_id == "R-102"
        assert unit.first_used_at is None

    def test_add_unit_duplicate_serial(self, registry, stock_units, test_actor_code):
        serial = stock_units("PROJ-01", 1)[0]
        with pytest.raises(DuplicateSerialError):
            registry.add_unit(serial, "PROJ-01", test_actor_code)

    def test_add_unit_unknown_group(self, registry, db_tables, test_actor_code):
        with pytest.raises(GroupNotFoundError):
            registry.add_unit("X-001", "GHOST", test_actor_code)

    def test_create_units_numbering(self, registry, test_actor_code):
        registry.register_group("LAP-03", "Laptops", test_actor_code)
        units = registry.create_units("LAP-03", 3, "LAP-03-IM-000007", test_actor_code, room_id="R-201")
        assert [u.serial_number for u in units] == [
            "LAP-03-IM-000007-001",
            "LAP-03-IM-000007-002",
            "LAP-03-IM-000007-003",
        ]
        assert all(u.status == UnitStatus.AVAILABLE for u in units)
