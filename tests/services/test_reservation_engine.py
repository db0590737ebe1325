"""
ReservationEngine.

Covers:
- Physical availability minus outstanding approved quantity
- Outstanding shrinks as units are scanned in
- Receipts in requested, borrowed, rejected do not count
- All-or-nothing approval check
"""

import pytest

from equipment_kernel.domain.dtos import GroupLineSpec
from equipment_kernel.exceptions import InsufficientAvailabilityError


@pytest.fixture
def approved_borrow(state_machine, test_actor_code):
    def _make(lines, room_id="R-301"):
        receipt = state_machine.create_borrow(
            test_actor_code, room_id, [GroupLineSpec(code, qty) for code, qty in lines]
        )
        state_machine.approve(receipt.id, "U-APPROVER")
        return receipt

    return _make


class TestVirtualAvailability:
    def test_no_receipts(self, reservation, stock_units):
        stock_units("CAM-02", 5)
        assert reservation.virtual_available("CAM-02") == 5

    def test_requested_receipts_do_not_count(self, reservation, state_machine, stock_units, test_actor_code):
        stock_units("CAM-02", 5)
        state_machine.create_borrow(test_actor_code, "R-301", [GroupLineSpec("CAM-02", 4)])
        assert reservation.virtual_available("CAM-02") == 5

    def test_approved_receipt_counts(self, reservation, stock_units, approved_borrow):
        stock_units("CAM-02", 5)
        receipt = approved_borrow([("CAM-02", 4)])
        assert reservation.outstanding("CAM-02") == 4
        assert reservation.virtual_available("CAM-02") == 1
        assert reservation.virtual_available("CAM-02", receipt.id) == 5

    def test_scanned_units_move_from_outstanding_to_physical(
        self, reservation, state_machine, stock_units, approved_borrow
    ):
        """Scanning a unit lowers physical and outstanding together."""
        stock_units("CAM-02", 5)
        receipt = approved_borrow([("CAM-02", 3)])
        state_machine.scan_in(receipt.id, "CAM-02-001")
        assert reservation.outstanding("CAM-02") == 2
        assert reservation.virtual_available("CAM-02") == 2

    def test_borrowed_receipt_no_longer_outstanding(
        self, reservation, state_machine, stock_units, approved_borrow
    ):
        stock_units("CAM-02", 3)
        receipt = approved_borrow([("CAM-02", 1)])
        state_machine.scan_in(receipt.id, "CAM-02-001")
        assert reservation.outstanding("CAM-02") == 0
        assert reservation.virtual_available("CAM-02") == 2

    def test_other_groups_unaffected(self, reservation, stock_units, approved_borrow):
        stock_units("CAM-02", 2)
        stock_units("PROJ-01", 2)
        approved_borrow([("CAM-02", 2)])
        assert reservation.virtual_available("PROJ-01") == 2


class TestCheckApproval:
    def test_all_or_nothing(self, state_machine, reservation, stock_units, test_actor_code, captured_logs):
        """One short line fails the whole receipt; the first sorted short group is reported."""
        stock_units("CAM-02", 5)
        stock_units("PROJ-01", 1)
        receipt = state_machine.create_borrow(
            test_actor_code, "R-301", [GroupLineSpec("PROJ-01", 2), GroupLineSpec("CAM-02", 1)]
        )

        with pytest.raises(InsufficientAvailabilityError) as exc_info:
            reservation.check_approval(receipt)

        assert exc_info.value.group_code == "PROJ-01"
        assert exc_info.value.requested == 2
        assert exc_info.value.available == 1
        assert any(r["message"] == "approval_rejected_insufficient" for r in captured_logs())

    def test_returns_availability_per_group(self, state_machine, reservation, stock_units, test_actor_code):
        stock_units("CAM-02", 5)
        receipt = state_machine.create_borrow(test_actor_code, "R-301", [GroupLineSpec("CAM-02", 5)])
        assert reservation.check_approval(receipt) == {"CAM-02": 5}
