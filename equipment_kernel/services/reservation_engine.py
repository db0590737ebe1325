"""
ReservationEngine -- virtual availability at approval time.

Responsibility:
    Decides whether a borrow receipt's group lines can eventually be
    satisfied, without binding any unit.  Units are bound later, one scan
    at a time, by the AllocationLedger.

Architecture position:
    Kernel > Services -- read path.  Called by ReceiptStateMachine.approve
    after the group rows have been locked, so the count and the receipt's
    status write land in one serialized transaction.

Algorithm::

    physical    = units of the group in status AVAILABLE
    outstanding = sum(requested - allocated) over group lines of other
                  borrow receipts that are approved but not yet borrowed
    virtual     = physical - outstanding

Invariants enforced:
    - All-or-nothing approval: every line is checked before anything is
      written; the first short line raises and nothing changes.
    - After a successful approval, virtual availability of each approved
      group (counting the new receipt) is >= 0.

Failure modes:
    - InsufficientAvailabilityError for the first group that falls short.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from equipment_kernel.domain.statuses import (
    OUTSTANDING_BORROW_STATUSES,
    LineKind,
    ReceiptType,
)
from equipment_kernel.exceptions import InsufficientAvailabilityError
from equipment_kernel.logging_config import get_logger
from equipment_kernel.models.allocation import AllocationRecord
from equipment_kernel.models.receipt import Receipt, RequestLine
from equipment_kernel.selectors.equipment_selector import EquipmentSelector

logger = get_logger("services.reservation")


class ReservationEngine:
    """Virtual availability calculator.  Read-only."""

    def __init__(self, session: Session):
        self._session = session
        self._equipment = EquipmentSelector(session)

    def outstanding(self, group_code: str, excluding_receipt_id: UUID | None = None) -> int:
        """Quantity of the group promised to approved, unfulfilled borrow receipts."""
        line_filters = [
            RequestLine.group_code == group_code,
            RequestLine.line_kind == LineKind.GROUP,
            Receipt.receipt_type == ReceiptType.BORROW,
            Receipt.status.in_(sorted(OUTSTANDING_BORROW_STATUSES)),
        ]
        if excluding_receipt_id is not None:
            line_filters.append(Receipt.id != excluding_receipt_id)

        requested = self._session.execute(
            select(RequestLine.receipt_id, RequestLine.quantity)
            .join(Receipt, Receipt.id == RequestLine.receipt_id)
            .where(*line_filters)
        ).all()
        if not requested:
            return 0

        allocated = dict(
            self._session.execute(
                select(AllocationRecord.receipt_id, func.count(AllocationRecord.id))
                .where(
                    AllocationRecord.group_code == group_code,
                    AllocationRecord.receipt_id.in_([r for r, _ in requested]),
                )
                .group_by(AllocationRecord.receipt_id)
            ).all()
        )

        return sum(
            max(quantity - allocated.get(receipt_id, 0), 0)
            for receipt_id, quantity in requested
        )

    def virtual_available(
        self,
        group_code: str,
        excluding_receipt_id: UUID | None = None,
    ) -> int:
        physical = self._equipment.count_available(group_code)
        return physical - self.outstanding(group_code, excluding_receipt_id)

    def check_approval(self, receipt: Receipt) -> dict[str, int]:
        """
        Verify every group line of a borrow receipt fits.

        Preconditions:
            The caller holds row locks on the receipt's groups.

        Returns:
            Virtual availability per group, excluding this receipt.

        Raises:
            InsufficientAvailabilityError: for the first short line.
        """
        availability: dict[str, int] = {}
        for line in sorted(receipt.group_lines, key=lambda line: line.group_code):
            available = self.virtual_available(line.group_code, receipt.id)
            availability[line.group_code] = available
            if available < line.quantity:
                logger.warning(
                    "approval_rejected_insufficient",
                    extra={
                        "receipt_id": str(receipt.id),
                        "group_code": line.group_code,
                        "requested": line.quantity,
                        "available": available,
                    },
                )
                raise InsufficientAvailabilityError(
                    line.group_code, line.quantity, available
                )
        logger.debug(
            "approval_availability_checked",
            extra={"receipt_id": str(receipt.id), "availability": availability},
        )
        return availability
