"""
Module: equipment_kernel.selectors.receipt_selector
Responsibility: Read models for receipts: a single receipt with its lines
    and active allocations, and the paginated newest-first listing.
Architecture position: Kernel > Selectors.
"""

from collections import Counter
from uuid import UUID

from sqlalchemy import func, select

from equipment_kernel.domain.dtos import (
    AllocationInfo,
    Page,
    ReceiptInfo,
    RequestLineInfo,
)
from equipment_kernel.domain.statuses import (
    LineKind,
    ReceiptStatus,
    ReceiptType,
)
from equipment_kernel.models.allocation import AllocationRecord
from equipment_kernel.models.receipt import Receipt
from equipment_kernel.selectors.base import BaseSelector

MAX_PER_PAGE = 100


def allocation_to_info(record: AllocationRecord) -> AllocationInfo:
    return AllocationInfo(
        receipt_id=record.receipt_id,
        serial_number=record.serial_number,
        group_code=record.group_code,
        allocated_at=record.allocated_at,
    )


def receipt_to_info(
    receipt: Receipt,
    allocations: list[AllocationRecord],
) -> ReceiptInfo:
    """Build the read model from a receipt row and its active allocations."""
    by_group = Counter(a.group_code for a in allocations)
    held_serials = {a.serial_number for a in allocations}

    lines = []
    for line in receipt.lines:
        if line.line_kind == LineKind.GROUP:
            allocated = by_group[line.group_code]
        else:
            allocated = 1 if line.serial_number in held_serials else 0
        lines.append(
            RequestLineInfo(
                line_kind=LineKind(line.line_kind),
                group_code=line.group_code,
                quantity=line.quantity,
                allocated=allocated,
                serial_number=line.serial_number,
                unit_price=line.unit_price,
            )
        )

    return ReceiptInfo(
        id=receipt.id,
        receipt_number=receipt.receipt_number,
        receipt_type=ReceiptType(receipt.receipt_type),
        status=ReceiptStatus(receipt.status),
        requester_code=receipt.requester_code,
        approver_code=receipt.approver_code,
        created_at=receipt.created_at,
        lines=tuple(lines),
        allocations=tuple(
            allocation_to_info(a)
            for a in sorted(allocations, key=lambda a: a.serial_number)
        ),
        room_id=receipt.room_id,
        from_room_id=receipt.from_room_id,
        to_room_id=receipt.to_room_id,
        supplier_id=receipt.supplier_id,
        borrow_date=receipt.borrow_date,
        due_date=receipt.due_date,
        note=receipt.note,
        reason=receipt.reason,
        rejection_reason=receipt.rejection_reason,
        approved_at=receipt.approved_at,
        rejected_at=receipt.rejected_at,
        completed_at=receipt.completed_at,
    )


class ReceiptSelector(BaseSelector[Receipt]):
    """Read access to receipts."""

    def allocations_for(self, receipt_id: UUID) -> list[AllocationRecord]:
        return list(
            self.session.execute(
                select(AllocationRecord)
                .where(AllocationRecord.receipt_id == receipt_id)
                .order_by(AllocationRecord.serial_number)
            ).scalars()
        )

    def get_receipt_info(self, receipt_id: UUID) -> ReceiptInfo | None:
        receipt = self.session.get(Receipt, receipt_id)
        if receipt is None:
            return None
        return receipt_to_info(receipt, self.allocations_for(receipt_id))

    def list_receipts(
        self,
        receipt_type: ReceiptType | None = None,
        status: ReceiptStatus | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page[ReceiptInfo]:
        """
        Newest-first page of receipts, optionally filtered by type and status.

        Raises:
            ValueError: if page < 1 or per_page outside 1..MAX_PER_PAGE.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise ValueError(f"per_page must be within 1..{MAX_PER_PAGE}, got {per_page}")

        filters = []
        if receipt_type is not None:
            filters.append(Receipt.receipt_type == receipt_type)
        if status is not None:
            filters.append(Receipt.status == status)

        total = self.session.execute(
            select(func.count(Receipt.id)).where(*filters)
        ).scalar_one()

        receipts = list(
            self.session.execute(
                select(Receipt)
                .where(*filters)
                .order_by(Receipt.created_at.desc(), Receipt.receipt_number.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).scalars()
        )

        allocations: dict[UUID, list[AllocationRecord]] = {r.id: [] for r in receipts}
        if receipts:
            for record in self.session.execute(
                select(AllocationRecord).where(
                    AllocationRecord.receipt_id.in_(list(allocations))
                )
            ).scalars():
                allocations[record.receipt_id].append(record)

        return Page(
            items=tuple(receipt_to_info(r, allocations[r.id]) for r in receipts),
            total=total,
            page=page,
            per_page=per_page,
        )
