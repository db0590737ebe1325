"""
ReceiptStateMachine -- receipt lifecycle for all four receipt types.

Responsibility:
    Creates receipts and drives every status change through the workflow
    tables in ``equipment_kernel.domain.workflow``.  Each status change
    first row-locks the receipt, looks up the (status, action) transition,
    checks its guard, then applies the side effects on the ledger and the
    registry.

Architecture position:
    Kernel > Services.  Wired onto one session by a UnitOfWork; calls
    SequenceService, EquipmentRegistry, AllocationLedger and
    ReservationEngine.

Lifecycles::

    borrow       requested -approve-> approved -scan_in-> processing
                 -fulfil (last unit scanned)-> borrowed -mark_returned-> returned
    transfer     requested -approve-> approved -mark_transferred-> transferred
    liquidation  requested -approve-> approved -mark_liquidated-> liquidated
    import       requested -approve-> approved -receive-> received
    (all)        requested -reject-> rejected

Unit side effects:
    - borrow scan_in/scan_out: AVAILABLE <-> RESERVED, one record each.
    - entering borrowed: RESERVED -> IN_USE, room := receipt room,
      first-use stamped once.  Records persist.
    - entering returned: IN_USE -> AVAILABLE, records deleted.
    - transfer/liquidation creation: AVAILABLE -> PENDING_TRANSFER /
      LIQUIDATION with one record per named serial.
    - transfer/liquidation reject: back to AVAILABLE, records deleted.
    - transferred: PENDING_TRANSFER -> AVAILABLE in the destination room,
      records deleted.
    - liquidated: units stay LIQUIDATION, records persist.
    - received: new AVAILABLE units, serials ``<GROUP>-<receipt number>-<nnn>``.

Invariants enforced:
    - Receipt status only moves forward along its workflow table.
    - Allocated count per borrow group line never exceeds its quantity.
    - Any guard failure raises before or during the unit of work, which
      is then rolled back in full.

Failure modes:
    - ValidationError subclasses on malformed input.
    - ReceiptNotFoundError / UnitNotFoundError / GroupNotFoundError.
    - InvalidReceiptTransitionError when the action is not allowed.
    - ConflictError subclasses from the ledger, registry or reservation
      engine.
"""

from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from equipment_kernel.domain import workflow as wf
from equipment_kernel.domain.clock import Clock, SystemClock
from equipment_kernel.domain.dtos import (
    GroupLineSpec,
    ImportLineSpec,
    ReceiptTransitionEvent,
)
from equipment_kernel.domain.statuses import (
    HOLD_STATUS,
    LineKind,
    ReceiptStatus,
    ReceiptType,
    UnitStatus,
)
from equipment_kernel.domain.workflow import WORKFLOWS, Transition
from equipment_kernel.exceptions import (
    AllocationNotFoundError,
    DuplicateAllocationError,
    DuplicateLineError,
    EmptyRequestError,
    GroupMismatchError,
    InvalidPriceError,
    InvalidQuantityError,
    InvalidReceiptTransitionError,
    LineFulfilledError,
    MissingFieldError,
    ReceiptNotFoundError,
    SameRoomTransferError,
    UnitLocationConflictError,
    ValidationError,
)
from equipment_kernel.logging_config import get_logger
from equipment_kernel.models.receipt import Receipt, RequestLine
from equipment_kernel.services.allocation_ledger import AllocationLedger
from equipment_kernel.services.base import BaseService
from equipment_kernel.services.equipment_registry import EquipmentRegistry
from equipment_kernel.services.reservation_engine import ReservationEngine
from equipment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.receipt_state_machine")


def _require(value: str | None, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise MissingFieldError(field_name)
    return value


def _as_uuid(receipt_id: UUID | str) -> UUID:
    if isinstance(receipt_id, UUID):
        return receipt_id
    try:
        return UUID(str(receipt_id))
    except ValueError:
        raise ReceiptNotFoundError(str(receipt_id)) from None


def _valid_quantity(quantity: object) -> bool:
    return isinstance(quantity, int) and not isinstance(quantity, bool) and quantity > 0


def _valid_price(price: object) -> bool:
    return isinstance(price, Decimal) and price.is_finite() and price >= 0


class ReceiptStateMachine(BaseService[Receipt]):
    """
    Receipt creation and transitions.

    Contract:
        Every public method runs inside the caller's transaction and
        flushes only.  Committed transitions are reported through
        ``events``; the TransactionCoordinator publishes them after commit.
    """

    def __init__(
        self,
        session: Session,
        registry: EquipmentRegistry,
        ledger: AllocationLedger,
        reservation: ReservationEngine,
        sequences: SequenceService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._registry = registry
        self._ledger = ledger
        self._reservation = reservation
        self._sequences = sequences
        self._clock = clock or SystemClock()
        self.events: list[ReceiptTransitionEvent] = []

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def get_receipt_for_update(self, receipt_id: UUID | str) -> Receipt:
        """Row-lock and load a receipt.  Concurrent transitions on it queue here."""
        rid = _as_uuid(receipt_id)
        receipt = self.session.execute(
            select(Receipt)
            .where(Receipt.id == rid)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if receipt is None:
            raise ReceiptNotFoundError(str(rid))
        return receipt

    def _new_receipt(
        self,
        receipt_type: ReceiptType,
        requester_code: str,
        **fields,
    ) -> Receipt:
        receipt = Receipt(
            receipt_number=self._sequences.next_receipt_number(receipt_type),
            receipt_type=receipt_type,
            status=WORKFLOWS[receipt_type].initial_state,
            requester_code=requester_code,
            created_by=requester_code,
            created_at=self._clock.now(),
            **fields,
        )
        self.session.add(receipt)
        return receipt

    def _check_group_lines(
        self,
        receipt_type: ReceiptType,
        lines: Sequence[GroupLineSpec | ImportLineSpec],
    ) -> None:
        if not lines:
            raise EmptyRequestError(receipt_type.value)
        seen: set[str] = set()
        for line in lines:
            group_code = _require(line.group_code, "group_code")
            if not _valid_quantity(line.quantity):
                raise InvalidQuantityError(group_code, line.quantity)
            price = getattr(line, "unit_price", None)
            if price is not None and not _valid_price(price):
                raise InvalidPriceError(group_code, price)
            if group_code in seen:
                raise DuplicateLineError(group_code)
            seen.add(group_code)
        for group_code in sorted(seen):
            self._registry.get_group(group_code)

    def _check_serials(self, receipt_type: ReceiptType, serials: Sequence[str]) -> list[str]:
        if not serials:
            raise EmptyRequestError(receipt_type.value)
        seen: set[str] = set()
        for serial in serials:
            _require(serial, "serial_number")
            if serial in seen:
                raise DuplicateLineError(serial)
            seen.add(serial)
        return sorted(seen)

    def _apply(
        self,
        receipt: Receipt,
        action: str,
        actor_code: str | None = None,
    ) -> Transition:
        """Look up and apply a workflow transition, recording the event."""
        receipt_type = ReceiptType(receipt.receipt_type)
        old_status = ReceiptStatus(receipt.status)
        transition = WORKFLOWS[receipt_type].find_transition(old_status, action)
        if transition is None:
            logger.warning(
                "receipt_transition_refused",
                extra={
                    "receipt_id": str(receipt.id),
                    "receipt_type": receipt_type.value,
                    "status": old_status.value,
                    "action": action,
                },
            )
            raise InvalidReceiptTransitionError(
                str(receipt.id), receipt_type.value, old_status.value, action
            )

        if transition.is_self_loop:
            return transition

        receipt.status = transition.to_state
        self.session.flush()
        self.events.append(
            ReceiptTransitionEvent(
                receipt_id=receipt.id,
                receipt_type=receipt_type,
                old_status=old_status,
                new_status=transition.to_state,
                action=action,
                occurred_at=self._clock.now(),
                actor_code=actor_code,
            )
        )
        logger.info(
            "receipt_transitioned",
            extra={
                "receipt_id": str(receipt.id),
                "receipt_number": receipt.receipt_number,
                "receipt_type": receipt_type.value,
                "old_status": old_status.value,
                "new_status": transition.to_state.value,
                "action": action,
            },
        )
        return transition

    def _require_action(self, receipt: Receipt, action: str) -> None:
        """Raise StateError unless the action is allowed, without applying it."""
        receipt_type = ReceiptType(receipt.receipt_type)
        status = ReceiptStatus(receipt.status)
        if not WORKFLOWS[receipt_type].allows(status, action):
            raise InvalidReceiptTransitionError(
                str(receipt.id), receipt_type.value, status.value, action
            )

    def _check_units_held(self, receipt: Receipt) -> None:
        held = {r.serial_number for r in self._ledger.records_for(receipt.id)}
        for line in receipt.unit_lines:
            if line.serial_number not in held:
                raise AllocationNotFoundError(str(receipt.id), line.serial_number)

    def _log_created(self, receipt: Receipt) -> None:
        logger.info(
            "receipt_created",
            extra={
                "receipt_id": str(receipt.id),
                "receipt_number": receipt.receipt_number,
                "receipt_type": ReceiptType(receipt.receipt_type).value,
                "line_count": len(receipt.lines),
            },
        )

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_borrow(
        self,
        requester_code: str,
        room_id: str,
        lines: Sequence[GroupLineSpec],
        note: str | None = None,
        borrow_date: date | None = None,
        due_date: date | None = None,
    ) -> Receipt:
        """
        Create a borrow receipt in ``requested``.  No unit is touched.

        Raises:
            MissingFieldError, EmptyRequestError, InvalidQuantityError,
            DuplicateLineError, ValidationError (due before borrow date),
            GroupNotFoundError.
        """
        _require(requester_code, "requester_code")
        _require(room_id, "room_id")
        self._check_group_lines(ReceiptType.BORROW, lines)
        if borrow_date and due_date and due_date < borrow_date:
            raise ValidationError(
                f"due_date {due_date} is before borrow_date {borrow_date}"
            )

        receipt = self._new_receipt(
            ReceiptType.BORROW,
            requester_code,
            room_id=room_id,
            note=note,
            borrow_date=borrow_date,
            due_date=due_date,
        )
        receipt.lines = [
            RequestLine(
                line_no=i,
                line_kind=LineKind.GROUP,
                group_code=line.group_code,
                quantity=line.quantity,
            )
            for i, line in enumerate(lines, start=1)
        ]
        self.session.flush()
        self._log_created(receipt)
        return receipt

    def _create_unit_receipt(
        self,
        receipt_type: ReceiptType,
        requester_code: str,
        serials: Sequence[str],
        expected_room: str | None,
        **fields,
    ) -> Receipt:
        ordered = self._check_serials(receipt_type, serials)

        units = [self._registry.get_unit(serial) for serial in ordered]
        if expected_room is not None:
            for unit in units:
                if unit.room_id != expected_room:
                    raise UnitLocationConflictError(
                        unit.serial_number, expected_room, unit.room_id
                    )

        # Creation lowers physical availability; serialize with approvals.
        self._registry.lock_groups(u.group_code for u in units)

        receipt = self._new_receipt(receipt_type, requester_code, **fields)
        receipt.lines = [
            RequestLine(
                line_no=i,
                line_kind=LineKind.UNIT,
                group_code=unit.group_code,
                quantity=1,
                serial_number=unit.serial_number,
            )
            for i, unit in enumerate(units, start=1)
        ]
        self.session.flush()

        hold = HOLD_STATUS[receipt_type]
        for serial in ordered:
            self._ledger.scan_in(receipt.id, serial, hold, actor_code=requester_code)

        self._log_created(receipt)
        return receipt

    def create_transfer(
        self,
        requester_code: str,
        from_room_id: str,
        to_room_id: str,
        serials: Sequence[str],
        note: str | None = None,
    ) -> Receipt:
        """
        Create a transfer receipt and bind the named units immediately.

        Raises:
            SameRoomTransferError, UnitLocationConflictError,
            DuplicateAllocationError, UnitStatusConflictError, plus the
            validation errors of receipt creation.
        """
        _require(requester_code, "requester_code")
        _require(from_room_id, "from_room_id")
        _require(to_room_id, "to_room_id")
        if from_room_id == to_room_id:
            raise SameRoomTransferError(from_room_id)
        return self._create_unit_receipt(
            ReceiptType.TRANSFER,
            requester_code,
            serials,
            expected_room=from_room_id,
            from_room_id=from_room_id,
            to_room_id=to_room_id,
            note=note,
        )

    def create_liquidation(
        self,
        requester_code: str,
        serials: Sequence[str],
        reason: str | None = None,
        note: str | None = None,
    ) -> Receipt:
        """Create a liquidation receipt and bind the named units immediately."""
        _require(requester_code, "requester_code")
        return self._create_unit_receipt(
            ReceiptType.LIQUIDATION,
            requester_code,
            serials,
            expected_room=None,
            reason=reason,
            note=note,
        )

    def create_import(
        self,
        requester_code: str,
        supplier_id: str,
        lines: Sequence[ImportLineSpec],
        room_id: str | None = None,
        note: str | None = None,
    ) -> Receipt:
        """Create an import receipt.  Units appear only on ``receive``."""
        _require(requester_code, "requester_code")
        _require(supplier_id, "supplier_id")
        self._check_group_lines(ReceiptType.IMPORT, lines)

        receipt = self._new_receipt(
            ReceiptType.IMPORT,
            requester_code,
            supplier_id=supplier_id,
            room_id=room_id,
            note=note,
        )
        receipt.lines = [
            RequestLine(
                line_no=i,
                line_kind=LineKind.GROUP,
                group_code=line.group_code,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for i, line in enumerate(lines, start=1)
        ]
        self.session.flush()
        self._log_created(receipt)
        return receipt

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def approve(self, receipt_id: UUID | str, approver_code: str) -> Receipt:
        """
        requested -> approved.

        For borrow receipts the groups are row-locked (sorted) and virtual
        availability is checked for every line before the status write.

        Raises:
            InvalidReceiptTransitionError, InsufficientAvailabilityError.
        """
        _require(approver_code, "approver_code")
        receipt = self.get_receipt_for_update(receipt_id)
        self._require_action(receipt, wf.APPROVE)

        if receipt.receipt_type == ReceiptType.BORROW:
            self._registry.lock_groups(line.group_code for line in receipt.group_lines)
            self._reservation.check_approval(receipt)

        receipt.approver_code = approver_code
        receipt.approved_at = self._clock.now()
        self._apply(receipt, wf.APPROVE, approver_code)
        return receipt

    def reject(
        self,
        receipt_id: UUID | str,
        approver_code: str,
        reason: str | None = None,
    ) -> Receipt:
        """
        requested -> rejected.  Units bound at creation go back to AVAILABLE.
        """
        _require(approver_code, "approver_code")
        receipt = self.get_receipt_for_update(receipt_id)
        self._apply(receipt, wf.REJECT, approver_code)

        receipt_type = ReceiptType(receipt.receipt_type)
        if receipt_type in (ReceiptType.TRANSFER, ReceiptType.LIQUIDATION):
            self._ledger.release_all(receipt.id, HOLD_STATUS[receipt_type])

        receipt.approver_code = approver_code
        receipt.rejection_reason = reason
        receipt.rejected_at = self._clock.now()
        self.session.flush()
        return receipt

    # -------------------------------------------------------------------------
    # Borrow allocation
    # -------------------------------------------------------------------------

    def scan_in(
        self,
        receipt_id: UUID | str,
        serial_number: str,
        actor_code: str | None = None,
    ) -> Receipt:
        """
        Bind one unit to a borrow receipt.

        The first scan moves ``approved`` to ``processing``; the scan that
        fills the last line moves ``processing`` to ``borrowed``.

        Raises:
            DuplicateAllocationError: the serial is already held, checked
                before the receipt status so a repeated scan is always a
                conflict.
            InvalidReceiptTransitionError, UnitNotFoundError,
            GroupMismatchError, LineFulfilledError, UnitStatusConflictError.
        """
        _require(serial_number, "serial_number")
        receipt = self.get_receipt_for_update(receipt_id)

        existing = self._ledger.find_active(serial_number)
        if existing is not None:
            raise DuplicateAllocationError(serial_number, str(existing.receipt_id))

        self._require_action(receipt, wf.SCAN_IN)

        unit = self._registry.get_unit(serial_number)
        line = next(
            (candidate for candidate in receipt.group_lines
             if candidate.group_code == unit.group_code),
            None,
        )
        if line is None:
            raise GroupMismatchError(str(receipt.id), serial_number, unit.group_code)
        if self._ledger.count_allocated(receipt.id, line.group_code) >= line.quantity:
            raise LineFulfilledError(str(receipt.id), line.group_code, line.quantity)

        self._ledger.scan_in(receipt.id, serial_number, UnitStatus.RESERVED, actor_code)
        self._apply(receipt, wf.SCAN_IN, actor_code)

        if self._all_lines_fulfilled(receipt):
            self._enter_borrowed(receipt, actor_code)
        return receipt

    def _all_lines_fulfilled(self, receipt: Receipt) -> bool:
        allocated = self._ledger.allocated_by_group(receipt.id)
        return all(
            allocated.get(line.group_code, 0) >= line.quantity
            for line in receipt.group_lines
        )

    def _enter_borrowed(self, receipt: Receipt, actor_code: str | None) -> None:
        self._apply(receipt, wf.FULFIL, actor_code)
        serials = self._ledger.transition_all(
            receipt.id,
            UnitStatus.RESERVED,
            UnitStatus.IN_USE,
            room_id=receipt.room_id,
            first_used_at=self._clock.now(),
        )
        logger.info(
            "receipt_borrowed",
            extra={"receipt_id": str(receipt.id), "serials": serials},
        )

    def scan_out(
        self,
        receipt_id: UUID | str,
        serial_number: str,
        actor_code: str | None = None,
    ) -> Receipt:
        """
        Unbind one unit from a ``processing`` borrow receipt.

        The receipt stays ``processing`` even if no unit remains bound.
        """
        _require(serial_number, "serial_number")
        receipt = self.get_receipt_for_update(receipt_id)
        self._apply(receipt, wf.SCAN_OUT, actor_code)
        self._ledger.scan_out(receipt.id, serial_number, UnitStatus.RESERVED)
        return receipt

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    def mark_returned(self, receipt_id: UUID | str, actor_code: str | None = None) -> Receipt:
        """borrowed -> returned.  Every unit IN_USE -> AVAILABLE, records deleted."""
        receipt = self.get_receipt_for_update(receipt_id)
        self._apply(receipt, wf.MARK_RETURNED, actor_code)
        self._ledger.release_all(receipt.id, UnitStatus.IN_USE, UnitStatus.AVAILABLE)
        receipt.completed_at = self._clock.now()
        self.session.flush()
        return receipt

    def mark_transferred(self, receipt_id: UUID | str, actor_code: str | None = None) -> Receipt:
        """approved -> transferred.  Units land in the destination room, AVAILABLE."""
        receipt = self.get_receipt_for_update(receipt_id)
        self._require_action(receipt, wf.MARK_TRANSFERRED)
        self._check_units_held(receipt)
        self._apply(receipt, wf.MARK_TRANSFERRED, actor_code)
        self._ledger.release_all(
            receipt.id,
            UnitStatus.PENDING_TRANSFER,
            UnitStatus.AVAILABLE,
            room_id=receipt.to_room_id,
        )
        receipt.completed_at = self._clock.now()
        self.session.flush()
        return receipt

    def mark_liquidated(self, receipt_id: UUID | str, actor_code: str | None = None) -> Receipt:
        """approved -> liquidated.  Units stay LIQUIDATION, bound for good."""
        receipt = self.get_receipt_for_update(receipt_id)
        self._require_action(receipt, wf.MARK_LIQUIDATED)
        self._check_units_held(receipt)
        self._apply(receipt, wf.MARK_LIQUIDATED, actor_code)
        receipt.completed_at = self._clock.now()
        self.session.flush()
        return receipt

    def receive(self, receipt_id: UUID | str, actor_code: str | None = None) -> Receipt:
        """approved -> received.  Creates ``quantity`` new units per line."""
        receipt = self.get_receipt_for_update(receipt_id)
        self._apply(receipt, wf.RECEIVE, actor_code)

        created = []
        for line in receipt.group_lines:
            units = self._registry.create_units(
                group_code=line.group_code,
                quantity=line.quantity,
                serial_prefix=self._registry.serial_separator.join(
                    (line.group_code, receipt.receipt_number)
                ),
                actor_code=actor_code or receipt.requester_code,
                room_id=receipt.room_id,
                import_receipt_id=receipt.id,
            )
            created.extend(u.serial_number for u in units)

        receipt.completed_at = self._clock.now()
        self.session.flush()
        logger.info(
            "import_received",
            extra={"receipt_id": str(receipt.id), "units_created": len(created)},
        )
        return receipt
