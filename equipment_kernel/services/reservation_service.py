"""
EquipmentReservationService -- public entry point of the engine.

Responsibility:
    The operations the CRUD layer calls: create receipts, approve,
    reject, scan in/out, finish (return, transfer, liquidate, receive),
    and the read side.  Each mutating call is exactly one unit of work
    and returns a frozen ReceiptInfo snapshot taken inside it.

Architecture position:
    Kernel > Services -- outermost kernel seam.  HTTP handlers own
    request/response shaping; this class owns transactions.

Collaborators:
    - Identity: requester/approver codes are opaque strings from the auth
      layer and are never validated here.
    - MasterDataCollaborator (optional): consulted before the unit of work
      opens, to reject inactive rooms and unknown groups early.
    - NotificationCollaborator: via the TransactionCoordinator.
"""

from datetime import date
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from equipment_kernel.domain.dtos import (
    GroupInfo,
    GroupLineSpec,
    ImportLineSpec,
    Page,
    ReceiptInfo,
    UnitInfo,
)
from equipment_kernel.domain.statuses import ReceiptStatus, ReceiptType, UnitStatus
from equipment_kernel.exceptions import (
    GroupNotFoundError,
    InactiveRoomError,
    ReceiptNotFoundError,
    UnitNotFoundError,
)
from equipment_kernel.logging_config import LogContext, get_logger
from equipment_kernel.selectors.equipment_selector import unit_to_info
from equipment_kernel.services.collaborators import MasterDataCollaborator
from equipment_kernel.services.transaction_coordinator import (
    TransactionCoordinator,
    UnitOfWork,
)

logger = get_logger("services.reservation_service")


def _group_lines(lines: Iterable[GroupLineSpec | Mapping]) -> list[GroupLineSpec]:
    return [
        line if isinstance(line, GroupLineSpec) else GroupLineSpec.from_mapping(line)
        for line in lines
    ]


def _import_lines(lines: Iterable[ImportLineSpec | Mapping]) -> list[ImportLineSpec]:
    return [
        line if isinstance(line, ImportLineSpec) else ImportLineSpec.from_mapping(line)
        for line in lines
    ]


class EquipmentReservationService:
    """
    Facade over the TransactionCoordinator.

    Guarantees:
        - One transaction per mutating call; nothing is written on error.
        - Returned values are DTOs, never ORM rows.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        master_data: MasterDataCollaborator | None = None,
    ):
        self._coordinator = coordinator
        self._master_data = master_data

    # -------------------------------------------------------------------------
    # Master data checks
    # -------------------------------------------------------------------------

    def _check_rooms(self, *room_ids: str | None) -> None:
        if self._master_data is None:
            return
        for room_id in room_ids:
            if room_id and not self._master_data.is_room_active(room_id):
                raise InactiveRoomError(room_id)

    def _check_groups(self, group_codes: Iterable[str]) -> None:
        if self._master_data is None:
            return
        for code in group_codes:
            if code and not self._master_data.group_exists(code):
                raise GroupNotFoundError(code)

    def _snapshot(self, uow: UnitOfWork, receipt_id: UUID) -> ReceiptInfo:
        info = uow.receipts.get_receipt_info(receipt_id)
        if info is None:
            raise ReceiptNotFoundError(str(receipt_id))
        return info

    def _mutate(self, operation: str, receipt_id, actor_code, fn) -> ReceiptInfo:
        with LogContext.bind(actor_code=actor_code, receipt_id=receipt_id):
            with self._coordinator.unit_of_work(operation) as uow:
                receipt = fn(uow.state_machine)
                return self._snapshot(uow, receipt.id)

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    def register_group(
        self,
        code: str,
        name: str,
        actor_code: str = "system",
        description: str | None = None,
    ) -> GroupInfo:
        def register(uow: UnitOfWork) -> GroupInfo:
            group = uow.registry.register_group(code, name, actor_code, description)
            return GroupInfo(
                code=group.code,
                name=group.name,
                available=uow.equipment.count_available(group.code),
            )

        with LogContext.bind(actor_code=actor_code):
            return self._coordinator.run("register_group", register)

    def add_unit(
        self,
        serial_number: str,
        group_code: str,
        actor_code: str = "system",
        room_id: str | None = None,
        description: str | None = None,
    ) -> UnitInfo:
        """Register an existing physical unit as AVAILABLE (seeding, migration)."""
        with LogContext.bind(actor_code=actor_code, serial_number=serial_number):
            with self._coordinator.unit_of_work("add_unit") as uow:
                unit = uow.registry.add_unit(
                    serial_number,
                    group_code,
                    actor_code,
                    room_id=room_id,
                    description=description,
                )
                return unit_to_info(unit)

    # -------------------------------------------------------------------------
    # Receipt creation
    # -------------------------------------------------------------------------

    def create_borrow_receipt(
        self,
        requester_code: str,
        room_id: str,
        lines: Sequence[GroupLineSpec | Mapping],
        note: str | None = None,
        borrow_date: date | None = None,
        due_date: date | None = None,
    ) -> UUID:
        specs = _group_lines(lines)
        self._check_rooms(room_id)
        self._check_groups(line.group_code for line in specs)
        with LogContext.bind(actor_code=requester_code):
            with self._coordinator.unit_of_work("create_borrow_receipt") as uow:
                receipt = uow.state_machine.create_borrow(
                    requester_code,
                    room_id,
                    specs,
                    note=note,
                    borrow_date=borrow_date,
                    due_date=due_date,
                )
                return receipt.id

    def create_transfer_receipt(
        self,
        requester_code: str,
        from_room_id: str,
        to_room_id: str,
        serials: Sequence[str],
        note: str | None = None,
    ) -> UUID:
        self._check_rooms(from_room_id, to_room_id)
        with LogContext.bind(actor_code=requester_code):
            with self._coordinator.unit_of_work("create_transfer_receipt") as uow:
                receipt = uow.state_machine.create_transfer(
                    requester_code, from_room_id, to_room_id, list(serials), note=note
                )
                return receipt.id

    def create_liquidation_receipt(
        self,
        requester_code: str,
        serials: Sequence[str],
        reason: str | None = None,
        note: str | None = None,
    ) -> UUID:
        with LogContext.bind(actor_code=requester_code):
            with self._coordinator.unit_of_work("create_liquidation_receipt") as uow:
                receipt = uow.state_machine.create_liquidation(
                    requester_code, list(serials), reason=reason, note=note
                )
                return receipt.id

    def create_import_receipt(
        self,
        requester_code: str,
        supplier_id: str,
        lines: Sequence[ImportLineSpec | Mapping],
        room_id: str | None = None,
        note: str | None = None,
    ) -> UUID:
        specs = _import_lines(lines)
        self._check_rooms(room_id)
        self._check_groups(line.group_code for line in specs)
        with LogContext.bind(actor_code=requester_code):
            with self._coordinator.unit_of_work("create_import_receipt") as uow:
                receipt = uow.state_machine.create_import(
                    requester_code, supplier_id, specs, room_id=room_id, note=note
                )
                return receipt.id

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def approve(self, receipt_id: UUID | str, approver_code: str) -> ReceiptInfo:
        return self._mutate(
            "approve", receipt_id, approver_code,
            lambda sm: sm.approve(receipt_id, approver_code),
        )

    def reject(
        self,
        receipt_id: UUID | str,
        approver_code: str,
        reason: str | None = None,
    ) -> ReceiptInfo:
        return self._mutate(
            "reject", receipt_id, approver_code,
            lambda sm: sm.reject(receipt_id, approver_code, reason),
        )

    def scan_in(
        self,
        receipt_id: UUID | str,
        serial_number: str,
        actor_code: str | None = None,
    ) -> ReceiptInfo:
        with LogContext.bind(serial_number=serial_number):
            return self._mutate(
                "scan_in", receipt_id, actor_code,
                lambda sm: sm.scan_in(receipt_id, serial_number, actor_code),
            )

    def scan_out(
        self,
        receipt_id: UUID | str,
        serial_number: str,
        actor_code: str | None = None,
    ) -> ReceiptInfo:
        with LogContext.bind(serial_number=serial_number):
            return self._mutate(
                "scan_out", receipt_id, actor_code,
                lambda sm: sm.scan_out(receipt_id, serial_number, actor_code),
            )

    def mark_returned(self, receipt_id: UUID | str, actor_code: str | None = None) -> ReceiptInfo:
        return self._mutate(
            "mark_returned", receipt_id, actor_code,
            lambda sm: sm.mark_returned(receipt_id, actor_code),
        )

    def mark_transferred(self, receipt_id: UUID | str, actor_code: str | None = None) -> ReceiptInfo:
        return self._mutate(
            "mark_transferred", receipt_id, actor_code,
            lambda sm: sm.mark_transferred(receipt_id, actor_code),
        )

    def mark_liquidated(self, receipt_id: UUID | str, actor_code: str | None = None) -> ReceiptInfo:
        return self._mutate(
            "mark_liquidated", receipt_id, actor_code,
            lambda sm: sm.mark_liquidated(receipt_id, actor_code),
        )

    def receive(self, receipt_id: UUID | str, actor_code: str | None = None) -> ReceiptInfo:
        return self._mutate(
            "receive", receipt_id, actor_code,
            lambda sm: sm.receive(receipt_id, actor_code),
        )

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def get_receipt(self, receipt_id: UUID | str) -> ReceiptInfo:
        try:
            rid = receipt_id if isinstance(receipt_id, UUID) else UUID(str(receipt_id))
        except ValueError:
            raise ReceiptNotFoundError(str(receipt_id)) from None
        with self._coordinator.read_only() as uow:
            return self._snapshot(uow, rid)

    def list_receipts(
        self,
        receipt_type: ReceiptType | None = None,
        status: ReceiptStatus | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page[ReceiptInfo]:
        with self._coordinator.read_only() as uow:
            return uow.receipts.list_receipts(receipt_type, status, page, per_page)

    def get_unit(self, serial_number: str) -> UnitInfo:
        with self._coordinator.read_only() as uow:
            info = uow.equipment.get_unit(serial_number)
        if info is None:
            raise UnitNotFoundError(serial_number)
        return info

    def find_available_units(self, group_code: str, limit: int | None = None) -> list[UnitInfo]:
        with self._coordinator.read_only() as uow:
            return uow.equipment.find_available_units_in_group(group_code, limit)

    def list_units_in_room(
        self,
        room_id: str,
        status: UnitStatus | None = None,
    ) -> list[UnitInfo]:
        """
        Units located in a room; the pick list for a transfer out of it.

        Pass ``status=UnitStatus.AVAILABLE`` for the units a transfer or
        liquidation can still bind.
        """
        self._check_rooms(room_id)
        with self._coordinator.read_only() as uow:
            return uow.equipment.find_units_in_room(room_id, status)

    def virtual_available(self, group_code: str) -> int:
        """Available units of the group not already promised to approved receipts."""
        with self._coordinator.read_only() as uow:
            if not uow.equipment.group_exists(group_code):
                raise GroupNotFoundError(group_code)
            return uow.reservation.virtual_available(group_code)

    def list_groups(self) -> list[GroupInfo]:
        with self._coordinator.read_only() as uow:
            return uow.equipment.list_groups()
