"""
Typed Exception Hierarchy for the Equipment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The HTTP layer maps engine failures to 4xx responses, and callers decide
whether a retry makes sense.  Both decisions must be made by exception
TYPE, never by parsing a message string:

    try:
        service.approve(receipt_id, approver_code="U-042")
    except InsufficientAvailabilityError as e:
        return {"error": e.code, "group": e.group_code, "available": e.available}
    except ConflictError:
        # re-read current state and retry, caller's choice
        ...

Every exception carries a ``code`` class attribute (machine-readable,
API-safe) and stores its context as instance attributes.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from EquipmentKernelError:

    EquipmentKernelError (base)
    |
    +-- ValidationError
    |   +-- MissingFieldError
    |   +-- EmptyRequestError
    |   +-- InvalidQuantityError
    |   +-- InvalidPriceError
    |   +-- DuplicateLineError
    |   +-- GroupMismatchError
    |   +-- SameRoomTransferError
    |   +-- InactiveRoomError
    |
    +-- NotFoundError
    |   +-- ReceiptNotFoundError
    |   +-- UnitNotFoundError
    |   +-- GroupNotFoundError
    |   +-- AllocationNotFoundError
    |
    +-- StateError
    |   +-- InvalidReceiptTransitionError
    |
    +-- ConflictError
        +-- InsufficientAvailabilityError
        +-- UnitStatusConflictError
        +-- DuplicateAllocationError
        +-- LineFulfilledError
        +-- UnitLocationConflictError
        +-- ConcurrentModificationError
        +-- DuplicateSerialError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                        | When Raised
------------|-----------------------------|-------------------------------------
Validation  | MISSING_FIELD               | Requester/approver/room not supplied
            | EMPTY_REQUEST               | No request lines / no serials
            | INVALID_QUANTITY            | Quantity <= 0
            | INVALID_PRICE               | Import unit price malformed or < 0
            | DUPLICATE_LINE              | Same group or serial listed twice
            | GROUP_MISMATCH              | Scanned unit's group not on receipt
            | SAME_ROOM_TRANSFER          | Transfer source == destination
            | INACTIVE_ROOM               | Master data reports room inactive
------------|-----------------------------|-------------------------------------
Not found   | RECEIPT_NOT_FOUND           | Receipt id doesn't exist
            | UNIT_NOT_FOUND              | Serial number doesn't exist
            | GROUP_NOT_FOUND             | Group code doesn't exist
            | ALLOCATION_NOT_FOUND        | No active (receipt, serial) binding
------------|-----------------------------|-------------------------------------
State       | INVALID_RECEIPT_TRANSITION  | Action not allowed from status
------------|-----------------------------|-------------------------------------
Conflict    | INSUFFICIENT_AVAILABILITY   | Virtual availability < quantity
            | UNIT_STATUS_CONFLICT        | Compare-and-swap lost / wrong status
            | DUPLICATE_ALLOCATION        | Serial already actively allocated
            | LINE_FULFILLED              | Group line already fully scanned
            | UNIT_LOCATION_CONFLICT      | Unit not in the transfer source room
            | CONCURRENT_MODIFICATION     | Lock timeout / deadlock / busy DB
            | DUPLICATE_SERIAL            | Unit serial already registered

===============================================================================
PROPAGATION
===============================================================================

All exceptions are raised synchronously inside a unit of work and always
trigger a full rollback.  The engine never retries.  ConflictError is the
only category where a caller-initiated retry (re-read, re-attempt) is a
meaningful recovery strategy.
"""


class EquipmentKernelError(Exception):
    """
    Base exception for all equipment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EQUIPMENT_KERNEL_ERROR"


# Validation-related exceptions


class ValidationError(EquipmentKernelError):
    """Malformed input rejected before any state is read or written."""

    code: str = "VALIDATION_ERROR"


class MissingFieldError(ValidationError):
    """A required field was not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Missing required field: {field_name}")


class EmptyRequestError(ValidationError):
    """A receipt was requested with no lines."""

    code: str = "EMPTY_REQUEST"

    def __init__(self, receipt_type: str):
        self.receipt_type = receipt_type
        super().__init__(f"{receipt_type} receipt requires at least one line")


class InvalidQuantityError(ValidationError):
    """Requested quantity is not a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, group_code: str, quantity: object):
        self.group_code = group_code
        self.quantity = quantity
        super().__init__(
            f"Quantity for group {group_code} must be a positive integer, got {quantity!r}"
        )


class InvalidPriceError(ValidationError):
    """Unit price on an import line is not a non-negative number."""

    code: str = "INVALID_PRICE"

    def __init__(self, group_code: str, price: object):
        self.group_code = group_code
        self.price = price
        super().__init__(
            f"Unit price for group {group_code} must be a non-negative number, got {price!r}"
        )


class DuplicateLineError(ValidationError):
    """The same group or serial appears on more than one line."""

    code: str = "DUPLICATE_LINE"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Duplicate request line: {key}")


class GroupMismatchError(ValidationError):
    """A scanned unit does not belong to any group requested by the receipt."""

    code: str = "GROUP_MISMATCH"

    def __init__(self, receipt_id: str, serial_number: str, group_code: str):
        self.receipt_id = receipt_id
        self.serial_number = serial_number
        self.group_code = group_code
        super().__init__(
            f"Unit {serial_number} (group {group_code}) is not requested "
            f"by receipt {receipt_id}"
        )


class SameRoomTransferError(ValidationError):
    """Transfer source and destination rooms are the same."""

    code: str = "SAME_ROOM_TRANSFER"

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(
            f"Transfer source and destination rooms cannot both be {room_id}"
        )


class InactiveRoomError(ValidationError):
    """Master data reports the room as inactive."""

    code: str = "INACTIVE_ROOM"

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} is not active")


# Lookup-related exceptions


class NotFoundError(EquipmentKernelError):
    """A referenced receipt, unit, group, or allocation does not exist."""

    code: str = "NOT_FOUND"


class ReceiptNotFoundError(NotFoundError):
    """Receipt with given ID was not found."""

    code: str = "RECEIPT_NOT_FOUND"

    def __init__(self, receipt_id: str):
        self.receipt_id = receipt_id
        super().__init__(f"Receipt not found: {receipt_id}")


class UnitNotFoundError(NotFoundError):
    """Equipment unit with given serial number was not found."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        super().__init__(f"Equipment unit not found: {serial_number}")


class GroupNotFoundError(NotFoundError):
    """Equipment group with given code was not found."""

    code: str = "GROUP_NOT_FOUND"

    def __init__(self, group_code: str):
        self.group_code = group_code
        super().__init__(f"Equipment group not found: {group_code}")


class AllocationNotFoundError(NotFoundError):
    """No active allocation binds the serial to the receipt."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, receipt_id: str, serial_number: str):
        self.receipt_id = receipt_id
        self.serial_number = serial_number
        super().__init__(
            f"No active allocation of unit {serial_number} to receipt {receipt_id}"
        )


# State-related exceptions


class StateError(EquipmentKernelError):
    """Operation attempted from a status that does not permit it."""

    code: str = "STATE_ERROR"


class InvalidReceiptTransitionError(StateError):
    """The receipt's workflow has no transition for this action from its status."""

    code: str = "INVALID_RECEIPT_TRANSITION"

    def __init__(
        self,
        receipt_id: str,
        receipt_type: str,
        current_status: str,
        action: str,
    ):
        self.receipt_id = receipt_id
        self.receipt_type = receipt_type
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {receipt_type} receipt {receipt_id} "
            f"in status '{current_status}'"
        )


# Conflict-related exceptions


class ConflictError(EquipmentKernelError):
    """An invariant would be violated; the caller may re-read and retry."""

    code: str = "CONFLICT"


class InsufficientAvailabilityError(ConflictError):
    """Virtual availability of a group is below the requested quantity."""

    code: str = "INSUFFICIENT_AVAILABILITY"

    def __init__(self, group_code: str, requested: int, available: int):
        self.group_code = group_code
        self.requested = requested
        self.available = available
        super().__init__(
            f"Group {group_code}: requested {requested}, "
            f"virtually available {available}"
        )


class UnitStatusConflictError(ConflictError):
    """Unit status did not match the expected status at write time."""

    code: str = "UNIT_STATUS_CONFLICT"

    def __init__(self, serial_number: str, expected: str, actual: str | None):
        self.serial_number = serial_number
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Unit {serial_number} expected status '{expected}', "
            f"found '{actual}'"
        )


class DuplicateAllocationError(ConflictError):
    """The serial number is already bound to an active allocation."""

    code: str = "DUPLICATE_ALLOCATION"

    def __init__(self, serial_number: str, held_by_receipt_id: str | None = None):
        self.serial_number = serial_number
        self.held_by_receipt_id = held_by_receipt_id
        held = f" by receipt {held_by_receipt_id}" if held_by_receipt_id else ""
        super().__init__(f"Unit {serial_number} is already allocated{held}")


class LineFulfilledError(ConflictError):
    """The receipt already holds its full requested quantity for the group."""

    code: str = "LINE_FULFILLED"

    def __init__(self, receipt_id: str, group_code: str, quantity: int):
        self.receipt_id = receipt_id
        self.group_code = group_code
        self.quantity = quantity
        super().__init__(
            f"Receipt {receipt_id} already holds {quantity} unit(s) of "
            f"group {group_code}"
        )


class UnitLocationConflictError(ConflictError):
    """The unit is not in the room the operation expects."""

    code: str = "UNIT_LOCATION_CONFLICT"

    def __init__(self, serial_number: str, expected_room: str, actual_room: str | None):
        self.serial_number = serial_number
        self.expected_room = expected_room
        self.actual_room = actual_room
        super().__init__(
            f"Unit {serial_number} is in room '{actual_room}', "
            f"expected '{expected_room}'"
        )


class ConcurrentModificationError(ConflictError):
    """A competing transaction held the rows this operation needed."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(
            f"Concurrent modification during {operation}{suffix}"
        )


class DuplicateSerialError(ConflictError):
    """A unit with this serial number is already registered."""

    code: str = "DUPLICATE_SERIAL"

    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        super().__init__(f"Equipment unit already exists: {serial_number}")
