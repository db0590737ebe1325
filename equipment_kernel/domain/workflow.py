"""
Receipt workflows (``equipment_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the receipt state machines and the four
transition tables (borrow, transfer, liquidation, import).  The
ReceiptStateMachine service looks every status change up here; a
(status, action) pair with no row is a StateError.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or ``models/``.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``; terminal states have no
  outgoing transitions.
* Every transition moves forward in ``states`` order or stays put.
  ``rejected`` is listed last and is reachable only from ``requested``.
"""

from __future__ import annotations

from dataclasses import dataclass

from equipment_kernel.domain.statuses import ReceiptStatus, ReceiptType
from equipment_kernel.logging_config import get_logger

logger = get_logger("domain.workflow")


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only: the state machine service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: ReceiptStatus
    to_state: ReceiptStatus
    action: str
    guard: Guard | None = None

    @property
    def is_self_loop(self) -> bool:
        return self.from_state == self.to_state


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one receipt type.

    ``states`` is listed in forward order.
    """
    name: str
    description: str
    initial_state: ReceiptStatus
    states: tuple[ReceiptStatus, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[ReceiptStatus, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {t.from_state} has outgoing transition"
                )

    def find_transition(self, from_state: ReceiptStatus, action: str) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def allows(self, from_state: ReceiptStatus, action: str) -> bool:
        return self.find_transition(from_state, action) is not None

    def is_terminal(self, state: ReceiptStatus) -> bool:
        return state in self.terminal_states


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

APPROVE = "approve"
REJECT = "reject"
SCAN_IN = "scan_in"
SCAN_OUT = "scan_out"
FULFIL = "fulfil"
MARK_RETURNED = "mark_returned"
MARK_TRANSFERRED = "mark_transferred"
MARK_LIQUIDATED = "mark_liquidated"
RECEIVE = "receive"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

SUFFICIENT_AVAILABILITY = Guard(
    name="sufficient_availability",
    description="Every group line fits within the group's virtual availability",
)

ALL_LINES_FULFILLED = Guard(
    name="all_lines_fulfilled",
    description="Allocated count equals requested quantity on every group line",
)

UNITS_HELD = Guard(
    name="units_held",
    description="Every named unit is bound to the receipt by an active allocation",
)

logger.debug(
    "receipt_workflow_guards_defined",
    extra={
        "guards": [
            SUFFICIENT_AVAILABILITY.name,
            ALL_LINES_FULFILLED.name,
            UNITS_HELD.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Workflows
# -----------------------------------------------------------------------------

_S = ReceiptStatus

BORROW_WORKFLOW = Workflow(
    name="borrow_receipt",
    description="Borrow a quantity of units per group, allocated by scanning",
    initial_state=_S.REQUESTED,
    states=(
        _S.REQUESTED,
        _S.APPROVED,
        _S.PROCESSING,
        _S.BORROWED,
        _S.RETURNED,
        _S.REJECTED,
    ),
    transitions=(
        Transition(_S.REQUESTED, _S.APPROVED, action=APPROVE, guard=SUFFICIENT_AVAILABILITY),
        Transition(_S.REQUESTED, _S.REJECTED, action=REJECT),
        Transition(_S.APPROVED, _S.PROCESSING, action=SCAN_IN),
        Transition(_S.PROCESSING, _S.PROCESSING, action=SCAN_IN),
        Transition(_S.PROCESSING, _S.PROCESSING, action=SCAN_OUT),
        Transition(_S.PROCESSING, _S.BORROWED, action=FULFIL, guard=ALL_LINES_FULFILLED),
        Transition(_S.BORROWED, _S.RETURNED, action=MARK_RETURNED),
    ),
    terminal_states=(_S.RETURNED, _S.REJECTED),
)

TRANSFER_WORKFLOW = Workflow(
    name="transfer_receipt",
    description="Move named units from one room to another",
    initial_state=_S.REQUESTED,
    states=(_S.REQUESTED, _S.APPROVED, _S.TRANSFERRED, _S.REJECTED),
    transitions=(
        Transition(_S.REQUESTED, _S.APPROVED, action=APPROVE),
        Transition(_S.REQUESTED, _S.REJECTED, action=REJECT),
        Transition(_S.APPROVED, _S.TRANSFERRED, action=MARK_TRANSFERRED, guard=UNITS_HELD),
    ),
    terminal_states=(_S.TRANSFERRED, _S.REJECTED),
)

LIQUIDATION_WORKFLOW = Workflow(
    name="liquidation_receipt",
    description="Retire named units permanently",
    initial_state=_S.REQUESTED,
    states=(_S.REQUESTED, _S.APPROVED, _S.LIQUIDATED, _S.REJECTED),
    transitions=(
        Transition(_S.REQUESTED, _S.APPROVED, action=APPROVE),
        Transition(_S.REQUESTED, _S.REJECTED, action=REJECT),
        Transition(_S.APPROVED, _S.LIQUIDATED, action=MARK_LIQUIDATED, guard=UNITS_HELD),
    ),
    terminal_states=(_S.LIQUIDATED, _S.REJECTED),
)

IMPORT_WORKFLOW = Workflow(
    name="import_receipt",
    description="Receive new units from a supplier into the pool",
    initial_state=_S.REQUESTED,
    states=(_S.REQUESTED, _S.APPROVED, _S.RECEIVED, _S.REJECTED),
    transitions=(
        Transition(_S.REQUESTED, _S.APPROVED, action=APPROVE),
        Transition(_S.REQUESTED, _S.REJECTED, action=REJECT),
        Transition(_S.APPROVED, _S.RECEIVED, action=RECEIVE),
    ),
    terminal_states=(_S.RECEIVED, _S.REJECTED),
)

WORKFLOWS: dict[ReceiptType, Workflow] = {
    ReceiptType.BORROW: BORROW_WORKFLOW,
    ReceiptType.TRANSFER: TRANSFER_WORKFLOW,
    ReceiptType.LIQUIDATION: LIQUIDATION_WORKFLOW,
    ReceiptType.IMPORT: IMPORT_WORKFLOW,
}
