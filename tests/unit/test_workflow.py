"""
Receipt workflow tables.

Covers:
- Every transition moves forward in state order (or stays put)
- rejected reachable only from requested
- Terminal states have no outgoing transitions
- Lookups for allowed and refused actions
- Workflow definition validation
"""

import pytest

from equipment_kernel.domain import workflow as wf
from equipment_kernel.domain.statuses import HOLD_STATUS, ReceiptStatus, ReceiptType, UnitStatus
from equipment_kernel.domain.workflow import WORKFLOWS, Transition, Workflow

ALL_WORKFLOWS = list(WORKFLOWS.values())


class TestWorkflowShape:
    """Structural checks across all four receipt workflows."""

    def test_one_workflow_per_receipt_type(self):
        """Each receipt type has exactly one workflow."""
        assert set(WORKFLOWS) == set(ReceiptType)

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_transitions_only_move_forward(self, workflow):
        """No transition goes to an earlier state."""
        order = {state: i for i, state in enumerate(workflow.states)}
        for t in workflow.transitions:
            assert order[t.to_state] >= order[t.from_state], t

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_rejected_only_from_requested(self, workflow):
        """Only a requested receipt can be rejected."""
        sources = {t.from_state for t in workflow.transitions if t.to_state == ReceiptStatus.REJECTED}
        assert sources == {ReceiptStatus.REQUESTED}

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_terminal_states_have_no_exits(self, workflow):
        """Terminal states never appear as a transition source."""
        for state in workflow.terminal_states:
            assert all(t.from_state != state for t in workflow.transitions)

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_initial_state_is_requested(self, workflow):
        assert workflow.initial_state == ReceiptStatus.REQUESTED

    def test_unit_receipts_hold_units_in_type_specific_status(self):
        """Borrow, transfer and liquidation each map to a distinct hold status."""
        assert HOLD_STATUS[ReceiptType.BORROW] == UnitStatus.RESERVED
        assert HOLD_STATUS[ReceiptType.TRANSFER] == UnitStatus.PENDING_TRANSFER
        assert HOLD_STATUS[ReceiptType.LIQUIDATION] == UnitStatus.LIQUIDATION


class TestBorrowWorkflow:
    """The borrow lifecycle, including the processing self-loops."""

    def test_first_scan_moves_approved_to_processing(self):
        t = wf.BORROW_WORKFLOW.find_transition(ReceiptStatus.APPROVED, wf.SCAN_IN)
        assert t.to_state == ReceiptStatus.PROCESSING
        assert not t.is_self_loop

    def test_scans_in_processing_are_self_loops(self):
        for action in (wf.SCAN_IN, wf.SCAN_OUT):
            t = wf.BORROW_WORKFLOW.find_transition(ReceiptStatus.PROCESSING, action)
            assert t is not None and t.is_self_loop

    def test_scan_out_not_allowed_from_approved(self):
        """Nothing is bound in approved, so there is nothing to scan out."""
        assert not wf.BORROW_WORKFLOW.allows(ReceiptStatus.APPROVED, wf.SCAN_OUT)

    def test_fulfil_is_guarded(self):
        t = wf.BORROW_WORKFLOW.find_transition(ReceiptStatus.PROCESSING, wf.FULFIL)
        assert t.to_state == ReceiptStatus.BORROWED
        assert t.guard is wf.ALL_LINES_FULFILLED

    def test_approve_is_guarded_by_availability(self):
        t = wf.BORROW_WORKFLOW.find_transition(ReceiptStatus.REQUESTED, wf.APPROVE)
        assert t.guard is wf.SUFFICIENT_AVAILABILITY

    def test_returned_is_terminal(self):
        assert wf.BORROW_WORKFLOW.is_terminal(ReceiptStatus.RETURNED)
        assert not wf.BORROW_WORKFLOW.allows(ReceiptStatus.RETURNED, wf.MARK_RETURNED)

    def test_no_scan_after_borrowed(self):
        assert not wf.BORROW_WORKFLOW.allows(ReceiptStatus.BORROWED, wf.SCAN_IN)
        assert not wf.BORROW_WORKFLOW.allows(ReceiptStatus.BORROWED, wf.SCAN_OUT)


class TestSimpleWorkflows:
    """Transfer, liquidation and import share the requested/approved prefix."""

    @pytest.mark.parametrize(
        "workflow, action, final",
        [
            (wf.TRANSFER_WORKFLOW, wf.MARK_TRANSFERRED, ReceiptStatus.TRANSFERRED),
            (wf.LIQUIDATION_WORKFLOW, wf.MARK_LIQUIDATED, ReceiptStatus.LIQUIDATED),
            (wf.IMPORT_WORKFLOW, wf.RECEIVE, ReceiptStatus.RECEIVED),
        ],
    )
    def test_completion_only_from_approved(self, workflow, action, final):
        assert workflow.find_transition(ReceiptStatus.APPROVED, action).to_state == final
        assert not workflow.allows(ReceiptStatus.REQUESTED, action)
        assert workflow.is_terminal(final)

    @pytest.mark.parametrize("workflow", [wf.TRANSFER_WORKFLOW, wf.LIQUIDATION_WORKFLOW, wf.IMPORT_WORKFLOW])
    def test_no_scanning(self, workflow):
        for state in workflow.states:
            assert not workflow.allows(state, wf.SCAN_IN)


class TestWorkflowValidation:
    """Workflow.__post_init__ rejects malformed tables."""

    def test_initial_state_must_be_listed(self):
        with pytest.raises(ValueError, match="initial state"):
            Workflow(
                name="broken",
                description="",
                initial_state=ReceiptStatus.REQUESTED,
                states=(ReceiptStatus.APPROVED,),
                transitions=(),
            )

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="broken",
                description="",
                initial_state=ReceiptStatus.REQUESTED,
                states=(ReceiptStatus.REQUESTED,),
                transitions=(Transition(ReceiptStatus.REQUESTED, ReceiptStatus.APPROVED, action="approve"),),
            )

    def test_terminal_state_with_exit(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="broken",
                description="",
                initial_state=ReceiptStatus.REQUESTED,
                states=(ReceiptStatus.REQUESTED, ReceiptStatus.APPROVED),
                transitions=(Transition(ReceiptStatus.APPROVED, ReceiptStatus.APPROVED, action="noop"),),
                terminal_states=(ReceiptStatus.APPROVED,),
            )
