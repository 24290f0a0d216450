"""Tests for the lifecycle state machine."""

import pytest

from microvm.exceptions import InvalidTransition, RuntimeDeleteError
from microvm.lifecycle.state_machine import (
    TRANSITIONS,
    can_transition,
    is_terminal,
    new_status,
    record_error,
    transition,
)
from microvm.models.status import InstanceHandle, VMState


class TestTransitions:
    """Test the transition table."""

    def test_initial_states(self):
        """Test where a new incarnation may start."""
        assert can_transition(None, VMState.PENDING)
        assert can_transition(None, VMState.FAILED)
        assert not can_transition(None, VMState.RUNNING)
        assert not can_transition(None, VMState.DELETED)

    @pytest.mark.parametrize("target", list(VMState))
    def test_deleted_is_terminal(self, target):
        """Test that nothing leaves deleted."""
        assert not can_transition(VMState.DELETED, target)

    def test_only_deleted_is_terminal(self):
        """Test terminal state detection."""
        assert [s for s in VMState if is_terminal(s)] == [VMState.DELETED]
        assert not is_terminal(None)

    @pytest.mark.parametrize("state", [VMState.PENDING, VMState.RUNNING, VMState.FAILED, VMState.UNKNOWN])
    def test_delete_reachable(self, state):
        """Test that an explicit delete is possible from every live state."""
        assert can_transition(state, VMState.DELETED)

    def test_failed_can_retry(self):
        """Test that failed is not terminal."""
        assert can_transition(VMState.FAILED, VMState.PENDING)

    def test_running_never_returns_to_pending(self):
        """Test running does not regress to pending."""
        assert not can_transition(VMState.RUNNING, VMState.PENDING)

    def test_every_state_in_table(self):
        """Test the table covers every state."""
        assert set(TRANSITIONS) == {None, *VMState}


class TestTransition:
    """Test transition()."""

    def test_new_status(self):
        """Test starting a new incarnation."""
        status = new_status(VMState.PENDING, reason="create submitted")

        assert status.state == VMState.PENDING
        assert status.reason == "create submitted"
        assert status.instance_id

    def test_returns_new_value(self):
        """Test that the input status is untouched."""
        pending = new_status(VMState.PENDING, handle=InstanceHandle(id="vm-1"))

        running = transition(pending, VMState.RUNNING, reason="booted")

        assert pending.state == VMState.PENDING
        assert running.state == VMState.RUNNING
        assert running.instance_id == pending.instance_id
        assert running.handle == pending.handle
        assert running.last_transition >= pending.last_transition

    def test_invalid_transition(self):
        """Test that disallowed moves raise."""
        running = transition(new_status(VMState.PENDING), VMState.RUNNING)

        with pytest.raises(InvalidTransition) as exc_info:
            transition(running, VMState.PENDING)

        assert "running to pending" in str(exc_info.value)

    def test_no_transition_out_of_deleted(self):
        """Test deleted statuses cannot move."""
        deleted = transition(new_status(VMState.PENDING), VMState.DELETED)

        for target in VMState:
            with pytest.raises(InvalidTransition):
                transition(deleted, target)

    def test_state_change_resets_attempts_and_error(self):
        """Test bookkeeping reset on state change."""
        pending = new_status(VMState.PENDING, pending_attempts=3, error="TransientQueryError")

        running = transition(pending, VMState.RUNNING)

        assert running.pending_attempts == 0
        assert running.error is None

    def test_self_transition_keeps_timestamp(self):
        """Test that staying in a state is not a new transition."""
        pending = new_status(VMState.PENDING)

        still_pending = transition(pending, VMState.PENDING, pending_attempts=1)

        assert still_pending.last_transition == pending.last_transition
        assert still_pending.pending_attempts == 1

    def test_record_error_keeps_state(self):
        """Test recording a failure without a transition."""
        running = transition(new_status(VMState.PENDING), VMState.RUNNING)

        updated = record_error(running, RuntimeDeleteError("boom"))

        assert updated.state == VMState.RUNNING
        assert updated.error == "RuntimeDeleteError"
        assert updated.reason == "boom"
