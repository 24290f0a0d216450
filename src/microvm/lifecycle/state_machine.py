"""Microvm lifecycle state machine.

Transitions produce new MicrovmStatus values. ``None`` stands for "no
instance yet". ``deleted`` is terminal: a microvm wanted again after
deletion starts over as a new incarnation with a new instance id.
"""

import logging
from typing import Dict, FrozenSet, Optional

from microvm.exceptions import InvalidTransition
from microvm.models.status import MicrovmStatus, VMState, utcnow, new_instance_id


logger = logging.getLogger(__name__)


TRANSITIONS: Dict[Optional[VMState], FrozenSet[VMState]] = {
    None: frozenset({VMState.PENDING, VMState.FAILED}),
    VMState.PENDING: frozenset(
        {VMState.PENDING, VMState.RUNNING, VMState.FAILED, VMState.UNKNOWN, VMState.DELETED}
    ),
    VMState.RUNNING: frozenset({VMState.RUNNING, VMState.UNKNOWN, VMState.FAILED, VMState.DELETED}),
    VMState.UNKNOWN: frozenset({VMState.UNKNOWN, VMState.RUNNING, VMState.FAILED, VMState.DELETED}),
    VMState.FAILED: frozenset({VMState.FAILED, VMState.PENDING, VMState.DELETED}),
    VMState.DELETED: frozenset(),
}


def is_terminal(state: Optional[VMState]) -> bool:
    """Check whether no transition leaves state."""
    return state is not None and not TRANSITIONS[state]


def can_transition(current: Optional[VMState], target: VMState) -> bool:
    """Check whether current -> target is allowed."""
    return target in TRANSITIONS[current]


def new_status(state: VMState, reason: Optional[str] = None, **changes) -> MicrovmStatus:
    """Start a new incarnation in state."""
    return transition(None, state, reason=reason, **changes)


def transition(
    status: Optional[MicrovmStatus],
    target: VMState,
    reason: Optional[str] = None,
    **changes,
) -> MicrovmStatus:
    """Move status to target, returning the new status.

    Extra keyword arguments update other status fields. Unless given
    explicitly, the recorded error is cleared and ``pending_attempts``
    resets whenever the state changes.
    """
    current = status.state if status is not None else None
    if not can_transition(current, target):
        source = current.value if current is not None else "(none)"
        raise InvalidTransition(f"Cannot transition from {source} to {target.value}")

    changes.setdefault("error", None)
    if current != target:
        changes.setdefault("pending_attempts", 0)

    if status is None:
        changes.setdefault("instance_id", new_instance_id())
        updated = MicrovmStatus(state=target, reason=reason, **changes)
    else:
        if current != target:
            changes.setdefault("last_transition", utcnow())
        updated = status.model_copy(update={"state": target, "reason": reason, **changes})

    if current != target:
        source = current.value if current is not None else "(none)"
        logger.info(f"Microvm {updated.instance_id} {source} -> {target.value}: {reason or 'no reason given'}")
    return updated


def record_error(status: MicrovmStatus, error: Exception, reason: Optional[str] = None) -> MicrovmStatus:
    """Record a failure on status without changing its state."""
    return status.model_copy(
        update={"error": type(error).__name__, "reason": reason or str(error)}
    )
