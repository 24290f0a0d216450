"""Validation, defaulting and lifecycle reconciliation."""

from microvm.lifecycle.defaults import DEFAULT_KERNEL_CMDLINE, apply_defaults, spec_digest
from microvm.lifecycle.reconciler import Action, ReconcileResult, Reconciler
from microvm.lifecycle.state_machine import can_transition, is_terminal, new_status, transition
from microvm.lifecycle.validator import Violation, ViolationKind, check, parse_spec, validate

__all__ = [
    "DEFAULT_KERNEL_CMDLINE",
    "apply_defaults",
    "spec_digest",
    "Action",
    "ReconcileResult",
    "Reconciler",
    "can_transition",
    "is_terminal",
    "new_status",
    "transition",
    "Violation",
    "ViolationKind",
    "check",
    "parse_spec",
    "validate",
]
