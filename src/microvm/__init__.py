"""
Microvm controller - declarative microvm lifecycle management.

Validates microvm specifications, fills in their defaults and reconciles
them against a hypervisor runtime through a failure-aware state machine.
"""

__version__ = "1.0.0"

# Re-export key components for easier access
from microvm.lifecycle import Action, Reconciler, apply_defaults, parse_spec, validate
from microvm.models.spec import MicrovmSpec
from microvm.models.status import MicrovmStatus, VMState

__all__ = [
    "Action",
    "Reconciler",
    "apply_defaults",
    "parse_spec",
    "validate",
    "MicrovmSpec",
    "MicrovmStatus",
    "VMState",
]
