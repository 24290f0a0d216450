"""Exceptions raised by the microvm controller."""

import asyncio
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from microvm.lifecycle.validator import Violation
    from microvm.models.status import MicrovmStatus


class MicrovmError(Exception):
    """Base class for microvm controller errors."""
    pass


class SpecValidationError(MicrovmError):
    """A specification is malformed. Carries every violation found."""

    def __init__(self, violations: List["Violation"]):
        self.violations = list(violations)
        summary = "; ".join(str(v) for v in self.violations)
        super().__init__(f"Invalid microvm specification: {summary}")


class ResourceResolutionError(MicrovmError):
    """An image, kernel or volume artifact could not be resolved."""
    pass


class RuntimeCreateError(MicrovmError):
    """The runtime adapter failed to create an instance."""
    pass


class RuntimeDeleteError(MicrovmError):
    """The runtime adapter failed to delete an instance."""
    pass


class TransientQueryError(MicrovmError):
    """The runtime adapter could not report instance status."""
    pass


class UpdateUnsupported(MicrovmError):
    """The desired spec changed a field that requires recreation."""
    pass


class InvalidTransition(MicrovmError):
    """A lifecycle transition is not permitted."""
    pass


class ConfigError(MicrovmError):
    """Configuration could not be loaded."""
    pass


class CreateCancelled(asyncio.CancelledError):
    """An in-flight create was cancelled.

    ``status`` holds the state recorded after best-effort cleanup.
    """

    def __init__(self, status: "MicrovmStatus"):
        self.status = status
        super().__init__(f"Create cancelled, instance {status.instance_id} is {status.state.value}")
