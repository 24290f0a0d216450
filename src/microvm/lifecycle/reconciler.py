"""Reconciliation of desired microvm specs against runtime state.

The reconciler holds no state of its own. Each call gets the desired
spec (or None once it is withdrawn), the last observed status and an
adapter, and returns the new status together with the action taken.
Callers must not run two reconciles for the same microvm at once.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from microvm.exceptions import (
    CreateCancelled,
    ResourceResolutionError,
    RuntimeCreateError,
    RuntimeDeleteError,
    TransientQueryError,
    UpdateUnsupported,
)
from microvm.lifecycle.defaults import apply_defaults, spec_digest
from microvm.lifecycle.state_machine import record_error, transition
from microvm.lifecycle.validator import check
from microvm.models.spec import MicrovmSpec
from microvm.models.status import MicrovmStatus, VMState, new_instance_id
from microvm.providers.base import RuntimeAdapter, RuntimeStatus


logger = logging.getLogger(__name__)


class Action(str, Enum):
    """What a reconcile pass did."""
    CREATE = "create"
    NOOP = "noop"
    DELETE = "delete"
    UPDATE_UNSUPPORTED = "update_unsupported"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile pass."""
    status: Optional[MicrovmStatus]
    action: Action
    error: Optional[Exception] = None


class Reconciler:
    """Converges one microvm towards its desired spec."""

    def __init__(self, query_timeout: float = 10.0, max_pending_attempts: int = 10):
        """Initialize reconciler."""
        self.query_timeout = query_timeout
        self.max_pending_attempts = max_pending_attempts

    @classmethod
    def from_config(cls, config) -> "Reconciler":
        """Build a reconciler from the runtime section of the configuration."""
        return cls(
            query_timeout=config.runtime.query_timeout,
            max_pending_attempts=config.runtime.max_pending_attempts,
        )

    async def reconcile(
        self,
        desired: Optional[MicrovmSpec],
        observed: Optional[MicrovmStatus],
        adapter: RuntimeAdapter,
    ) -> ReconcileResult:
        """Run one reconcile pass.

        Raises SpecValidationError before touching the adapter when
        desired is invalid.
        """
        if desired is None:
            return await self._reconcile_withdrawn(observed, adapter)

        spec = apply_defaults(check(desired))
        digest = spec_digest(spec)

        if observed is None or observed.state == VMState.DELETED:
            return await self._create(None, spec, digest, adapter)

        if observed.state == VMState.FAILED:
            return await self._reconcile_failed(observed, spec, digest, adapter)

        status, error = await self._refresh(observed, adapter)
        if observed.spec_digest != digest:
            message = "Spec changed in a field that requires recreating the microvm"
            if error is not None:
                message += f"; status query also failed: {error}"
            logger.warning(
                f"Microvm {observed.instance_id} spec changed since creation; "
                "delete and recreate it to apply the change"
            )
            return ReconcileResult(status, Action.UPDATE_UNSUPPORTED, UpdateUnsupported(message))
        return ReconcileResult(status, Action.NOOP, error)

    async def _create(
        self,
        previous: Optional[MicrovmStatus],
        spec: MicrovmSpec,
        digest: str,
        adapter: RuntimeAdapter,
    ) -> ReconcileResult:
        """Submit a new incarnation to the runtime."""
        instance_id = new_instance_id()
        try:
            handle = await adapter.create(instance_id, spec)
        except asyncio.CancelledError as e:
            status = await self._abandon_create(previous, instance_id, digest, adapter)
            raise CreateCancelled(status) from e
        except ResourceResolutionError as e:
            error = e
        except Exception as e:
            error = RuntimeCreateError(f"Create failed: {e}")
            error.__cause__ = e
        else:
            status = transition(
                previous,
                VMState.PENDING,
                reason="create submitted",
                instance_id=instance_id,
                handle=handle,
                spec_digest=digest,
            )
            return ReconcileResult(status, Action.CREATE)

        logger.error(f"Failed to create microvm {instance_id}: {error}")
        status = transition(
            previous,
            VMState.FAILED,
            reason=str(error),
            error=type(error).__name__,
            instance_id=instance_id,
            handle=None,
            spec_digest=digest,
        )
        return ReconcileResult(status, Action.CREATE, error)

    async def _abandon_create(
        self,
        previous: Optional[MicrovmStatus],
        instance_id: str,
        digest: str,
        adapter: RuntimeAdapter,
    ) -> MicrovmStatus:
        """Clean up after a cancelled create."""
        submitted = transition(
            previous, VMState.PENDING, reason="create cancelled", instance_id=instance_id, spec_digest=digest
        )
        try:
            confirmed = await asyncio.shield(adapter.cleanup(instance_id))
        except Exception as e:
            logger.warning(f"Cleanup of cancelled create {instance_id} failed: {e}")
            confirmed = False

        if confirmed:
            return transition(submitted, VMState.DELETED, reason="create cancelled, cleanup confirmed")
        return transition(
            submitted,
            VMState.UNKNOWN,
            reason="create cancelled, cleanup not confirmed",
            error=CreateCancelled.__name__,
        )

    async def _reconcile_failed(
        self,
        observed: MicrovmStatus,
        spec: MicrovmSpec,
        digest: str,
        adapter: RuntimeAdapter,
    ) -> ReconcileResult:
        """Retry a failed microvm when a retry can make progress."""
        if observed.handle is not None:
            if observed.spec_digest == digest:
                return ReconcileResult(observed, Action.NOOP)
            # Remediated declaration; drop the failed instance first.
            try:
                await adapter.delete(observed.handle)
            except Exception as e:
                error = e if isinstance(e, RuntimeDeleteError) else RuntimeDeleteError(f"Delete failed: {e}")
                logger.error(f"Failed to remove failed microvm {observed.instance_id}: {error}")
                return ReconcileResult(record_error(observed, error), Action.DELETE, error)

        logger.info(f"Retrying creation of failed microvm {observed.instance_id}")
        return await self._create(observed, spec, digest, adapter)

    async def _refresh(self, observed: MicrovmStatus, adapter: RuntimeAdapter):
        """Query the runtime and map its answer onto the state machine."""
        if observed.handle is None:
            return await self._recheck_orphan(observed, adapter), None

        try:
            runtime_status = await asyncio.wait_for(adapter.query(observed.handle), timeout=self.query_timeout)
        except asyncio.TimeoutError:
            error = TransientQueryError(f"Status query timed out after {self.query_timeout}s")
        except TransientQueryError as e:
            error = e
        except Exception as e:
            error = TransientQueryError(f"Status query failed: {e}")
        else:
            if runtime_status == RuntimeStatus.RUNNING:
                return transition(observed, VMState.RUNNING, reason="runtime reports instance running"), None
            if runtime_status == RuntimeStatus.FAILED:
                return transition(observed, VMState.FAILED, reason="runtime reports instance failed"), None
            return self._not_confirmed(observed, "runtime status is ambiguous"), None

        logger.warning(f"Could not query microvm {observed.instance_id}: {error}")
        return self._not_confirmed(observed, str(error), error), error

    def _not_confirmed(
        self,
        observed: MicrovmStatus,
        reason: str,
        error: Optional[Exception] = None,
    ) -> MicrovmStatus:
        """Handle a query that did not establish the instance's state."""
        error_name = type(error).__name__ if error is not None else None
        if observed.state != VMState.PENDING:
            return transition(observed, VMState.UNKNOWN, reason=reason, error=error_name)

        attempts = observed.pending_attempts + 1
        if attempts >= self.max_pending_attempts:
            return transition(
                observed,
                VMState.FAILED,
                reason=f"not confirmed running after {attempts} attempts: {reason}",
                error=error_name,
            )
        return transition(observed, VMState.PENDING, reason=reason, pending_attempts=attempts, error=error_name)

    async def _recheck_orphan(self, observed: MicrovmStatus, adapter: RuntimeAdapter) -> MicrovmStatus:
        """Re-check an instance whose create never returned a handle."""
        try:
            confirmed = await adapter.cleanup(observed.instance_id)
        except Exception as e:
            logger.warning(f"Cleanup of {observed.instance_id} failed: {e}")
            confirmed = False
        if confirmed:
            return transition(observed, VMState.DELETED, reason="leftover instance cleaned up")
        return transition(observed, VMState.UNKNOWN, reason="leftover instance cleanup not confirmed")

    async def _reconcile_withdrawn(
        self,
        observed: Optional[MicrovmStatus],
        adapter: RuntimeAdapter,
    ) -> ReconcileResult:
        """Tear down a microvm whose spec is gone."""
        if observed is None or observed.state == VMState.DELETED:
            return ReconcileResult(observed, Action.NOOP)

        if observed.handle is None:
            if observed.state == VMState.UNKNOWN:
                status = await self._recheck_orphan(observed, adapter)
                return ReconcileResult(status, Action.DELETE)
            status = transition(observed, VMState.DELETED, reason="microvm withdrawn, nothing to remove")
            return ReconcileResult(status, Action.DELETE)

        try:
            await adapter.delete(observed.handle)
        except RuntimeDeleteError as e:
            error = e
        except Exception as e:
            error = RuntimeDeleteError(f"Delete failed: {e}")
            error.__cause__ = e
        else:
            return ReconcileResult(transition(observed, VMState.DELETED, reason="microvm withdrawn"), Action.DELETE)

        logger.error(f"Failed to delete microvm {observed.instance_id}: {error}")
        return ReconcileResult(record_error(observed, error), Action.DELETE, error)
