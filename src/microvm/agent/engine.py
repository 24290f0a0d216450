"""Reconciliation scheduling across microvms."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from microvm.agent.config import ConfigManager
from microvm.exceptions import CreateCancelled
from microvm.lifecycle.reconciler import Action, ReconcileResult, Reconciler
from microvm.models.status import MicrovmStatus, VMState
from microvm.providers.base import RuntimeAdapter


logger = logging.getLogger(__name__)


class MicrovmController:
    """Keeps observed microvm state converged with the declarations.

    Reconciles for one microvm are serialised through a per-name lock;
    different microvms are reconciled concurrently.  Locks outlive the
    status they guard so a waiter and a newcomer always share one.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        adapter: RuntimeAdapter,
        reconciler: Optional[Reconciler] = None,
    ):
        """Initialize controller."""
        self.config_manager = config_manager
        self.adapter = adapter
        self.reconciler = reconciler or Reconciler()
        self.statuses: Dict[str, MicrovmStatus] = {}
        self.last_results: Dict[str, ReconcileResult] = {}
        self.last_reconciliation: Optional[datetime] = None
        self._reconciliation_lock = asyncio.Lock()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def reconcile(self) -> Dict[str, ReconcileResult]:
        """Reconcile every declared or still-observed microvm."""
        async with self._reconciliation_lock:
            start_time = datetime.now()
            logger.info("Starting state reconciliation")

            # Invalid declarations are neither created nor torn down
            names = (set(self.config_manager.microvms) | set(self.statuses)) - set(self.config_manager.invalid)
            ordered = sorted(names)
            outcomes = await asyncio.gather(
                *(self.reconcile_one(name) for name in ordered), return_exceptions=True
            )

            results: Dict[str, ReconcileResult] = {}
            for name, outcome in zip(ordered, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    logger.error(f"Failed to reconcile microvm {name}: {outcome}")
                    continue
                results[name] = outcome

            self.last_reconciliation = datetime.now()
            duration = (self.last_reconciliation - start_time).total_seconds()
            logger.info(f"State reconciliation of {len(ordered)} microvm(s) completed in {duration:.2f}s")
            return results

    async def reconcile_one(self, name: str) -> ReconcileResult:
        """Reconcile a single microvm."""
        async with self._lock_for(name):
            microvm = self.config_manager.get_microvm(name)
            desired = microvm.spec if microvm is not None else None
            observed = self.statuses.get(name)

            try:
                result = await self.reconciler.reconcile(desired, observed, self.adapter)
            except CreateCancelled as e:
                self.statuses[name] = e.status
                raise

            self._record(name, result, withdrawn=desired is None)
            return result

    def _record(self, name: str, result: ReconcileResult, withdrawn: bool):
        self.last_results[name] = result
        status = result.status
        if status is None or (withdrawn and result.action == Action.NOOP and status.state == VMState.DELETED):
            # Withdrawn and already reported as deleted, forget it
            self.statuses.pop(name, None)
            self.last_results.pop(name, None)
            return
        self.statuses[name] = status

        if result.action == Action.UPDATE_UNSUPPORTED:
            logger.warning(f"Microvm {name}: {result.error}")
        elif result.error is not None:
            logger.warning(f"Microvm {name} is {status.state.value}: {result.error}")
        elif result.action != Action.NOOP:
            logger.info(f"Microvm {name}: {result.action.value}, now {status.state.value}")

    def get_status(self, name: str) -> Optional[Dict[str, Any]]:
        """Get the observed status of a microvm as a record."""
        microvm = self.config_manager.get_microvm(name)
        status = self.statuses.get(name)
        if microvm is None and status is None:
            return None

        result = self.last_results.get(name)
        return {
            "name": name,
            "declared": microvm is not None,
            "labels": dict(microvm.labels) if microvm is not None else {},
            "status": status.to_record() if status is not None else None,
            "last_action": result.action.value if result is not None else None,
            "last_error": str(result.error) if result is not None and result.error is not None else None,
        }

    def get_all_statuses(self) -> Dict[str, Dict[str, Any]]:
        """Get status records for all known microvms."""
        statuses = {}
        for name in sorted(set(self.config_manager.microvms) | set(self.statuses)):
            status = self.get_status(name)
            if status:
                statuses[name] = status
        return statuses

    def snapshot(self) -> Dict[str, Any]:
        """Build the status snapshot document."""
        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "microvms": self.get_all_statuses(),
            "invalid": {
                name: [str(v) for v in violations]
                for name, violations in sorted(self.config_manager.invalid.items())
            },
        }

    def write_snapshot(self, path: Path):
        """Write the status snapshot as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self.snapshot(), indent=2))
        tmp_path.replace(path)
        logger.debug(f"Wrote status snapshot to {path}")
