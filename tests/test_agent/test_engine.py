"""Tests for the MicrovmController."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, Mock

from microvm.agent.config import ConfigManager
from microvm.agent.engine import MicrovmController
from microvm.exceptions import CreateCancelled
from microvm.lifecycle.reconciler import Action, Reconciler
from microvm.lifecycle.validator import Violation, ViolationKind, parse_spec
from microvm.models.spec import Microvm
from microvm.models.status import InstanceHandle, VMState
from microvm.providers.image import ImageCacheResolver
from microvm.providers.simulated import SimulatedRuntime


def make_microvm(name, vcpu=1):
    return Microvm(name=name, labels={"app": name}, spec=parse_spec({
        "vcpu": vcpu,
        "memoryMb": 1024,
        "rootVolume": {"id": "root", "image": "rootfs:v1"},
        "kernel": {"image": "kernel:v1"},
        "networkInterfaces": [{"guestDeviceName": "eth0", "type": "tap"}],
    }))


@pytest.fixture
def mock_config_manager():
    """Create a mock ConfigManager with pre-loaded declarations."""
    manager = Mock()
    manager.microvms = {"web": make_microvm("web"), "db": make_microvm("db")}
    manager.invalid = {}
    manager.get_microvm.side_effect = lambda name: manager.microvms.get(name)
    return manager


@pytest.fixture
def runtime(tmp_path):
    return SimulatedRuntime(resolver=ImageCacheResolver(tmp_path / "images"))


@pytest.fixture
def controller(mock_config_manager, runtime):
    """Create a MicrovmController over the simulated runtime."""
    return MicrovmController(
        config_manager=mock_config_manager,
        adapter=runtime,
        reconciler=Reconciler(query_timeout=1.0, max_pending_attempts=3),
    )


@pytest.mark.asyncio
class TestMicrovmController:
    """Test reconciliation scheduling."""

    async def test_lifecycle(self, controller, mock_config_manager, runtime):
        """Test create, confirm and withdraw across passes."""
        results = await controller.reconcile()
        assert {name: r.action for name, r in results.items()} == {"db": Action.CREATE, "web": Action.CREATE}
        assert controller.statuses["web"].state == VMState.PENDING
        assert len(runtime.instances) == 2

        await controller.reconcile()
        assert controller.statuses["web"].state == VMState.RUNNING
        assert len(runtime.instances) == 2

        del mock_config_manager.microvms["web"]
        results = await controller.reconcile()
        assert results["web"].action == Action.DELETE
        assert results["web"].status.state == VMState.DELETED
        assert len(runtime.instances) == 1

        results = await controller.reconcile()
        assert results["web"].action == Action.NOOP
        assert "web" not in controller.statuses
        assert controller.get_status("web") is None
        assert controller.last_reconciliation is not None

    async def test_invalid_declarations_skipped(self, controller, mock_config_manager, runtime):
        """Test an invalid declaration is not reconciled, nor its instance deleted."""
        await controller.reconcile()
        del mock_config_manager.microvms["web"]
        mock_config_manager.invalid = {"web": [Violation("vcpu", ViolationKind.BELOW_MINIMUM)]}

        results = await controller.reconcile()

        assert "web" not in results
        assert controller.statuses["web"].state == VMState.PENDING
        assert len(runtime.instances) == 2

    async def test_failure_isolated(self, mock_config_manager):
        """Test one microvm's error does not stop the others."""
        reconciler = Mock()

        async def reconcile(desired, observed, adapter):
            if desired.vcpu == 2:
                raise RuntimeError("boom")
            return await Reconciler().reconcile(desired, observed, adapter)

        reconciler.reconcile = reconcile
        mock_config_manager.microvms["web"] = make_microvm("web", vcpu=2)
        adapter = AsyncMock()
        adapter.create.return_value = InstanceHandle(id="vm-1")
        controller = MicrovmController(mock_config_manager, adapter, reconciler)

        results = await controller.reconcile()

        assert set(results) == {"db"}
        assert "web" not in controller.statuses

    async def test_cancelled_create_recorded(self, mock_config_manager):
        """Test cancellation keeps the status left behind by cleanup."""
        adapter = AsyncMock()
        adapter.create.side_effect = asyncio.CancelledError()
        adapter.cleanup.return_value = False
        controller = MicrovmController(mock_config_manager, adapter)

        with pytest.raises(CreateCancelled):
            await controller.reconcile_one("web")

        assert controller.statuses["web"].state == VMState.UNKNOWN

    async def test_concurrent_reconciles_of_one_microvm(self, controller, runtime):
        """Test passes for one microvm are serialised and create once."""
        await asyncio.gather(*(controller.reconcile_one("web") for _ in range(5)))

        assert len(runtime.instances) == 1
        assert controller.statuses["web"].state == VMState.RUNNING

    async def test_get_status(self, controller):
        await controller.reconcile()

        status = controller.get_status("web")

        assert status["name"] == "web"
        assert status["declared"] is True
        assert status["labels"] == {"app": "web"}
        assert status["status"]["state"] == "pending"
        assert status["last_action"] == "create"
        assert status["last_error"] is None
        assert controller.get_status("missing") is None

    async def test_write_snapshot(self, controller, mock_config_manager, tmp_path):
        """Test the snapshot document written for the CLI."""
        mock_config_manager.invalid = {"bad": [Violation("vcpu", ViolationKind.BELOW_MINIMUM, "must be at least 1")]}
        await controller.reconcile()
        path = tmp_path / "state" / "status.json"

        controller.write_snapshot(path)

        snapshot = json.loads(path.read_text())
        assert set(snapshot["microvms"]) == {"db", "web"}
        assert snapshot["microvms"]["db"]["status"]["state"] == "pending"
        assert snapshot["invalid"] == {"bad": ["vcpu: BelowMinimum (must be at least 1)"]}
        assert not path.with_suffix(".tmp").exists()

    async def test_overlapping_reconciles_of_withdrawn_microvm(self, controller, mock_config_manager):
        """Test a forgotten microvm never ends up with two reconciles in flight."""
        await controller.reconcile()
        await controller.reconcile()
        del mock_config_manager.microvms["web"]

        in_flight = []
        peak = []
        reconcile = controller.reconciler.reconcile

        async def tracked(desired, observed, adapter):
            in_flight.append(observed)
            peak.append(len(in_flight))
            try:
                await asyncio.sleep(0.01)
                return await reconcile(desired, observed, adapter)
            finally:
                in_flight.pop()

        controller.reconciler.reconcile = tracked
        deleting, forgetting, waiting = (
            asyncio.create_task(controller.reconcile_one("web")) for _ in range(3)
        )
        await forgetting
        newcomer = asyncio.create_task(controller.reconcile_one("web"))
        await asyncio.gather(deleting, waiting, newcomer)

        assert (await deleting).action == Action.DELETE
        assert max(peak) == 1


DECLARATION = """
web:
  spec:
    vcpu: 1
    memoryMb: 1024
    rootVolume: {id: root, image: "rootfs:v1"}
    kernel: {image: "kernel:v1"}
    networkInterfaces:
      - {guestDeviceName: eth0, type: tap}
"""


@pytest.mark.asyncio
class TestConfigReload:
    """Test reconciling across configuration reloads."""

    @pytest.fixture
    def config_dir(self, tmp_path):
        (tmp_path / "microvms").mkdir()
        (tmp_path / "config.yaml").write_text("runtime:\n  adapter: simulated\n")
        (tmp_path / "microvms" / "web.yaml").write_text(DECLARATION)
        return tmp_path

    @pytest.mark.parametrize("corruption", ["  broken: [unclosed\n", "- web\n"])
    async def test_broken_file_does_not_delete_running_microvm(self, config_dir, runtime, corruption):
        """Test a broken edit to a declaration file leaves its microvms running."""
        manager = ConfigManager(config_dir)
        await manager.load()
        controller = MicrovmController(manager, runtime)
        await controller.reconcile()
        await controller.reconcile()
        assert controller.statuses["web"].state == VMState.RUNNING

        web_file = config_dir / "microvms" / "web.yaml"
        if corruption.startswith("-"):
            web_file.write_text(corruption)
        else:
            web_file.write_text(web_file.read_text() + corruption)
        await manager.load()
        results = await controller.reconcile()

        assert results["web"].action == Action.NOOP
        assert controller.statuses["web"].state == VMState.RUNNING
        assert len(runtime.instances) == 1
