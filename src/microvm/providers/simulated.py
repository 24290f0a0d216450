"""In-process runtime adapter.

Keeps instances in memory instead of driving a hypervisor. It still
goes through artifact resolution and network provisioning, so failures
there surface exactly as they would from a real adapter.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from microvm.exceptions import RuntimeDeleteError, TransientQueryError
from microvm.models.spec import MicrovmSpec
from microvm.models.status import InstanceHandle
from microvm.providers.base import (
    ArtifactResolver,
    NetworkProvisioner,
    RuntimeAdapter,
    RuntimeStatus,
)
from microvm.providers.image import ImageCacheResolver
from microvm.providers.network import StaticNetworkProvisioner

if TYPE_CHECKING:
    from microvm.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass
class SimulatedInstance:
    """Book-keeping for one simulated instance."""
    instance_id: str
    spec: MicrovmSpec
    artifacts: List[Path]
    macs: Dict[str, str]
    queries: int = 0
    failed: bool = False


class SimulatedRuntime(RuntimeAdapter):
    """Runtime adapter backed by an in-memory instance table."""

    def __init__(
        self,
        resolver: Optional[ArtifactResolver] = None,
        provisioner: Optional[NetworkProvisioner] = None,
        boot_queries: int = 0,
        create_delay: float = 0.0,
    ):
        """Initialize simulated runtime.

        ``boot_queries`` is the number of queries answered with UNKNOWN
        before an instance reports RUNNING.
        """
        self.resolver = resolver
        self.provisioner = provisioner or StaticNetworkProvisioner()
        self.boot_queries = boot_queries
        self.create_delay = create_delay
        self.instances: Dict[str, SimulatedInstance] = {}
        self.unreachable = False

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Initialize runtime with configuration."""
        if self.resolver is None:
            self.resolver = ImageCacheResolver(Path(config.runtime.image_cache_dir))

    async def create(self, instance_id: str, spec: MicrovmSpec) -> InstanceHandle:
        """Resolve artifacts, provision interfaces and register the instance."""
        logger.info(f"Creating simulated instance {instance_id}")
        artifacts = await self._resolve_artifacts(spec)

        macs: Dict[str, str] = {}
        try:
            for iface in spec.network_interfaces:
                macs[iface.guest_device_name] = await self.provisioner.provision(instance_id, iface)
            if self.create_delay:
                await asyncio.sleep(self.create_delay)
        except BaseException:
            await self._release_interfaces(instance_id, spec)
            raise

        self.instances[instance_id] = SimulatedInstance(
            instance_id=instance_id, spec=spec, artifacts=artifacts, macs=macs
        )
        return InstanceHandle(id=instance_id, macs=macs)

    async def _resolve_artifacts(self, spec: MicrovmSpec) -> List[Path]:
        artifacts = [await self.resolver.resolve(spec.kernel.image, spec.kernel.filename)]
        if spec.initrd is not None:
            artifacts.append(await self.resolver.resolve(spec.initrd.image, spec.initrd.filename))
        for volume in spec.volumes:
            artifacts.append(await self.resolver.resolve(volume.image))
        return artifacts

    async def _release_interfaces(self, instance_id: str, spec: MicrovmSpec) -> None:
        for iface in spec.network_interfaces:
            await self.provisioner.release(instance_id, iface)

    async def query(self, handle: InstanceHandle) -> RuntimeStatus:
        """Report instance status."""
        if self.unreachable:
            raise TransientQueryError("Simulated runtime is unreachable")

        instance = self.instances.get(handle.id)
        if instance is None:
            return RuntimeStatus.FAILED
        if instance.failed:
            return RuntimeStatus.FAILED

        instance.queries += 1
        if instance.queries <= self.boot_queries:
            return RuntimeStatus.UNKNOWN
        return RuntimeStatus.RUNNING

    async def delete(self, handle: InstanceHandle) -> None:
        """Remove an instance and release its interfaces."""
        if self.unreachable:
            raise RuntimeDeleteError("Simulated runtime is unreachable")

        instance = self.instances.pop(handle.id, None)
        if instance is None:
            logger.debug(f"Simulated instance {handle.id} already gone")
            return
        await self._release_interfaces(instance.instance_id, instance.spec)
        logger.info(f"Deleted simulated instance {handle.id}")

    async def cleanup(self, instance_id: str) -> bool:
        """Drop any trace of an interrupted create."""
        instance = self.instances.pop(instance_id, None)
        if instance is not None:
            await self._release_interfaces(instance_id, instance.spec)
        return True

    def mark_failed(self, instance_id: str) -> None:
        """Simulate an instance crashing."""
        self.instances[instance_id].failed = True
