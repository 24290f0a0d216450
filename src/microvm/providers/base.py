"""Runtime adapter interfaces."""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from microvm.models.spec import MicrovmSpec, NetworkInterface
from microvm.models.status import InstanceHandle

if TYPE_CHECKING:
    from microvm.providers.registry import ProviderRegistry


class RuntimeStatus(Enum):
    """Instance status as reported by a runtime adapter."""
    RUNNING = "running"
    FAILED = "failed"
    UNKNOWN = "unknown"


class RuntimeAdapter(ABC):
    """Interface every hypervisor runtime adapter must implement."""

    @abstractmethod
    async def initialize(self, config: Any, registry: "ProviderRegistry") -> None:
        """Initialize the adapter with configuration."""
        pass

    @abstractmethod
    async def create(self, instance_id: str, spec: MicrovmSpec) -> InstanceHandle:
        """Create an instance from a validated, defaulted spec."""
        pass

    @abstractmethod
    async def query(self, handle: InstanceHandle) -> RuntimeStatus:
        """Report the current status of an instance."""
        pass

    @abstractmethod
    async def delete(self, handle: InstanceHandle) -> None:
        """Tear an instance down."""
        pass

    async def cleanup(self, instance_id: str) -> bool:
        """Remove whatever an interrupted create left behind.

        Returns True only when the adapter can confirm nothing is left.
        """
        return False


class ArtifactResolver(ABC):
    """Resolves container image references to local artifacts."""

    @abstractmethod
    async def resolve(self, image: str, filename: str = "") -> Path:
        """Return the local path of an image, or of a file inside it."""
        pass


class NetworkProvisioner(ABC):
    """Creates host-side network devices for guest interfaces."""

    @abstractmethod
    async def provision(self, instance_id: str, iface: NetworkInterface) -> str:
        """Create the host device and return the guest MAC address."""
        pass

    @abstractmethod
    async def release(self, instance_id: str, iface: NetworkInterface) -> None:
        """Remove the host device."""
        pass
