"""Runtime adapters and the collaborators they use."""

from microvm.providers.base import (
    ArtifactResolver,
    NetworkProvisioner,
    RuntimeAdapter,
    RuntimeStatus,
)
from microvm.providers.registry import ProviderRegistry

__all__ = [
    "ArtifactResolver",
    "NetworkProvisioner",
    "RuntimeAdapter",
    "RuntimeStatus",
    "ProviderRegistry",
]
