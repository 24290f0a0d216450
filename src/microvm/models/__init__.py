"""Pydantic models for specifications, status and configuration."""

from microvm.models.config import MicrovmConfig, AgentConfig, RuntimeConfig
from microvm.models.spec import (
    ContainerFileSource,
    IfaceType,
    Microvm,
    MicrovmSpec,
    NetworkInterface,
    Volume,
)
from microvm.models.status import InstanceHandle, MicrovmStatus, VMState

__all__ = [
    "MicrovmConfig",
    "AgentConfig",
    "RuntimeConfig",
    "ContainerFileSource",
    "IfaceType",
    "Microvm",
    "MicrovmSpec",
    "NetworkInterface",
    "Volume",
    "InstanceHandle",
    "MicrovmStatus",
    "VMState",
]
