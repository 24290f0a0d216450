"""Microvm specification models."""

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class IfaceType(str, Enum):
    """Host network interface type backing a guest interface."""
    TAP = "tap"
    MACVTAP = "macvtap"


class ContainerFileSource(BaseModel):
    """A file taken from a container image."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    image: str = Field(..., description="Container image reference")
    filename: str = Field(default="", description="File inside the image, empty for the image default")


class Volume(BaseModel):
    """A block volume sourced from a container image."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., description="Volume identifier, unique within a microvm")
    image: str = Field(..., description="Container image reference")
    read_only: bool = Field(default=False, alias="readOnly")
    mount_point: str = Field(default="", alias="mountPoint")


class NetworkInterface(BaseModel):
    """A guest network interface."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    guest_device_name: str = Field(..., alias="guestDeviceName")
    guest_mac: str = Field(default="", alias="guestMac", description="Empty lets the runtime assign one")
    type: IfaceType = Field(...)
    address: str = Field(default="", description="Static IP, empty means DHCP")


class MicrovmSpec(BaseModel):
    """Desired state of a microvm."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    vcpu: StrictInt = Field(...)
    memory_mb: StrictInt = Field(..., alias="memoryMb")
    root_volume: Volume = Field(..., alias="rootVolume")
    additional_volumes: Tuple[Volume, ...] = Field(default=(), alias="volumes")
    kernel: ContainerFileSource = Field(...)
    kernel_cmdline: str = Field(default="", alias="kernelCmdline")
    initrd: Optional[ContainerFileSource] = None
    network_interfaces: Tuple[NetworkInterface, ...] = Field(..., alias="networkInterfaces")

    @property
    def volumes(self) -> Tuple[Volume, ...]:
        """Root volume followed by the additional volumes."""
        return (self.root_volume,) + tuple(self.additional_volumes)

    def to_record(self) -> Dict:
        """Serialise using the declarative API field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Microvm(BaseModel):
    """A named microvm declaration.

    Labels are cosmetic metadata: changing them never requires the
    instance to be recreated.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., description="Microvm name")
    labels: Dict[str, str] = Field(default_factory=dict)
    spec: MicrovmSpec
