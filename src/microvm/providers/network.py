"""Network provisioning for guest interfaces."""

import logging
from typing import Dict, Tuple

from microvm.models.spec import NetworkInterface
from microvm.providers.base import NetworkProvisioner
from microvm.utils.network import deterministic_mac


logger = logging.getLogger(__name__)


class StaticNetworkProvisioner(NetworkProvisioner):
    """Tracks host devices in memory and assigns guest MACs.

    An explicit ``guestMac`` is kept as is; otherwise the MAC is derived
    from the instance id and device name so the same incarnation always
    gets the same address.
    """

    def __init__(self):
        """Initialize provisioner."""
        self.devices: Dict[Tuple[str, str], str] = {}

    async def provision(self, instance_id: str, iface: NetworkInterface) -> str:
        """Register a host device and return the guest MAC."""
        mac = (iface.guest_mac or deterministic_mac(f"{instance_id}/{iface.guest_device_name}")).lower()
        self.devices[(instance_id, iface.guest_device_name)] = mac
        logger.debug(
            f"Provisioned {iface.type.value} device for {instance_id}/{iface.guest_device_name} with MAC {mac}"
        )
        return mac

    async def release(self, instance_id: str, iface: NetworkInterface) -> None:
        """Forget a host device."""
        if self.devices.pop((instance_id, iface.guest_device_name), None) is not None:
            logger.debug(f"Released device for {instance_id}/{iface.guest_device_name}")
