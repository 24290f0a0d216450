"""Defaulting for microvm specifications.

Defaulting is pure: a new spec is returned and the input is left alone
so callers can still compare it against an earlier generation.  Guest
MAC addresses are not generated here; an empty ``guestMac`` is passed
through for the runtime adapter to assign.
"""

import hashlib
import json

from microvm.models.spec import MicrovmSpec, Volume


DEFAULT_KERNEL_CMDLINE = (
    "console=ttyS0 reboot=k panic=1 pci=off i8042.noaux i8042.nomux i8042.nopnp i8042.dumbkbd"
)
DEFAULT_MOUNT_POINT = "/"


def _default_volume(volume: Volume) -> Volume:
    if volume.mount_point:
        return volume
    return volume.model_copy(update={"mount_point": DEFAULT_MOUNT_POINT})


def apply_defaults(spec: MicrovmSpec) -> MicrovmSpec:
    """Return a copy of spec with unset defaultable fields filled in."""
    return spec.model_copy(
        update={
            "kernel_cmdline": spec.kernel_cmdline or DEFAULT_KERNEL_CMDLINE,
            "root_volume": _default_volume(spec.root_volume),
            "additional_volumes": tuple(_default_volume(v) for v in spec.additional_volumes),
        }
    )


def spec_digest(spec: MicrovmSpec) -> str:
    """Stable digest of the defaulted spec, used to detect changes."""
    canonical = json.dumps(apply_defaults(spec).to_record(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
