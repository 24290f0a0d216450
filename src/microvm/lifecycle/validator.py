"""Specification validation.

Validation never stops at the first problem: every check runs and the
caller gets the complete list of violations.  Field paths use the
declarative API names, e.g. ``networkInterfaces[0].guestMac``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Sequence, Union

from pydantic import ValidationError

from microvm.exceptions import SpecValidationError
from microvm.lifecycle.defaults import DEFAULT_KERNEL_CMDLINE
from microvm.models.spec import IfaceType, MicrovmSpec
from microvm.utils.network import is_hardware_address, is_ip_address


logger = logging.getLogger(__name__)

MIN_VCPU = 1
MIN_MEMORY_MB = 1024
MIN_KERNEL_CMDLINE_LENGTH = 5


class ViolationKind(str, Enum):
    """Category of a specification violation."""
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    BELOW_MINIMUM = "BelowMinimum"
    DUPLICATE_IDENTIFIER = "DuplicateIdentifier"
    INVALID_ENUM_VALUE = "InvalidEnumValue"
    INVALID_FORMAT = "InvalidFormat"


@dataclass(frozen=True)
class Violation:
    """A single problem found in a specification."""
    field: str
    kind: ViolationKind
    message: str = ""

    def __str__(self):
        if self.message:
            return f"{self.field}: {self.kind.value} ({self.message})"
        return f"{self.field}: {self.kind.value}"


# pydantic error types that map onto something more specific than a format error
_PYDANTIC_KINDS = {
    "missing": ViolationKind.MISSING_REQUIRED_FIELD,
    "enum": ViolationKind.INVALID_ENUM_VALUE,
    "literal_error": ViolationKind.INVALID_ENUM_VALUE,
    "greater_than_equal": ViolationKind.BELOW_MINIMUM,
}


def format_path(loc: Sequence[Union[str, int]]) -> str:
    """Render a location tuple as ``a.b[0].c``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f".{part}"
        else:
            path = str(part)
    return path


def validate(spec: MicrovmSpec) -> List[Violation]:
    """Return every violation in spec; an empty list means it is valid."""
    violations: List[Violation] = []

    if spec.vcpu < MIN_VCPU:
        violations.append(Violation("vcpu", ViolationKind.BELOW_MINIMUM, f"must be at least {MIN_VCPU}"))
    if spec.memory_mb < MIN_MEMORY_MB:
        violations.append(
            Violation("memoryMb", ViolationKind.BELOW_MINIMUM, f"must be at least {MIN_MEMORY_MB}")
        )

    violations.extend(_check_volumes(spec))

    if not spec.kernel.image:
        violations.append(Violation("kernel.image", ViolationKind.MISSING_REQUIRED_FIELD))
    if spec.initrd is not None and not spec.initrd.image:
        violations.append(Violation("initrd.image", ViolationKind.MISSING_REQUIRED_FIELD))

    # Checked against the defaulted value
    cmdline = spec.kernel_cmdline or DEFAULT_KERNEL_CMDLINE
    if len(cmdline) < MIN_KERNEL_CMDLINE_LENGTH:
        violations.append(
            Violation(
                "kernelCmdline",
                ViolationKind.BELOW_MINIMUM,
                f"must be at least {MIN_KERNEL_CMDLINE_LENGTH} characters",
            )
        )

    violations.extend(_check_network_interfaces(spec))
    return violations


def _check_volumes(spec: MicrovmSpec) -> List[Violation]:
    violations = []
    root = spec.root_volume
    if not root.id:
        violations.append(Violation("rootVolume.id", ViolationKind.MISSING_REQUIRED_FIELD))
    if not root.image:
        violations.append(Violation("rootVolume.image", ViolationKind.MISSING_REQUIRED_FIELD))

    seen = {root.id} if root.id else set()
    for index, volume in enumerate(spec.additional_volumes):
        prefix = f"volumes[{index}]"
        if not volume.id:
            violations.append(Violation(f"{prefix}.id", ViolationKind.MISSING_REQUIRED_FIELD))
        elif volume.id in seen:
            violations.append(
                Violation(f"{prefix}.id", ViolationKind.DUPLICATE_IDENTIFIER, f"volume id {volume.id!r} already used")
            )
        else:
            seen.add(volume.id)
        if not volume.image:
            violations.append(Violation(f"{prefix}.image", ViolationKind.MISSING_REQUIRED_FIELD))
    return violations


def _check_network_interfaces(spec: MicrovmSpec) -> List[Violation]:
    if not spec.network_interfaces:
        return [
            Violation("networkInterfaces", ViolationKind.MISSING_REQUIRED_FIELD, "at least one interface is required")
        ]

    violations = []
    seen = set()
    for index, iface in enumerate(spec.network_interfaces):
        prefix = f"networkInterfaces[{index}]"
        name = iface.guest_device_name
        if not name:
            violations.append(Violation(f"{prefix}.guestDeviceName", ViolationKind.MISSING_REQUIRED_FIELD))
        elif name in seen:
            violations.append(
                Violation(
                    f"{prefix}.guestDeviceName",
                    ViolationKind.DUPLICATE_IDENTIFIER,
                    f"device {name!r} already declared",
                )
            )
        else:
            seen.add(name)

        if not isinstance(iface.type, IfaceType):
            violations.append(Violation(f"{prefix}.type", ViolationKind.INVALID_ENUM_VALUE))
        if iface.guest_mac and not is_hardware_address(iface.guest_mac):
            violations.append(
                Violation(f"{prefix}.guestMac", ViolationKind.INVALID_FORMAT, f"{iface.guest_mac!r} is not a MAC address")
            )
        if iface.address and not is_ip_address(iface.address):
            violations.append(
                Violation(f"{prefix}.address", ViolationKind.INVALID_FORMAT, f"{iface.address!r} is not an IP address")
            )
    return violations


def check(spec: MicrovmSpec) -> MicrovmSpec:
    """Raise SpecValidationError unless spec is valid."""
    violations = validate(spec)
    if violations:
        raise SpecValidationError(violations)
    return spec


def violations_from_error(error: ValidationError) -> List[Violation]:
    """Translate a pydantic ValidationError into violations."""
    violations = []
    for item in error.errors():
        kind = _PYDANTIC_KINDS.get(item["type"], ViolationKind.INVALID_FORMAT)
        violations.append(Violation(format_path(item["loc"]), kind, item["msg"]))
    return violations


def parse_spec(data: Mapping[str, Any]) -> MicrovmSpec:
    """Build a validated MicrovmSpec from a declarative record."""
    try:
        spec = MicrovmSpec.model_validate(data)
    except ValidationError as e:
        violations = violations_from_error(e)
        logger.debug(f"Specification failed to parse: {len(violations)} violation(s)")
        raise SpecValidationError(violations) from e
    return check(spec)
