"""Hardware and IP address helpers."""

import hashlib
import ipaddress
import re


# Pairs separated by ':' or '-', or groups of four separated by '.'.
_PAIR_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(?:([:-])[0-9A-Fa-f]{2})(?:\1[0-9A-Fa-f]{2})*$")
_DOTTED_MAC_RE = re.compile(r"^[0-9A-Fa-f]{4}(?:\.[0-9A-Fa-f]{4})*$")

# EUI-48, EUI-64 and 20-octet InfiniBand addresses.
_VALID_OCTET_COUNTS = (6, 8, 20)


def is_hardware_address(value: str) -> bool:
    """Check whether value parses as a MAC address."""
    if _PAIR_MAC_RE.match(value):
        octets = len(re.split(r"[:-]", value))
    elif _DOTTED_MAC_RE.match(value):
        octets = len(value.split(".")) * 2
    else:
        return False
    return octets in _VALID_OCTET_COUNTS


def is_ip_address(value: str) -> bool:
    """Check whether value is an IP address, optionally with a prefix length."""
    try:
        ipaddress.ip_interface(value)
    except ValueError:
        return False
    return True


def deterministic_mac(seed: str) -> str:
    """Derive a stable locally-administered unicast MAC from seed."""
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    octets = [0x52, 0x54, 0x00, digest[0], digest[1], digest[2]]
    octets[0] = (octets[0] | 0x02) & 0xFE
    return ":".join(f"{octet:02x}" for octet in octets)
