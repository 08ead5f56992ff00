"""Input validation for ban targets, site ids and provenance tags.

Addresses are normalized before they are persisted or cached so the store,
the cache and the membership check all compare the same string.
"""

import ipaddress
import re
import uuid

# Provenance tag: lowercase word, e.g. manual, bulk, scanner, auto_ban
_SOURCE_RE = re.compile(r'^[a-z][a-z0-9_-]{0,49}$')


def validate_ip_address(value: str) -> str:
    """Validate and return a normalized IP address string.

    Raises ValueError if the input is not a valid IPv4 or IPv6 address.
    """
    try:
        addr = ipaddress.ip_address(value.strip())
        return str(addr)
    except (ValueError, AttributeError):
        raise ValueError(f"Invalid IP address: {value!r}")


def validate_ip_or_cidr(value: str) -> str:
    """Validate an IP literal or CIDR block and return its normalized form.

    Host bits in a CIDR are dropped (``10.0.0.7/24`` becomes ``10.0.0.0/24``).
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("IP address or CIDR is required")
    candidate = value.strip()
    if "/" not in candidate:
        return validate_ip_address(candidate)
    try:
        return str(ipaddress.ip_network(candidate, strict=False))
    except ValueError:
        raise ValueError(f"Invalid IP address or CIDR: {value!r}")


def is_network(address: str) -> bool:
    """True if a normalized address is a CIDR block rather than a literal."""
    return "/" in address


def address_in_network(address: str, network: str) -> bool:
    """True if the literal ``address`` falls inside the CIDR ``network``."""
    try:
        return ipaddress.ip_address(address) in ipaddress.ip_network(network, strict=False)
    except ValueError:
        return False


def validate_site_id(value: str | None) -> str | None:
    """Validate an optional site id (UUID). Empty strings mean tenant-wide."""
    if value is None or value == "":
        return None
    try:
        return str(uuid.UUID(value))
    except (ValueError, AttributeError, TypeError):
        raise ValueError(f"Invalid site id: {value!r}")


def validate_source(value: str | None, default: str = "manual") -> str:
    """Validate a provenance tag, falling back to ``default`` when empty."""
    if not value:
        return default
    if not _SOURCE_RE.match(value):
        raise ValueError(
            f"Invalid source: must be lowercase alphanumeric with hyphens/underscores, "
            f"max 50 chars. Got: {value!r}"
        )
    return value
