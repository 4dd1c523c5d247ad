from __future__ import annotations

import ipaddress

from .errors import IpValidationError, ValidationErrorCode


def validate_and_normalize_ip(value: str) -> str:
    """
    Canonical text form of a public IPv4/IPv6 address.

    IPv4-mapped IPv6 addresses are unwrapped to IPv4. Private, loopback,
    link-local, multicast, unique-local and other reserved ranges are
    rejected with IpValidationError.
    """
    candidate = (value or "").strip()
    if not candidate:
        raise IpValidationError(ValidationErrorCode.INVALID_FORMAT, "IP address cannot be empty")

    try:
        addr = ipaddress.ip_address(candidate)
    except ValueError:
        raise IpValidationError(
            ValidationErrorCode.INVALID_FORMAT, f"Invalid IP address format: {candidate}"
        ) from None

    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped

    ip = str(addr)

    if isinstance(addr, ipaddress.IPv4Address):
        if any(addr in net for net in _PRIVATE_V4):
            raise IpValidationError(
                ValidationErrorCode.PRIVATE_IP, f"Private IP addresses cannot be queried: {ip}"
            )
    elif addr in _UNIQUE_LOCAL_V6:
        raise IpValidationError(
            ValidationErrorCode.PRIVATE_IP, f"Unique local IPv6 addresses cannot be queried: {ip}"
        )

    if (
        addr.is_loopback
        or addr.is_link_local
        or addr.is_multicast
        or addr.is_unspecified
        or addr.is_reserved
        or not addr.is_global
    ):
        raise IpValidationError(
            ValidationErrorCode.RESERVED_IP, f"Reserved IP addresses cannot be queried: {ip}"
        )

    return ip


_PRIVATE_V4 = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)
_UNIQUE_LOCAL_V6 = ipaddress.ip_network("fc00::/7")
