import ipaddress
from typing import Optional

from .models import Endpoint


def normalize_host(host: str) -> str:
    return host.strip().strip("[]").rstrip(".").lower()


def parse_ipv4(value: Optional[str]) -> Optional[ipaddress.IPv4Address]:
    if not value:
        return None
    try:
        return ipaddress.IPv4Address(value.strip())
    except ValueError:
        return None


def is_usable_device_ip(value: Optional[str]) -> bool:
    """True for an IPv4 address that can anchor a same-subnet guess."""
    ip = parse_ipv4(value)
    if ip is None:
        return False
    return not (ip.is_loopback or ip.is_link_local or ip.is_unspecified or ip.is_multicast)


def network_prefix(ip: str) -> Optional[str]:
    """First three octets of an IPv4 address, e.g. ``192.168.29``."""
    addr = parse_ipv4(ip)
    if addr is None:
        return None
    return ".".join(str(addr).split(".")[:3])


def endpoint_for_host(host: str, scheme: str, port: Optional[int], path_prefix: str) -> Endpoint:
    return Endpoint(scheme=scheme, host=normalize_host(host), port=port, path_prefix=path_prefix)
