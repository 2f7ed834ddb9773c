"""
Network Interfaces

Lists local interface addresses and picks the IPv4 address advertised for
the local service. Backed by ifaddr (already a zeroconf dependency).
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import List

import ifaddr

from ..errors import NetworkInterfaceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkInterface:
    """One address bound to a local network interface."""
    name: str
    ip: str
    is_loopback: bool

    @property
    def is_ipv4(self) -> bool:
        return ipaddress.ip_address(self.ip).version == 4

    def to_dict(self) -> dict:
        return {'name': self.name, 'ip': self.ip, 'is_loopback': self.is_loopback}


def get_network_interfaces() -> List[NetworkInterface]:
    """
    Get all addresses of all local network interfaces.

    Raises:
        NetworkInterfaceError: The OS refused to enumerate interfaces
    """
    try:
        adapters = ifaddr.get_adapters()
    except OSError as e:
        raise NetworkInterfaceError(f"Failed to enumerate interfaces: {e}") from e

    result = []
    for adapter in adapters:
        for ip in adapter.ips:
            # IPv6 entries come as (address, flowinfo, scope_id)
            address = ip.ip if ip.is_IPv4 else ip.ip[0]
            try:
                is_loopback = ipaddress.ip_address(address).is_loopback
            except ValueError:
                logger.debug(f"Skipping unparsable address {address!r} on {adapter.nice_name}")
                continue
            result.append(NetworkInterface(
                name=adapter.nice_name,
                ip=address,
                is_loopback=is_loopback,
            ))

    return result


def local_ipv4() -> str:
    """
    Get the first non-loopback IPv4 address.

    Raises:
        NetworkInterfaceError: No suitable network interface found
    """
    for interface in get_network_interfaces():
        if interface.is_loopback or not interface.is_ipv4:
            continue
        return interface.ip

    raise NetworkInterfaceError("No suitable network interface found")
