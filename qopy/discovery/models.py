"""
Discovery Data Model

Peer is the domain record kept in the registry. ServiceRecord,
ServiceResolved and ServiceRemoved are the raw events produced by a
registrar's browse stream; the browse loop translates them into Peers.
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from ..errors import AddressResolutionError


PropertyKey = Union[bytes, str]


@dataclass(frozen=True)
class ServiceRecord:
    """A fully resolved service instance as reported by the protocol engine."""
    name: str  # protocol-assigned full name
    service_type: str
    addresses: List[str]  # textual, IPv4 and/or IPv6
    port: int
    properties: Dict[PropertyKey, Optional[bytes]] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceResolved:
    """Raw event: a service instance was resolved (or re-resolved)."""
    record: ServiceRecord


@dataclass(frozen=True)
class ServiceRemoved:
    """Raw event: a service instance went away."""
    name: str


RawEvent = Union[ServiceResolved, ServiceRemoved]


def first_ipv4(addresses: List[str]) -> Optional[str]:
    """Return the first IPv4 address in the list, or None."""
    for addr in addresses:
        if not isinstance(addr, str):
            continue
        try:
            if ipaddress.ip_address(addr).version == 4:
                return addr
        except ValueError:
            continue
    return None


def decode_properties(raw: Dict[PropertyKey, Optional[bytes]]) -> Dict[str, str]:
    """
    Decode TXT properties into text.

    Values are decoded as UTF-8 with replacement characters; properties
    without a value are skipped.
    """
    properties = {}
    for key, value in raw.items():
        if value is None:
            continue
        if isinstance(key, bytes):
            key = key.decode('utf-8', errors='replace')
        if isinstance(value, bytes):
            value = value.decode('utf-8', errors='replace')
        properties[key] = value
    return properties


@dataclass(frozen=True)
class Peer:
    """A discovered remote device."""
    name: str
    ip: str
    port: int
    service_type: str
    properties: Dict[str, str] = field(default_factory=dict, hash=False)

    @classmethod
    def from_record(cls, record: ServiceRecord) -> 'Peer':
        """
        Build a Peer from a resolved service record.

        Raises:
            AddressResolutionError: The record advertises no IPv4 address,
                or no usable port
        """
        port = record.port
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise AddressResolutionError(f"Invalid port {port!r} for {record.name}")

        addresses = record.addresses
        if not isinstance(addresses, (list, tuple)):
            raise AddressResolutionError(f"Malformed address list for {record.name}")

        ip = first_ipv4(addresses)
        if ip is None:
            raise AddressResolutionError(f"No IPv4 address found for {record.name}")

        return cls(
            name=record.name,
            ip=ip,
            port=port,
            service_type=record.service_type,
            properties=decode_properties(record.properties),
        )

    @property
    def device_type(self) -> str:
        return self.properties.get('device_type', 'unknown')

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'ip': self.ip,
            'port': self.port,
            'service_type': self.service_type,
            'properties': dict(self.properties),
        }
