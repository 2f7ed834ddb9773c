"""
Discovery Errors

Every failure raised by the discovery layer derives from PeerDiscoveryError
and carries an ErrorKind tag, so that errors published on the event bus can
be told apart without isinstance chains.

Propagation:
- start()/stop() failures are raised to the caller
- failures inside the background browse loop have no caller to return to,
  they are published as DiscoveryErrorEvent instead
"""

from enum import Enum


class ErrorKind(Enum):
    """Category of a discovery failure."""
    ADVERTISE = "advertise"
    ADDRESS_RESOLUTION = "address_resolution"
    DISCOVERY = "discovery"
    IO = "io"
    CONFIG = "config"


class PeerDiscoveryError(Exception):
    """Base class for discovery errors."""

    kind = ErrorKind.DISCOVERY

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'kind': self.kind.value, 'message': self.message}


class AdvertiseError(PeerDiscoveryError):
    """Registering or unregistering the local service failed."""
    kind = ErrorKind.ADVERTISE


class AddressResolutionError(PeerDiscoveryError):
    """A resolved service advertised no usable IPv4 address."""
    kind = ErrorKind.ADDRESS_RESOLUTION


class DiscoveryFailure(PeerDiscoveryError):
    """The browse stream could not be started or broke down."""
    kind = ErrorKind.DISCOVERY


class NetworkInterfaceError(PeerDiscoveryError, OSError):
    """Network interface enumeration failed."""
    kind = ErrorKind.IO


class InvalidConfigError(PeerDiscoveryError, ValueError):
    """A configuration value is out of range or malformed."""
    kind = ErrorKind.CONFIG
