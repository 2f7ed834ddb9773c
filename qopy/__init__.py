"""
qopy - LAN peer discovery over mDNS.
"""

from .config import DiscoveryConfig, load_config
from .discovery import (
    DiscoveryErrorEvent,
    Peer,
    PeerDiscovered,
    PeerDiscovery,
    PeerEvent,
    PeerLost,
    ServiceStarted,
    ServiceStopped,
    get_network_interfaces,
)
from .errors import (
    AddressResolutionError,
    AdvertiseError,
    DiscoveryFailure,
    ErrorKind,
    InvalidConfigError,
    NetworkInterfaceError,
    PeerDiscoveryError,
)

__version__ = "1.0.0"

__all__ = [
    'DiscoveryConfig',
    'load_config',
    'PeerDiscovery',
    'Peer',
    'PeerEvent',
    'PeerDiscovered',
    'PeerLost',
    'ServiceStarted',
    'ServiceStopped',
    'DiscoveryErrorEvent',
    'get_network_interfaces',
    'PeerDiscoveryError',
    'AdvertiseError',
    'AddressResolutionError',
    'DiscoveryFailure',
    'NetworkInterfaceError',
    'InvalidConfigError',
    'ErrorKind',
]
