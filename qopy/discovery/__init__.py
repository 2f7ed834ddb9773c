"""
Discovery Module - Peer Discovery on LAN

Advertises this device over mDNS and tracks other devices offering the
same service type:
- PeerDiscovery   - lifecycle, registry queries, timed discovery
- EventBus        - PeerDiscovered / PeerLost / ... feed for observers
- ZeroconfRegistrar - the zeroconf-backed protocol engine
"""

from .events import (
    DiscoveryErrorEvent,
    EventBus,
    EventBusClosed,
    EventReceiver,
    PeerDiscovered,
    PeerEvent,
    PeerLost,
    ServiceStarted,
    ServiceStopped,
    SubscriberLagged,
)
from .interfaces import NetworkInterface, get_network_interfaces, local_ipv4
from .manager import PeerDiscovery, ServiceState
from .mdns import SERVICE_TYPE, BrowseStream, ServiceRegistrar, ZeroconfRegistrar
from .models import Peer, ServiceRecord, ServiceRemoved, ServiceResolved
from .registry import PeerRegistry, ReadWriteLock

__all__ = [
    'PeerDiscovery',
    'ServiceState',
    'Peer',
    'PeerRegistry',
    'ReadWriteLock',
    'EventBus',
    'EventReceiver',
    'EventBusClosed',
    'SubscriberLagged',
    'PeerEvent',
    'PeerDiscovered',
    'PeerLost',
    'ServiceStarted',
    'ServiceStopped',
    'DiscoveryErrorEvent',
    'ServiceRegistrar',
    'ZeroconfRegistrar',
    'BrowseStream',
    'ServiceRecord',
    'ServiceResolved',
    'ServiceRemoved',
    'SERVICE_TYPE',
    'NetworkInterface',
    'get_network_interfaces',
    'local_ipv4',
]
