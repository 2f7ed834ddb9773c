"""
Discovery Manager

Advertises the local device, keeps a live registry of remote devices and
feeds events to any number of observers.

Lifecycle
=========

    CREATED --start()--> RUNNING --stop()--> STOPPED --start()--> RUNNING ...

- Transitions are serialized by one asyncio.Lock (separate from the
  registry lock)
- start() while RUNNING and stop() while not RUNNING succeed silently
- stop() closes the browse stream and waits for the browse loop to drain,
  so a later start() never runs two loops against the same registry
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from ..config import DiscoveryConfig
from ..errors import AdvertiseError, DiscoveryFailure, PeerDiscoveryError
from .events import (
    DiscoveryErrorEvent,
    EventBus,
    EventReceiver,
    PeerDiscovered,
    PeerEvent,
    PeerLost,
    ServiceStarted,
    ServiceStopped,
)
from .interfaces import local_ipv4
from .mdns import BrowseStream, ServiceRegistrar, ZeroconfRegistrar
from .models import Peer, RawEvent, ServiceRemoved, ServiceResolved
from .registry import PeerRegistry

logger = logging.getLogger(__name__)


class ServiceState(Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class PeerDiscovery:
    """
    Peer discovery service.

    Usage:
        async with PeerDiscovery(config) as discovery:
            receiver = discovery.subscribe()
            peers = await discovery.discover_peers(timeout=5)
    """

    def __init__(self, config: Optional[DiscoveryConfig] = None,
                 registrar: Optional[ServiceRegistrar] = None):
        """
        Initialize the discovery service.

        Args:
            config: Discovery configuration (defaults if not provided)
            registrar: Protocol engine (a ZeroconfRegistrar if not provided)

        Raises:
            AdvertiseError: The mDNS engine could not be initialized
        """
        self.config = config or DiscoveryConfig()
        self._registrar = registrar or ZeroconfRegistrar(
            resolve_timeout=self.config.resolve_timeout
        )

        self._registry = PeerRegistry()
        self._events = EventBus(self.config.event_capacity)

        self._state = ServiceState.CREATED
        self._lifecycle_lock = asyncio.Lock()

        self._stream: Optional[BrowseStream] = None
        self._browse_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ServiceState.RUNNING

    @property
    def registrar(self) -> ServiceRegistrar:
        return self._registrar

    # === Lifecycle ===

    async def start(self):
        """
        Advertise the local service and start browsing for peers.

        Raises:
            NetworkInterfaceError: No local IPv4 address to advertise
            AdvertiseError: Registration failed
            DiscoveryFailure: Browsing could not be started
        """
        async with self._lifecycle_lock:
            if self._state is ServiceState.RUNNING:
                return

            logger.info("Starting peer discovery service")

            await self._register_service()

            try:
                self._stream = self._registrar.browse(self.config.service_type)
            except DiscoveryFailure:
                await self._unregister_service()
                raise

            self._browse_task = asyncio.create_task(
                self._browse_loop(self._stream),
                name=f"browse:{self.config.service_type}",
            )

            self._state = ServiceState.RUNNING
            self._publish(ServiceStarted())
            logger.info("Peer discovery service started successfully")

    async def stop(self):
        """Withdraw the local service, stop browsing and forget all peers."""
        async with self._lifecycle_lock:
            if self._state is not ServiceState.RUNNING:
                return

            logger.info("Stopping peer discovery service")

            await self._unregister_service()

            if self._stream is not None:
                await self._stream.close()
                self._stream = None
            if self._browse_task is not None:
                try:
                    await self._browse_task
                except Exception as e:
                    logger.error(f"Browse loop ended with an error: {e!r}")
                self._browse_task = None

            await self._registry.clear()

            self._state = ServiceState.STOPPED
            self._publish(ServiceStopped())
            logger.info("Peer discovery service stopped")

    async def close(self):
        """Stop and release the protocol engine. The service is unusable afterwards."""
        await self.stop()
        await self._registrar.close()
        self._events.close()

    async def __aenter__(self) -> 'PeerDiscovery':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # === Queries ===

    def subscribe(self, capacity: Optional[int] = None) -> EventReceiver:
        """Get a receiver for events published from now on."""
        return self._events.subscribe(capacity)

    async def get_peers(self) -> List[Peer]:
        """Get all currently discovered peers."""
        return await self._registry.snapshot()

    async def get_peer(self, name: str) -> Optional[Peer]:
        """Get a specific peer by full service name."""
        return await self._registry.get(name)

    async def discover_peers(self, timeout: Optional[float] = None) -> List[Peer]:
        """
        Sample the network for a fixed period.

        Starts the service if needed, then waits the full timeout no matter
        how early peers show up.

        Args:
            timeout: Seconds to wait (config.discovery_timeout if None)

        Returns:
            Peers known when the wait is over
        """
        if timeout is None:
            timeout = self.config.discovery_timeout

        logger.info(f"Discovering peers for {timeout}s...")

        if not self.is_running:
            await self.start()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        remaining = timeout
        while remaining > 0:
            await asyncio.sleep(remaining)
            remaining = deadline - loop.time()

        peers = await self.get_peers()
        logger.info(f"Discovered {len(peers)} peers")
        return peers

    def get_stats(self) -> dict:
        """Get discovery statistics."""
        return {
            'state': self._state.value,
            'service_name': self.config.service_name,
            'service_type': self.config.service_type,
            'port': self.config.port,
            'announce_interval': self.config.announce_interval,
            'total_peers': len(self._registry),
            'subscribers': self._events.subscriber_count,
            'events_published': self._events.published,
            'events_dropped': self._events.dropped,
        }

    # === Internals ===

    async def _register_service(self):
        ip = self.config.ip_address or local_ipv4()
        await self._registrar.register(
            self.config.service_type,
            self.config.service_name,
            self.config.server_hostname,
            ip,
            self.config.port,
            dict(self.config.properties),
        )
        logger.info(f"Registered service: {self.config.service_name} on port {self.config.port}")

    async def _unregister_service(self):
        try:
            await self._registrar.unregister(self.config.service_name)
        except AdvertiseError as e:
            logger.warning(f"Failed to unregister service: {e}")

    def _publish(self, event: PeerEvent):
        self._events.publish(event)

    async def _browse_loop(self, stream: BrowseStream):
        """Fold raw browse events into the registry until the stream ends."""
        try:
            async for raw in stream:
                try:
                    await self._handle_raw_event(raw)
                except PeerDiscoveryError as e:
                    logger.error(f"Error handling service event: {e}")
                    self._publish(DiscoveryErrorEvent(e))
                except Exception as e:
                    logger.exception(f"Malformed service event {raw!r}")
                    self._publish(DiscoveryErrorEvent(
                        DiscoveryFailure(f"Malformed service event: {e}")
                    ))
        except PeerDiscoveryError as e:
            logger.error(f"Browse stream for {stream.service_type} failed: {e}")
            self._publish(DiscoveryErrorEvent(e))
        finally:
            logger.debug(f"Browse loop for {stream.service_type} finished")

    async def _handle_raw_event(self, raw: RawEvent):
        if isinstance(raw, ServiceResolved):
            peer = Peer.from_record(raw.record)
            logger.debug(f"Peer discovered: {peer}")
            await self._registry.upsert(peer)
            self._publish(PeerDiscovered(peer))

        elif isinstance(raw, ServiceRemoved):
            logger.debug(f"Peer lost: {raw.name}")
            peer = await self._registry.remove(raw.name)
            if peer is not None:
                self._publish(PeerLost(peer))

        else:
            logger.debug(f"Unhandled service event: {raw!r}")
