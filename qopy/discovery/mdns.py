"""
mDNS Registrar / Browser

Design Decision: Service Discovery Protocol
============================================

Options Considered:
1. mDNS/DNS-SD (Zeroconf/Bonjour)
   - Zero configuration needed
   - Standard protocol (RFC 6762, 6763)
   - Native on Apple devices, Android NSD, Avahi
2. UDP broadcast with a custom message format
   - Simple, but nothing else on the network speaks it
3. Central signaling server
   - Needs infrastructure, defeats "just open the app"

Decision: mDNS with the zeroconf library
- Probing, conflict detection, TXT/SRV/A resolution and record expiry
  are all handled by zeroconf
- The discovery service only needs register / unregister / browse

Service Type: _qopyapp._tcp.local.

The rest of the package talks to the protocol engine only through the
ServiceRegistrar contract below, so tests can drive the browse loop with
an in-memory registrar.
"""

import abc
import asyncio
import inspect
import logging
import socket
from typing import Awaitable, Callable, Dict, Optional, Union

from zeroconf import Error as ZeroconfError
from zeroconf import IPVersion, ServiceInfo, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from ..errors import AdvertiseError, DiscoveryFailure, PeerDiscoveryError
from .models import RawEvent, ServiceRecord, ServiceRemoved, ServiceResolved

logger = logging.getLogger(__name__)


SERVICE_TYPE = "_qopyapp._tcp.local."

CloseCallback = Callable[[], Union[None, Awaitable[None]]]

_END = object()


class BrowseStream:
    """
    Async iterator of raw browse events.

    The registrar pushes ServiceResolved / ServiceRemoved items; the
    consumer iterates with ``async for``. Iteration ends after close() once
    the already queued events are drained.
    """

    def __init__(self, service_type: str, on_close: Optional[CloseCallback] = None):
        self.service_type = service_type
        self.on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._error: Optional[PeerDiscoveryError] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: RawEvent):
        if self._closed:
            logger.debug(f"Browse stream closed, dropping {event!r}")
            return
        self._queue.put_nowait(event)

    def fail(self, error: PeerDiscoveryError):
        """End the stream; the consumer gets error after draining."""
        if self._closed:
            return
        self._error = error
        self._closed = True
        self._queue.put_nowait(_END)

    async def close(self):
        """Stop browsing; idempotent."""
        if self._closed:
            return
        self._closed = True
        if self.on_close is not None:
            result = self.on_close()
            if inspect.isawaitable(result):
                await result
        self._queue.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self) -> RawEvent:
        item = await self._queue.get()
        if item is _END:
            # Stay ended for any later caller
            self._queue.put_nowait(_END)
            if self._error is not None:
                error, self._error = self._error, None
                raise error
            raise StopAsyncIteration
        return item


class ServiceRegistrar(abc.ABC):
    """Contract of the multicast protocol engine."""

    @abc.abstractmethod
    async def register(self, service_type: str, service_name: str, hostname: str,
                       ip: str, port: int, properties: Dict[str, str]):
        """
        Advertise a service instance.

        Raises:
            AdvertiseError: The engine refused the registration
        """

    @abc.abstractmethod
    async def unregister(self, service_name: str):
        """
        Withdraw a previously registered instance.

        Raises:
            AdvertiseError: Not registered, or the engine failed
        """

    @abc.abstractmethod
    def browse(self, service_type: str) -> BrowseStream:
        """
        Start listening for instances of service_type.

        Raises:
            DiscoveryFailure: The browser could not be started
        """

    async def close(self):
        """Release engine resources."""


def record_from_info(info: ServiceInfo) -> ServiceRecord:
    """Convert a resolved zeroconf ServiceInfo to a ServiceRecord."""
    return ServiceRecord(
        name=info.name,
        service_type=info.type,
        addresses=info.parsed_addresses(),
        port=info.port,
        properties=dict(info.properties),
    )


class ZeroconfRegistrar(ServiceRegistrar):
    """
    ServiceRegistrar on top of zeroconf's asyncio API.

    Create it from inside the running event loop: AsyncZeroconf then shares
    that loop, and browser callbacks run on it.
    """

    def __init__(self, resolve_timeout: float = 3.0,
                 aiozc: Optional[AsyncZeroconf] = None):
        """
        Initialize the mDNS engine.

        Args:
            resolve_timeout: Seconds to wait for an instance's SRV/TXT/A records
            aiozc: Existing engine to use instead of creating one

        Raises:
            AdvertiseError: The engine could not be initialized
        """
        self.resolve_timeout = resolve_timeout

        try:
            self._aiozc = aiozc or AsyncZeroconf(ip_version=IPVersion.All)
        except (ZeroconfError, OSError) as e:
            raise AdvertiseError(f"mDNS engine initialization failed: {e}") from e

        self._registered: Dict[str, ServiceInfo] = {}
        # full service name -> pending resolve
        self._resolving: Dict[str, asyncio.Task] = {}

    @property
    def zeroconf(self) -> Zeroconf:
        return self._aiozc.zeroconf

    async def register(self, service_type: str, service_name: str, hostname: str,
                       ip: str, port: int, properties: Dict[str, str]):
        full_name = f"{service_name}.{service_type}"

        try:
            info = ServiceInfo(
                service_type,
                full_name,
                addresses=[socket.inet_aton(ip)],
                port=port,
                properties=properties,
                server=hostname,
            )
            # First await queues the announcement, second waits for probing
            await (await self._aiozc.async_register_service(info))
        except (ZeroconfError, OSError, ValueError) as e:
            raise AdvertiseError(f"Service registration failed for {full_name}: {e}") from e

        self._registered[service_name] = info
        logger.info(f"Registered mDNS service: {full_name} at {ip}:{port}")

    async def unregister(self, service_name: str):
        info = self._registered.pop(service_name, None)
        if info is None:
            raise AdvertiseError(f"Service not registered: {service_name}")

        try:
            await (await self._aiozc.async_unregister_service(info))
        except (ZeroconfError, OSError) as e:
            raise AdvertiseError(f"Service unregistration failed for {info.name}: {e}") from e

        logger.info(f"Unregistered mDNS service: {info.name}")

    def browse(self, service_type: str) -> BrowseStream:
        loop = asyncio.get_running_loop()
        stream = BrowseStream(service_type)

        def on_service_state_change(zeroconf, service_type, name, state_change):
            # A newer change supersedes a resolve still in flight
            self._cancel_resolve(name)
            if state_change is ServiceStateChange.Removed:
                stream.push(ServiceRemoved(name))
                return
            # Added / Updated: fetch SRV, TXT and addresses
            task = loop.create_task(self._resolve(stream, service_type, name))
            self._resolving[name] = task
            task.add_done_callback(lambda t, name=name: self._forget_resolve(name, t))

        try:
            browser = AsyncServiceBrowser(
                self._aiozc.zeroconf,
                service_type,
                handlers=[on_service_state_change],
            )
        except (ZeroconfError, OSError, ValueError) as e:
            raise DiscoveryFailure(f"Failed to browse {service_type}: {e}") from e

        stream.on_close = browser.async_cancel
        logger.info(f"Started browsing for service type: {service_type}")
        return stream

    def _cancel_resolve(self, name: str):
        task = self._resolving.pop(name, None)
        if task is not None and not task.done():
            logger.debug(f"mDNS: Dropping pending resolve of {name}")
            task.cancel()

    def _forget_resolve(self, name: str, task: asyncio.Task):
        if self._resolving.get(name) is task:
            del self._resolving[name]

    async def _resolve(self, stream: BrowseStream, service_type: str, name: str):
        info = AsyncServiceInfo(service_type, name)
        try:
            resolved = await info.async_request(
                self._aiozc.zeroconf, int(self.resolve_timeout * 1000)
            )
        except (ZeroconfError, OSError) as e:
            logger.warning(f"mDNS: Failed to resolve {name}: {e}")
            return

        if not resolved:
            logger.debug(f"mDNS: {name} did not resolve within {self.resolve_timeout}s")
            return

        stream.push(ServiceResolved(record_from_info(info)))

    async def close(self):
        for task in list(self._resolving.values()):
            task.cancel()
        self._resolving.clear()

        if self._registered:
            await self._aiozc.async_unregister_all_services()
            self._registered.clear()

        await self._aiozc.async_close()
        logger.debug("mDNS engine closed")
