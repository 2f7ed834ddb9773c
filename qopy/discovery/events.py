"""
Peer Events and Event Bus

Design Decision: Fan-out
========================

Options Considered:
1. Callback list (on_peer_change(callback))
   - Simple, but a slow or failing callback stalls the publisher
   - Unbounded: nothing limits how much work a publish triggers
2. One shared asyncio.Queue
   - Only one consumer ever sees each event
3. Per-subscriber bounded buffer (broadcast channel)
   - Every subscriber sees every event published after it subscribed
   - Publisher never waits

Decision: Per-subscriber bounded buffer
- publish() is synchronous and O(subscribers)
- A full buffer drops its OLDEST event and counts the gap

Lag Policy: notify
- The next recv() raises SubscriberLagged(missed) once, then delivery
  continues with the oldest event still buffered
- `async for event in receiver` logs the gap and keeps going
"""

import asyncio
import logging
import weakref
from collections import deque
from dataclasses import dataclass
from typing import ClassVar, Deque, List, Optional

from ..errors import ErrorKind, PeerDiscoveryError
from .models import Peer

logger = logging.getLogger(__name__)


# === Events ===

class PeerEvent:
    """Base class for events published by the discovery service."""

    type: ClassVar[str] = "event"

    def to_dict(self) -> dict:
        return {'type': self.type}


@dataclass(frozen=True)
class PeerDiscovered(PeerEvent):
    peer: Peer
    type: ClassVar[str] = "peer_discovered"

    def to_dict(self) -> dict:
        return {'type': self.type, 'peer': self.peer.to_dict()}


@dataclass(frozen=True)
class PeerLost(PeerEvent):
    peer: Peer  # last known record
    type: ClassVar[str] = "peer_lost"

    def to_dict(self) -> dict:
        return {'type': self.type, 'peer': self.peer.to_dict()}


@dataclass(frozen=True)
class ServiceStarted(PeerEvent):
    type: ClassVar[str] = "service_started"


@dataclass(frozen=True)
class ServiceStopped(PeerEvent):
    type: ClassVar[str] = "service_stopped"


@dataclass(frozen=True)
class DiscoveryErrorEvent(PeerEvent):
    error: PeerDiscoveryError
    type: ClassVar[str] = "error"

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def to_dict(self) -> dict:
        return {'type': self.type, 'error': self.error.to_dict()}


# === Bus ===

class SubscriberLagged(Exception):
    """Raised by recv() when older events were dropped for this subscriber."""

    def __init__(self, missed: int):
        super().__init__(f"Subscriber lagged behind, {missed} events dropped")
        self.missed = missed


class EventBusClosed(Exception):
    """The bus was closed and this receiver's buffer is drained."""


class EventReceiver:
    """
    Independent receive cursor on an EventBus.

    Sees only events published after it was created.
    """

    def __init__(self, bus: 'EventBus', capacity: int):
        self._bus = bus
        self.capacity = capacity
        self._buffer: Deque[PeerEvent] = deque()
        self._ready = asyncio.Event()
        self._missed = 0
        self._closed = False
        self.total_missed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._buffer)

    def _deliver(self, event: PeerEvent):
        if self._closed:
            return
        if len(self._buffer) >= self.capacity:
            self._buffer.popleft()
            self._missed += 1
            self.total_missed += 1
        self._buffer.append(event)
        self._ready.set()

    def _shutdown(self):
        self._closed = True
        self._ready.set()

    def try_recv(self) -> Optional[PeerEvent]:
        """
        Take the next buffered event without waiting.

        Returns:
            The event, or None if nothing is buffered

        Raises:
            SubscriberLagged: Events were dropped since the last receive
            EventBusClosed: The receiver is closed and drained
        """
        if self._missed:
            missed, self._missed = self._missed, 0
            raise SubscriberLagged(missed)
        if self._buffer:
            return self._buffer.popleft()
        if self._closed:
            raise EventBusClosed()
        return None

    async def recv(self) -> PeerEvent:
        """Wait for the next event (same errors as try_recv)."""
        while True:
            event = self.try_recv()
            if event is not None:
                return event
            self._ready.clear()
            await self._ready.wait()

    def close(self):
        """Unsubscribe; already buffered events can still be drained."""
        self._bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> PeerEvent:
        while True:
            try:
                return await self.recv()
            except SubscriberLagged as e:
                logger.warning(f"Event subscriber lagged, skipped {e.missed} events")
            except EventBusClosed:
                raise StopAsyncIteration


class EventBus:
    """Multi-subscriber broadcast of PeerEvents."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._subscribers: 'weakref.WeakSet[EventReceiver]' = weakref.WeakSet()
        self._closed = False
        self.published = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def dropped(self) -> int:
        """Events dropped across current subscribers."""
        return sum(r.total_missed for r in list(self._subscribers))

    def subscribe(self, capacity: Optional[int] = None) -> EventReceiver:
        """Create a receiver; never blocks."""
        if self._closed:
            raise EventBusClosed()
        receiver = EventReceiver(self, capacity or self.capacity)
        self._subscribers.add(receiver)
        return receiver

    def unsubscribe(self, receiver: EventReceiver):
        self._subscribers.discard(receiver)
        receiver._shutdown()

    def publish(self, event: PeerEvent) -> int:
        """
        Deliver event to every current subscriber.

        Returns:
            Number of subscribers the event was delivered to
        """
        if self._closed:
            logger.debug(f"Event bus closed, dropping {event.type}")
            return 0

        receivers: List[EventReceiver] = list(self._subscribers)
        for receiver in receivers:
            receiver._deliver(event)

        self.published += 1
        return len(receivers)

    def close(self):
        """Close the bus; receivers end once drained."""
        if self._closed:
            return
        self._closed = True
        for receiver in list(self._subscribers):
            receiver._shutdown()
        self._subscribers.clear()
