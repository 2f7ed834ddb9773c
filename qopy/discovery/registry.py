"""
Peer Registry

Design Decision: Locking
========================

Options Considered:
1. Plain dict, rely on the event loop being single-threaded
   - Works today, but any await inside a multi-step update breaks it
   - Readers can observe half-applied changes
2. Single asyncio.Lock
   - Safe, but readers serialize behind each other
3. Reader/writer lock
   - Many concurrent readers (get_peers/get_peer callers)
   - One writer at a time (the browse loop, stop())

Decision: Reader/writer lock, writer-preferring
- Readers never block each other
- A waiting writer blocks new readers, so a steady stream of
  get_peers() callers cannot starve the browse loop
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .models import Peer

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """asyncio reader/writer lock with writer preference."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writing(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the lock shared."""
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        """Hold the lock exclusively."""
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._waiting_writers -= 1
                # Readers held back by this writer may proceed if it gave up
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class PeerRegistry:
    """
    In-memory table of currently known peers, keyed by full service name.

    Entries are replaced wholesale on every resolve; there is no TTL here,
    expiry is the protocol engine's job (it reports a removal).
    """

    def __init__(self):
        self._peers: Dict[str, Peer] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        return len(self._peers)

    async def upsert(self, peer: Peer) -> Optional[Peer]:
        """
        Insert or replace the entry for peer.name.

        Returns:
            The entry that was replaced, if any
        """
        async with self._lock.write():
            previous = self._peers.get(peer.name)
            self._peers[peer.name] = peer
        return previous

    async def remove(self, name: str) -> Optional[Peer]:
        """Remove and return the entry for name, if present."""
        async with self._lock.write():
            return self._peers.pop(name, None)

    async def get(self, name: str) -> Optional[Peer]:
        async with self._lock.read():
            return self._peers.get(name)

    async def snapshot(self) -> List[Peer]:
        """Copy of all current entries, in no particular order."""
        async with self._lock.read():
            return list(self._peers.values())

    async def clear(self) -> int:
        """Drop every entry; returns how many were dropped."""
        async with self._lock.write():
            count = len(self._peers)
            self._peers.clear()
        if count:
            logger.debug(f"Cleared {count} peers from registry")
        return count
