"""Tests for BrowseStream and the zeroconf-backed registrar (engine mocked)."""

from __future__ import annotations

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock

import pytest
from zeroconf import NonUniqueNameException, ServiceInfo, ServiceStateChange

from fakes import removed, resolved
from qopy.discovery import (
    BrowseStream,
    PeerDiscovery,
    ServiceRemoved,
    ServiceResolved,
    ZeroconfRegistrar,
)
from qopy.discovery.mdns import record_from_info
from qopy.errors import AdvertiseError, DiscoveryFailure

SERVICE_TYPE = "_qopyapp._tcp.local."


def done_future():
    future = asyncio.get_running_loop().create_future()
    future.set_result(None)
    return future


def mock_engine():
    aiozc = MagicMock()
    aiozc.async_register_service = AsyncMock(side_effect=lambda info: done_future())
    aiozc.async_unregister_service = AsyncMock(side_effect=lambda info: done_future())
    aiozc.async_unregister_all_services = AsyncMock()
    aiozc.async_close = AsyncMock()
    return aiozc


class FakeBrowser:
    """Stands in for AsyncServiceBrowser; keeps the handlers it was given."""

    instances = []

    def __init__(self, zc, service_type, handlers):
        self.service_type = service_type
        self.handlers = handlers
        self.async_cancel = AsyncMock()
        FakeBrowser.instances.append(self)

    def fire(self, name, state_change):
        for handler in self.handlers:
            handler(zeroconf=None, service_type=self.service_type, name=name,
                    state_change=state_change)


class FakeServiceInfo:
    """Stands in for AsyncServiceInfo; resolves instantly."""

    resolves = True
    delay = 0.0

    def __init__(self, type_, name):
        self.type = type_
        self.name = name
        self.port = 9000
        self.properties = {b"device_type": b"phone"}

    async def async_request(self, zc, timeout):
        if FakeServiceInfo.delay:
            await asyncio.sleep(FakeServiceInfo.delay)
        return FakeServiceInfo.resolves

    def parsed_addresses(self):
        return ["fe80::2", "192.168.1.30"]


@pytest.fixture
def fake_browser(monkeypatch):
    FakeBrowser.instances = []
    monkeypatch.setattr("qopy.discovery.mdns.AsyncServiceBrowser", FakeBrowser)
    return FakeBrowser


@pytest.fixture
def fake_info(monkeypatch):
    FakeServiceInfo.resolves = True
    FakeServiceInfo.delay = 0.0
    monkeypatch.setattr("qopy.discovery.mdns.AsyncServiceInfo", FakeServiceInfo)
    return FakeServiceInfo


# ── BrowseStream ──────────────────────────────────────────────────


class TestBrowseStream:
    @pytest.mark.asyncio
    async def test_yields_pushed_events_then_ends_on_close(self):
        stream = BrowseStream(SERVICE_TYPE)
        stream.push(resolved("a"))
        stream.push(removed("a"))
        await stream.close()

        received = [event async for event in stream]
        assert received == [resolved("a"), removed("a")]

    @pytest.mark.asyncio
    async def test_push_after_close_is_dropped(self):
        stream = BrowseStream(SERVICE_TYPE)
        await stream.close()
        stream.push(resolved("a"))
        assert [event async for event in stream] == []

    @pytest.mark.asyncio
    async def test_close_runs_callback_once(self):
        on_close = AsyncMock()
        stream = BrowseStream(SERVICE_TYPE, on_close=on_close)
        await stream.close()
        await stream.close()
        on_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fail_raises_after_drain(self):
        stream = BrowseStream(SERVICE_TYPE)
        stream.push(resolved("a"))
        stream.fail(DiscoveryFailure("socket closed"))

        assert await stream.__anext__() == resolved("a")
        with pytest.raises(DiscoveryFailure):
            await stream.__anext__()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()


# ── Record conversion ─────────────────────────────────────────────


class TestRecordFromInfo:
    def test_converts_service_info(self):
        info = ServiceInfo(
            SERVICE_TYPE,
            f"bob.{SERVICE_TYPE}",
            addresses=[socket.inet_aton("10.0.0.8")],
            port=8080,
            properties={"device_type": "desktop"},
            server="bob.local.",
        )

        record = record_from_info(info)

        assert record.name == f"bob.{SERVICE_TYPE}"
        assert record.service_type == SERVICE_TYPE
        assert record.addresses == ["10.0.0.8"]
        assert record.port == 8080
        assert record.properties == {b"device_type": b"desktop"}


# ── ZeroconfRegistrar ─────────────────────────────────────────────


class TestZeroconfRegistrar:
    def test_engine_init_failure(self, monkeypatch):
        def broken(**kwargs):
            raise OSError("Address already in use")

        monkeypatch.setattr("qopy.discovery.mdns.AsyncZeroconf", broken)
        with pytest.raises(AdvertiseError):
            ZeroconfRegistrar()

    @pytest.mark.asyncio
    async def test_register(self):
        aiozc = mock_engine()
        registrar = ZeroconfRegistrar(aiozc=aiozc)

        await registrar.register(SERVICE_TYPE, "alice", "alice.local.", "10.0.0.5", 8080,
                                 {"device_type": "desktop"})

        info = aiozc.async_register_service.await_args.args[0]
        assert info.name == f"alice.{SERVICE_TYPE}"
        assert info.server == "alice.local."
        assert info.port == 8080
        assert info.parsed_addresses() == ["10.0.0.5"]
        assert info.properties == {b"device_type": b"desktop"}

    @pytest.mark.asyncio
    async def test_register_conflict(self):
        aiozc = mock_engine()
        aiozc.async_register_service.side_effect = NonUniqueNameException()
        registrar = ZeroconfRegistrar(aiozc=aiozc)

        with pytest.raises(AdvertiseError):
            await registrar.register(SERVICE_TYPE, "alice", "alice.local.", "10.0.0.5", 8080, {})

    @pytest.mark.asyncio
    async def test_register_bad_address(self):
        registrar = ZeroconfRegistrar(aiozc=mock_engine())
        with pytest.raises(AdvertiseError):
            await registrar.register(SERVICE_TYPE, "alice", "alice.local.", "not-an-ip", 8080, {})

    @pytest.mark.asyncio
    async def test_unregister(self):
        aiozc = mock_engine()
        registrar = ZeroconfRegistrar(aiozc=aiozc)
        await registrar.register(SERVICE_TYPE, "alice", "alice.local.", "10.0.0.5", 8080, {})

        await registrar.unregister("alice")

        info = aiozc.async_unregister_service.await_args.args[0]
        assert info.name == f"alice.{SERVICE_TYPE}"
        with pytest.raises(AdvertiseError):
            await registrar.unregister("alice")

    @pytest.mark.asyncio
    async def test_browse_translates_state_changes(self, fake_browser, fake_info):
        registrar = ZeroconfRegistrar(aiozc=mock_engine())
        stream = registrar.browse(SERVICE_TYPE)
        browser = fake_browser.instances[0]

        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Added)
        event = await asyncio.wait_for(stream.__anext__(), 1.0)
        assert isinstance(event, ServiceResolved)
        assert event.record.name == f"bob.{SERVICE_TYPE}"
        assert event.record.addresses == ["fe80::2", "192.168.1.30"]
        assert event.record.port == 9000

        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Removed)
        event = await asyncio.wait_for(stream.__anext__(), 1.0)
        assert event == ServiceRemoved(f"bob.{SERVICE_TYPE}")

        await stream.close()
        browser.async_cancel.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unresolved_instance_is_dropped(self, fake_browser, fake_info):
        fake_info.resolves = False
        registrar = ZeroconfRegistrar(aiozc=mock_engine())
        stream = registrar.browse(SERVICE_TYPE)

        fake_browser.instances[0].fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Added)
        await asyncio.sleep(0.01)
        await stream.close()

        assert [event async for event in stream] == []

    @pytest.mark.asyncio
    async def test_removal_cancels_pending_resolve(self, fake_browser, fake_info):
        fake_info.delay = 0.05
        registrar = ZeroconfRegistrar(aiozc=mock_engine())
        stream = registrar.browse(SERVICE_TYPE)
        browser = fake_browser.instances[0]

        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Added)
        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Removed)
        await asyncio.sleep(0.15)
        await stream.close()

        assert [event async for event in stream] == [ServiceRemoved(f"bob.{SERVICE_TYPE}")]

    @pytest.mark.asyncio
    async def test_update_replaces_pending_resolve(self, fake_browser, fake_info):
        fake_info.delay = 0.05
        registrar = ZeroconfRegistrar(aiozc=mock_engine())
        stream = registrar.browse(SERVICE_TYPE)
        browser = fake_browser.instances[0]

        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Added)
        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Updated)
        await asyncio.sleep(0.15)
        await stream.close()

        events = [event async for event in stream]
        assert len(events) == 1
        assert events[0].record.name == f"bob.{SERVICE_TYPE}"

    @pytest.mark.asyncio
    async def test_removed_peer_stays_gone_while_resolving(self, config, fake_browser, fake_info):
        fake_info.delay = 0.05
        discovery = PeerDiscovery(config, registrar=ZeroconfRegistrar(aiozc=mock_engine()))
        await discovery.start()
        browser = fake_browser.instances[0]

        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Added)
        browser.fire(f"bob.{SERVICE_TYPE}", ServiceStateChange.Removed)
        await asyncio.sleep(0.2)

        assert await discovery.get_peers() == []
        await discovery.close()

    @pytest.mark.asyncio
    async def test_browse_failure(self, monkeypatch):
        def broken(*args, **kwargs):
            raise ValueError("bad service type")

        monkeypatch.setattr("qopy.discovery.mdns.AsyncServiceBrowser", broken)
        registrar = ZeroconfRegistrar(aiozc=mock_engine())

        with pytest.raises(DiscoveryFailure):
            registrar.browse(SERVICE_TYPE)

    @pytest.mark.asyncio
    async def test_close(self):
        aiozc = mock_engine()
        registrar = ZeroconfRegistrar(aiozc=aiozc)
        await registrar.register(SERVICE_TYPE, "alice", "alice.local.", "10.0.0.5", 8080, {})

        await registrar.close()

        aiozc.async_unregister_all_services.assert_awaited_once()
        aiozc.async_close.assert_awaited_once()
