"""pytest configuration for qopy tests."""

import pytest
import pytest_asyncio

from fakes import FakeRegistrar
from qopy.config import DiscoveryConfig
from qopy.discovery import PeerDiscovery


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep QOPY_* variables from the developer's shell out of tests."""
    import os
    for key in list(os.environ):
        if key.startswith("QOPY_"):
            monkeypatch.delenv(key)


@pytest.fixture
def config():
    return DiscoveryConfig(
        service_name="alice",
        port=8080,
        ip_address="10.0.0.5",
        properties={"device_type": "desktop"},
        discovery_timeout=0.05,
    )


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest_asyncio.fixture
async def discovery(config, registrar):
    service = PeerDiscovery(config, registrar=registrar)
    yield service
    await service.close()
