"""
REST API for Peer Discovery

Design Decision: API Framework
==============================

Decision: FastAPI
- Native async support (the discovery service is asyncio-based)
- Automatic OpenAPI documentation
- Pydantic integration for response models
- StreamingResponse gives us server-sent events for the live feed

API Design:
- GET  /status, /peers, /peers/{name}, /interfaces
- POST /start, /stop, /discover
- GET  /events (text/event-stream)
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .. import __version__
from ..discovery import (
    EventBusClosed,
    Peer,
    PeerDiscovery,
    SubscriberLagged,
    get_network_interfaces,
)
from ..errors import NetworkInterfaceError, PeerDiscoveryError

logger = logging.getLogger(__name__)

# Seconds between SSE heartbeat comments
HEARTBEAT_INTERVAL = 15.0


# === Pydantic Models ===

class PeerInfo(BaseModel):
    """Information about a peer."""
    name: str
    ip: str
    port: int
    service_type: str
    device_type: str
    properties: Dict[str, str]

    @classmethod
    def from_peer(cls, peer: Peer) -> 'PeerInfo':
        return cls(
            name=peer.name,
            ip=peer.ip,
            port=peer.port,
            service_type=peer.service_type,
            device_type=peer.device_type,
            properties=dict(peer.properties),
        )


class ServiceStatus(BaseModel):
    """Discovery service status response."""
    state: str
    running: bool
    service_name: str
    service_type: str
    port: int
    discovered_peers: int
    subscribers: int
    events_published: int
    events_dropped: int


class InterfaceInfo(BaseModel):
    """A local network interface address."""
    name: str
    ip: str
    is_loopback: bool


# === API Creation ===

def create_app(discovery: PeerDiscovery) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        discovery: PeerDiscovery instance to expose

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("API server starting...")
        yield
        logger.info("API server stopping...")

    app = FastAPI(
        title="Qopy Peer Discovery API",
        description="REST API for mDNS LAN peer discovery",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "Qopy Peer Discovery",
            "version": __version__,
            "status": "running" if discovery.is_running else "not running",
        }

    @app.get("/status", response_model=ServiceStatus, tags=["Service"])
    async def get_status():
        """Get discovery service status."""
        stats = discovery.get_stats()
        return ServiceStatus(
            state=stats['state'],
            running=discovery.is_running,
            service_name=stats['service_name'],
            service_type=stats['service_type'],
            port=stats['port'],
            discovered_peers=stats['total_peers'],
            subscribers=stats['subscribers'],
            events_published=stats['events_published'],
            events_dropped=stats['events_dropped'],
        )

    @app.get("/config", tags=["Service"])
    async def get_config():
        """Get the effective configuration."""
        return discovery.config.to_dict()

    @app.post("/start", tags=["Service"])
    async def start_service():
        """Start advertising and browsing (no-op if already running)."""
        try:
            await discovery.start()
        except PeerDiscoveryError as e:
            logger.error(f"Failed to start discovery: {e}")
            raise HTTPException(status_code=500, detail=f"{e.kind.value}: {e}")
        return {"success": True, "state": discovery.state.value}

    @app.post("/stop", tags=["Service"])
    async def stop_service():
        """Stop advertising and browsing (no-op if not running)."""
        await discovery.stop()
        return {"success": True, "state": discovery.state.value}

    # === Peers ===

    @app.get("/peers", response_model=List[PeerInfo], tags=["Peers"])
    async def list_peers():
        """List currently discovered peers."""
        peers = await discovery.get_peers()
        return [PeerInfo.from_peer(p) for p in peers]

    @app.get("/peers/{name}", response_model=PeerInfo, tags=["Peers"])
    async def get_peer(name: str):
        """Get a peer by its full service name."""
        peer = await discovery.get_peer(name)
        if peer is None:
            raise HTTPException(status_code=404, detail=f"Peer not found: {name}")
        return PeerInfo.from_peer(peer)

    @app.post("/discover", response_model=List[PeerInfo], tags=["Peers"])
    async def discover(timeout: Optional[float] = Query(None, ge=0, le=300)):
        """Wait for the given number of seconds, then list peers."""
        try:
            peers = await discovery.discover_peers(timeout)
        except PeerDiscoveryError as e:
            logger.error(f"Discovery failed: {e}")
            raise HTTPException(status_code=500, detail=f"{e.kind.value}: {e}")
        return [PeerInfo.from_peer(p) for p in peers]

    @app.get("/interfaces", response_model=List[InterfaceInfo], tags=["Network"])
    async def list_interfaces():
        """List local network interface addresses."""
        try:
            interfaces = get_network_interfaces()
        except NetworkInterfaceError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return [InterfaceInfo(**i.to_dict()) for i in interfaces]

    # === Events ===

    @app.get("/events", tags=["Events"])
    async def stream_events(request: Request):
        """
        Live event feed as Server-Sent Events.

        Each event is a JSON object with a "type" field: peer_discovered,
        peer_lost, service_started, service_stopped, error, or lagged when
        this client fell behind and events were dropped.
        """
        try:
            receiver = discovery.subscribe()
        except EventBusClosed:
            raise HTTPException(status_code=503, detail="Discovery service closed")

        async def event_generator():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        event = await asyncio.wait_for(
                            receiver.recv(),
                            timeout=HEARTBEAT_INTERVAL
                        )
                        yield f"data: {json.dumps(event.to_dict())}\n\n"
                    except asyncio.TimeoutError:
                        yield ": heartbeat\n\n"
                    except SubscriberLagged as e:
                        yield f"data: {json.dumps({'type': 'lagged', 'missed': e.missed})}\n\n"
                    except EventBusClosed:
                        break
            finally:
                receiver.close()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return app


async def run_api_server(discovery: PeerDiscovery, host: str = "0.0.0.0", port: int = 8000):
    """Run the API server until it is shut down."""
    import uvicorn

    app = create_app(discovery)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
