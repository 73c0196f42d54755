"""
WebSocket and HTTP server for browser clients.

Handles:
- FastAPI WebSocket endpoint at /ws (state events, commands, ping)
- Status and health endpoints
- Camera stream relay endpoint
- Serving the browser client
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .hub import BroadcastHub, ClientSession, HubClosedError
from .state import StateStore, isoformat_z, utc_now
from .stream_relay import StreamRelay

logger = logging.getLogger(__name__)

COMMAND_EVENT = "mqtt-command"
PING_EVENT = "ping"
PONG_EVENT = "pong"
INITIAL_STATE_EVENT = "get-initial-state"


@dataclass
class ClientEvent:
    """Parsed event frame from a client."""
    event: str
    data: Any = None

    @classmethod
    def from_json(cls, raw: str) -> 'ClientEvent':
        """Parse from JSON string."""
        d = json.loads(raw)
        if not isinstance(d, dict):
            raise ValueError("event frame must be a JSON object")
        event = d.get("event")
        if not isinstance(event, str):
            raise ValueError("event frame has no event name")
        return cls(event=event, data=d.get("data"))


class WebSocketServer:
    """
    Browser-facing server.

    Features:
    - One broadcast session per WebSocket connection
    - Command forwarding callback
    - Status, health and camera stream endpoints
    """

    def __init__(
        self,
        store: StateStore,
        hub: BroadcastHub,
        relay: StreamRelay,
        on_command: Optional[Callable[[Any], Awaitable[Any]]] = None,
        bus_connected: Optional[Callable[[], bool]] = None,
        static_dir: Optional[Path] = None,
        lifespan=None,
    ):
        """
        Initialize WebSocket server.

        Args:
            store: Canonical state store
            hub: Broadcast hub owning client sessions
            relay: Camera stream relay
            on_command: Callback for ``mqtt-command`` payloads
            bus_connected: Returns the current MQTT connectivity
            static_dir: Directory of the browser client, if any
            lifespan: FastAPI lifespan context
        """
        self.store = store
        self.hub = hub
        self.relay = relay
        self.on_command = on_command
        self.bus_connected = bus_connected or (lambda: False)
        self.static_dir = static_dir
        self.started_at = time.monotonic()

        # Statistics
        self._total_events = 0
        self._invalid_events = 0

        # FastAPI app
        self.app = FastAPI(title="Blind Spot Detection Gateway", lifespan=lifespan)

        # Add CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @self.app.exception_handler(Exception)
        async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
            logger.error(f"Server error on {request.url.path}: {exc!r}")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Internal server error"},
            )

        # Register routes
        self._setup_routes()

    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/api/status")
        async def get_status():
            """Current system state plus MQTT connectivity and uptime."""
            data = self.store.get().to_dict()
            data["mqttConnected"] = self.bus_connected()
            data["uptime"] = self.uptime()
            return {"success": True, "data": data}

        @self.app.get("/api/health")
        async def health_check():
            """Liveness check."""
            return {
                "status": "healthy",
                "timestamp": isoformat_z(utc_now()),
                "mqtt": "connected" if self.bus_connected() else "disconnected",
            }

        @self.app.get("/api/camera-stream")
        async def camera_stream():
            """Relay the camera's continuous stream."""
            return await self.relay.relay()

        @self.app.websocket("/ws")
        async def websocket_events(websocket: WebSocket):
            """WebSocket endpoint for state events and commands."""
            await self._handle_websocket(websocket)

        # Mounted last so the API routes take precedence.
        if self.static_dir is not None and Path(self.static_dir).is_dir():
            self.app.mount(
                "/",
                StaticFiles(directory=str(self.static_dir), html=True),
                name="static",
            )
        elif self.static_dir is not None:
            logger.warning(f"Static directory {self.static_dir} not found, client not served")

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle incoming WebSocket connection."""
        if self.hub.closed:
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            return

        await websocket.accept()
        try:
            session = self.hub.connect(websocket)
        except HubClosedError:
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            return

        logger.info(f"Client connected: {session.session_id} from {websocket.client}")

        try:
            await self._receive_events(session)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {session.session_id}")
        except Exception as e:
            logger.error(f"Error handling client {session.session_id}: {e}")
        finally:
            await self.hub.disconnect(session)

    async def _receive_events(self, session: ClientSession) -> None:
        """Receive and process events from a client."""
        websocket = session.websocket
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))

            raw = message.get("text")
            if raw is None:
                self._invalid_events += 1
                logger.warning(f"Ignoring binary frame from {session.session_id}")
                continue

            self._total_events += 1

            try:
                event = ClientEvent.from_json(raw)
            except ValueError as e:
                self._invalid_events += 1
                logger.warning(f"Invalid event from {session.session_id}: {e}")
                continue

            await self._handle_event(session, event)

    async def _handle_event(self, session: ClientSession, event: ClientEvent) -> None:
        if event.event == COMMAND_EVENT:
            if self.on_command:
                await self.on_command(event.data)
        elif event.event == PING_EVENT:
            self.hub.send(session, PONG_EVENT, {"timestamp": isoformat_z(utc_now())})
        elif event.event == INITIAL_STATE_EVENT:
            self.hub.send_snapshot(session)
        else:
            self._invalid_events += 1
            logger.warning(f"Unknown event {event.event!r} from {session.session_id}")

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            "connected_clients": self.hub.session_count,
            "total_events": self._total_events,
            "invalid_events": self._invalid_events,
        }
