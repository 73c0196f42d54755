#!/usr/bin/env python3
"""
Blind Spot Gateway - Main Entry Point

This server bridges the blind spot detection devices to browser clients:
- Ingests MQTT telemetry into one canonical system state
- Broadcasts state updates to WebSocket clients
- Forwards client commands to MQTT
- Relays the ESP32-CAM video stream

Configuration is read from environment variables, see ``config.py``.

Usage:
    export MQTT_HOST=test.mosquitto.org
    python -m blindspot_gateway.main
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn

from .commands import CommandEgress
from .config import GatewayConfig
from .hub import BroadcastHub
from .ingress import IngressNormalizer, MessageDispatcher
from .mqtt_bridge import AsyncMQTTBridge
from .state import StateStore
from .stream_relay import StreamRelay
from .topics import TopicTable
from .ws_server import WebSocketServer

logger = logging.getLogger(__name__)


class ServerGateway:
    """
    Main server gateway integrating MQTT, WebSocket clients and the camera relay.

    Architecture:
        MQTT -> MessageDispatcher -> IngressNormalizer -> StateStore -> BroadcastHub -> clients
        clients -> CommandEgress -> MQTT (web commands)
        clients -> StreamRelay -> ESP32-CAM
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        bridge=None,
        relay: Optional[StreamRelay] = None,
    ):
        """
        Initialize server gateway.

        Args:
            config: Gateway configuration, defaults to built-in values
            bridge: MQTT client, defaults to an AsyncMQTTBridge for the config
            relay: Camera relay, defaults to one for the configured camera
        """
        self.config = config or GatewayConfig()
        self.topics = TopicTable.from_prefix(self.config.mqtt_topic_prefix)

        # Components
        self.store = StateStore()
        self.hub = BroadcastHub(self.store, queue_size=self.config.session_queue_size)
        self.normalizer = IngressNormalizer(self.store, self.hub, self.topics)
        self.dispatcher = MessageDispatcher(self.normalizer)

        if bridge is None:
            bridge = AsyncMQTTBridge(
                host=self.config.mqtt_host,
                port=self.config.mqtt_port,
                subscribe_topics=[b.topic for b in self.topics.inbound()],
                keepalive=self.config.mqtt_keepalive,
                reconnect_max_delay=self.config.mqtt_reconnect_max_delay,
                on_message=self.dispatcher.submit,
            )
        self.mqtt_bridge = bridge
        self.egress = CommandEgress(self.mqtt_bridge, self.topics.web_commands)

        self.relay = relay or StreamRelay(
            self.config.camera_stream_url,
            connect_timeout=self.config.camera_connect_timeout,
        )

        self.ws_server = WebSocketServer(
            store=self.store,
            hub=self.hub,
            relay=self.relay,
            on_command=self.egress.publish,
            bus_connected=lambda: self.mqtt_bridge.connected,
            static_dir=self.config.static_dir,
            lifespan=self.lifespan,
        )

        # State
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start all server components."""
        logger.info("Starting Blind Spot Gateway...")

        await self.dispatcher.start()

        success = await self.mqtt_bridge.start()
        if success:
            logger.info("MQTT bridge started")
        else:
            logger.warning("MQTT bridge not connected yet, continuing with last known state")

        self._running = True
        logger.info(f"Blind Spot Gateway running on http://{self.config.host}:{self.config.port}")
        logger.info(f"MQTT broker: {self.config.mqtt_host}:{self.config.mqtt_port}")
        logger.info(f"Camera stream: {self.config.camera_stream_url}")
        logger.info("Topics:")
        for binding in self.topics.all():
            logger.info(f"   {binding.name}: {binding.topic}")

    async def stop(self) -> None:
        """Stop all server components."""
        logger.info("Shutting down gracefully...")
        self._running = False

        await self.hub.close()
        await self.relay.aclose()
        await self.dispatcher.stop()
        await self.mqtt_bridge.stop()

        logger.info("Blind Spot Gateway stopped")

    @asynccontextmanager
    async def lifespan(self, app):
        """FastAPI lifespan: components live as long as the app."""
        await self.start()
        try:
            yield
        finally:
            await self.stop()

    def get_app(self):
        """Get the FastAPI application for uvicorn."""
        return self.ws_server.app

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            "ws_server": self.ws_server.get_stats(),
            "hub": self.hub.get_stats(),
            "ingress": self.normalizer.get_stats(),
            "commands": self.egress.get_stats(),
            "relay": self.relay.get_stats(),
            "mqtt_bridge": self.mqtt_bridge.get_stats(),
        }


async def main_async() -> None:
    """Async main entry point."""
    config = GatewayConfig.from_env()
    logging.getLogger().setLevel(config.log_level)

    gateway = ServerGateway(config)

    # uvicorn turns SIGINT/SIGTERM into a graceful exit, which runs the lifespan shutdown.
    server = uvicorn.Server(
        uvicorn.Config(
            gateway.get_app(),
            host=config.host,
            port=config.port,
            log_level=config.log_level.lower(),
            access_log=True,
        )
    )
    await server.serve()


def main() -> None:
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
