"""
MQTT Bridge for the blind spot devices.

Handles:
- Connecting to the broker with automatic reconnection
- Subscribing to the telemetry/status topics on every connect
- Handing inbound messages to the asyncio side
- Publishing web commands (fire and forget)
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Iterable, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTBridge:
    """
    MQTT client for the blind spot devices.

    paho-mqtt runs its network loop on a background thread. Inbound messages
    are passed as raw ``(topic, payload)`` to ``on_message``, which must be
    thread-safe.
    """

    def __init__(
        self,
        host: str = "test.mosquitto.org",
        port: int = 1883,
        subscribe_topics: Iterable[str] = (),
        keepalive: int = 60,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 30,
        on_message: Optional[Callable[[str, bytes], None]] = None,
    ):
        """
        Initialize MQTT bridge.

        Args:
            host: MQTT broker host
            port: MQTT broker port
            subscribe_topics: Topics subscribed on every (re)connect
            keepalive: Keepalive interval in seconds
            reconnect_min_delay: First reconnect delay in seconds
            reconnect_max_delay: Reconnect backoff ceiling in seconds
            on_message: Callback for inbound messages
        """
        self.host = host
        self.port = port
        self.subscribe_topics = tuple(subscribe_topics)
        self.keepalive = keepalive
        self.reconnect_min_delay = reconnect_min_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.on_message = on_message

        # MQTT client
        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._running = False

        # Statistics
        self._messages_sent = 0
        self._messages_received = 0
        self._publish_failures = 0
        self._last_send_time: Optional[float] = None

    def start(self, wait_seconds: float = 5.0) -> bool:
        """
        Start the MQTT bridge.

        The connection is attempted in the background and retried until it
        succeeds, so a broker that is down at startup is not fatal.

        Args:
            wait_seconds: How long to wait for the first connection

        Returns:
            True if connected within ``wait_seconds``, False otherwise
        """
        if self._running:
            return self._connected

        client_id = f"blindspot-server-{uuid.uuid4().hex[:8]}"
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.enable_logger(logger)
        self._client.reconnect_delay_set(
            min_delay=self.reconnect_min_delay,
            max_delay=self.reconnect_max_delay,
        )

        # Set callbacks
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.on_subscribe = self._on_subscribe

        logger.info(f"Connecting to MQTT broker at {self.host}:{self.port} as {client_id}")
        self._client.connect_async(self.host, self.port, keepalive=self.keepalive)

        # Start loop in background thread
        self._running = True
        self._client.loop_start()

        deadline = time.monotonic() + wait_seconds
        while not self._connected and time.monotonic() < deadline:
            time.sleep(0.1)

        if not self._connected:
            logger.warning("MQTT connection timeout - retrying in background")
        return self._connected

    def stop(self) -> None:
        """Stop the MQTT bridge."""
        if not self._running:
            return

        self._running = False

        if self._client:
            self._client.disconnect()
            self._client.loop_stop()
            self._client = None

        self._connected = False
        logger.info("MQTT bridge stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """MQTT connection callback."""
        if reason_code.is_failure:
            logger.error(f"MQTT connection failed: {reason_code}")
            return

        self._connected = True
        logger.info(f"Connected to MQTT broker {self.host}:{self.port}")

        for topic in self.subscribe_topics:
            result, mid = client.subscribe(topic, qos=0)
            if result != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Failed to subscribe to {topic}: {mqtt.error_string(result)}")
            else:
                logger.info(f"Subscribed to: {topic}")

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                logger.error(f"Subscription {mid} rejected by broker: {reason_code}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """MQTT disconnection callback."""
        self._connected = False
        if self._running and reason_code.is_failure:
            logger.warning(f"MQTT client is offline ({reason_code}), reconnecting...")
        else:
            logger.info("Disconnected from MQTT broker")

    def _on_message(self, client, userdata, msg):
        """MQTT message callback."""
        self._messages_received += 1
        logger.debug(f"MQTT message - topic: {msg.topic}, payload: {msg.payload!r}")

        if not self.on_message:
            return
        try:
            self.on_message(msg.topic, msg.payload)
        except Exception as e:
            logger.error(f"Error forwarding MQTT message: {e}")

    def publish(self, topic: str, payload: str) -> bool:
        """
        Publish a message with QoS 0.

        Failures are logged, never raised. Nothing is queued for a later
        retry.

        Returns:
            True if the message was handed to the network loop
        """
        if not self._client:
            self._publish_failures += 1
            logger.warning(f"MQTT bridge not started, dropping publish to {topic}")
            return False

        try:
            info = self._client.publish(topic, payload, qos=0)
        except Exception as e:
            self._publish_failures += 1
            logger.error(f"Failed to publish to {topic}: {e}")
            return False

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._publish_failures += 1
            logger.warning(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
            return False

        self._messages_sent += 1
        self._last_send_time = time.time()
        return True

    @property
    def connected(self) -> bool:
        """Check if connected to MQTT broker."""
        return self._connected

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "connected": self._connected,
            "messages_sent": self._messages_sent,
            "messages_received": self._messages_received,
            "publish_failures": self._publish_failures,
            "last_send_time": self._last_send_time,
        }


class AsyncMQTTBridge:
    """
    Async wrapper for MQTTBridge.

    Provides async-compatible methods for use with asyncio.
    """

    def __init__(self, **kwargs):
        """Initialize with same arguments as MQTTBridge."""
        self._bridge = MQTTBridge(**kwargs)

    async def start(self) -> bool:
        """Start the MQTT bridge."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._bridge.start)

    async def stop(self) -> None:
        """Stop the MQTT bridge."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._bridge.stop)

    async def publish(self, topic: str, payload: str) -> bool:
        """Publish a message."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._bridge.publish, topic, payload)

    @property
    def connected(self) -> bool:
        """Check if connected."""
        return self._bridge.connected

    def get_stats(self) -> dict:
        """Get statistics."""
        return self._bridge.get_stats()
