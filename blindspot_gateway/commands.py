"""
Command egress: forwards client commands onto MQTT.

Commands are serialized as sent and published once. There is no
validation, acknowledgement or retry. A failed publish is logged and never
reported back to the client.
"""

import json
import logging
from typing import Any

from .topics import TopicBinding

logger = logging.getLogger(__name__)


class CommandEgress:
    """Publishes ``mqtt-command`` payloads to the web commands topic."""

    def __init__(self, bridge, binding: TopicBinding):
        """
        Args:
            bridge: Bus client exposing ``async publish(topic, payload) -> bool``
            binding: Outbound web commands binding
        """
        self._bridge = bridge
        self._topic = binding.topic
        self._forwarded = 0
        self._failed = 0

    async def publish(self, command: Any) -> bool:
        """Serialize and publish one command. Never raises."""
        try:
            payload = json.dumps(command)
        except (TypeError, ValueError) as e:
            self._failed += 1
            logger.error(f"Cannot serialize command {command!r}: {e}")
            return False

        logger.info(f"Publishing command: {payload}")
        try:
            ok = await self._bridge.publish(self._topic, payload)
        except Exception as e:
            ok = False
            logger.error(f"Failed to publish command to {self._topic}: {e}")

        if ok:
            self._forwarded += 1
        else:
            self._failed += 1
        return ok

    def get_stats(self) -> dict:
        return {"forwarded": self._forwarded, "failed": self._failed}
