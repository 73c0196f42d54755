"""
MQTT topic bindings.

Static table mapping each MQTT topic to the state field it updates, the
WebSocket event broadcast on change, and the rule used to decode its payload.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .state import Distance

DEFAULT_TOPIC_PREFIX = "SkripsiFuji/blindspot"

DISTANCE_ERROR_TOKEN = "ERROR"


def payload_text(payload: bytes) -> str:
    """Decode a raw MQTT payload as UTF-8 text."""
    if isinstance(payload, str):
        return payload
    return payload.decode("utf-8", errors="replace")


def decode_status(payload: bytes) -> str:
    """Status tokens are taken verbatim, the vocabulary is device defined."""
    return payload_text(payload)


def decode_distance(payload: bytes) -> Distance:
    """
    Decode a distance payload.

    ``ERROR`` means the sensor has no reading. Otherwise the payload must be a
    JSON object with a numeric ``distance_cm``. A zero or missing value is
    reported as no reading.

    Raises:
        ValueError: If the payload is not valid JSON or has the wrong shape
    """
    text = payload_text(payload)
    if text == DISTANCE_ERROR_TOKEN:
        return None

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    value = data.get("distance_cm")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"distance_cm is not a number: {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"distance_cm is not finite: {value!r}")

    return value or None


@dataclass(frozen=True)
class TopicBinding:
    """Binding between an MQTT topic and the system state."""
    name: str
    topic: str
    inbound: bool = True
    field: Optional[str] = None
    event: Optional[str] = None
    decode: Optional[Callable[[bytes], Any]] = None


@dataclass(frozen=True)
class TopicTable:
    """The five topic bindings of the gateway."""
    distance: TopicBinding
    led_status: TopicBinding
    sensor_status: TopicBinding
    camera_status: TopicBinding
    web_commands: TopicBinding

    @classmethod
    def from_prefix(cls, prefix: str = DEFAULT_TOPIC_PREFIX) -> "TopicTable":
        prefix = prefix.rstrip("/")
        return cls(
            distance=TopicBinding(
                name="DISTANCE",
                topic=f"{prefix}/sensor/distance",
                field="distance",
                event="mqtt-distance",
                decode=decode_distance,
            ),
            led_status=TopicBinding(
                name="LED_STATUS",
                topic=f"{prefix}/led_status",
                field="led_status",
                event="mqtt-led-status",
                decode=decode_status,
            ),
            sensor_status=TopicBinding(
                name="SENSOR_STATUS",
                topic=f"{prefix}/sensor/status",
                field="sensor_status",
                event="mqtt-sensor-status",
                decode=decode_status,
            ),
            camera_status=TopicBinding(
                name="CAMERA_STATUS",
                topic=f"{prefix}/camera/status",
                field="camera_status",
                event="mqtt-camera-status",
                decode=decode_status,
            ),
            web_commands=TopicBinding(
                name="WEB_COMMANDS",
                topic=f"{prefix}/web/commands",
                inbound=False,
            ),
        )

    def all(self):
        return (
            self.distance,
            self.led_status,
            self.sensor_status,
            self.camera_status,
            self.web_commands,
        )

    def inbound(self):
        return tuple(b for b in self.all() if b.inbound)

    def by_topic(self) -> Dict[str, TopicBinding]:
        """Inbound bindings keyed by topic string."""
        return {b.topic: b for b in self.inbound()}
