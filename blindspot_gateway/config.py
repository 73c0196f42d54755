"""
Gateway configuration.

Environment Variables:
    HOST: Server bind address (default: 0.0.0.0)
    PORT: Server port (default: 3000)
    CAMERA_HOST: ESP32-CAM address (default: 10.246.144.3)
    CAMERA_PORT: ESP32-CAM HTTP port (default: 80)
    CAMERA_STREAM_PATH: Stream path on the camera (default: /stream)
    CAMERA_CONNECT_TIMEOUT: Seconds to reach the camera (default: 5.0)
    MQTT_HOST: MQTT broker host (default: test.mosquitto.org)
    MQTT_PORT: MQTT broker port (default: 1883)
    MQTT_TOPIC_PREFIX: Prefix of every topic (default: SkripsiFuji/blindspot)
    MQTT_KEEPALIVE: Keepalive in seconds (default: 60)
    MQTT_RECONNECT_MAX_DELAY: Reconnect backoff ceiling in seconds (default: 30)
    SESSION_QUEUE_SIZE: Pending events allowed per client (default: 256)
    STATIC_DIR: Directory of the browser client (default: packaged static/)
    LOG_LEVEL: Logging level (default: INFO)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .topics import DEFAULT_TOPIC_PREFIX

PACKAGE_STATIC_DIR = Path(__file__).resolve().parent / "static"


@dataclass
class GatewayConfig:
    """Fixed startup inputs of the gateway."""
    host: str = "0.0.0.0"
    port: int = 3000
    camera_host: str = "10.246.144.3"
    camera_port: int = 80
    camera_stream_path: str = "/stream"
    camera_connect_timeout: float = 5.0
    mqtt_host: str = "test.mosquitto.org"
    mqtt_port: int = 1883
    mqtt_topic_prefix: str = DEFAULT_TOPIC_PREFIX
    mqtt_keepalive: int = 60
    mqtt_reconnect_max_delay: int = 30
    session_queue_size: int = 256
    static_dir: Path = field(default_factory=lambda: PACKAGE_STATIC_DIR)
    log_level: str = "INFO"

    @property
    def camera_stream_url(self) -> str:
        path = self.camera_stream_path
        if not path.startswith("/"):
            path = "/" + path
        return f"http://{self.camera_host}:{self.camera_port}{path}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """
        Load configuration from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str, default, cast=str):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from None

        return cls(
            host=get("HOST", defaults.host),
            port=get("PORT", defaults.port, int),
            camera_host=get("CAMERA_HOST", defaults.camera_host),
            camera_port=get("CAMERA_PORT", defaults.camera_port, int),
            camera_stream_path=get("CAMERA_STREAM_PATH", defaults.camera_stream_path),
            camera_connect_timeout=get(
                "CAMERA_CONNECT_TIMEOUT", defaults.camera_connect_timeout, float
            ),
            mqtt_host=get("MQTT_HOST", defaults.mqtt_host),
            mqtt_port=get("MQTT_PORT", defaults.mqtt_port, int),
            mqtt_topic_prefix=get("MQTT_TOPIC_PREFIX", defaults.mqtt_topic_prefix),
            mqtt_keepalive=get("MQTT_KEEPALIVE", defaults.mqtt_keepalive, int),
            mqtt_reconnect_max_delay=get(
                "MQTT_RECONNECT_MAX_DELAY", defaults.mqtt_reconnect_max_delay, int
            ),
            session_queue_size=get("SESSION_QUEUE_SIZE", defaults.session_queue_size, int),
            static_dir=get("STATIC_DIR", defaults.static_dir, Path),
            log_level=get("LOG_LEVEL", defaults.log_level).upper(),
        )
