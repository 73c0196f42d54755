from pathlib import Path

import pytest

from blindspot_gateway.config import PACKAGE_STATIC_DIR, GatewayConfig


def test_defaults():
    cfg = GatewayConfig.from_env({})

    assert cfg.port == 3000
    assert cfg.mqtt_host == "test.mosquitto.org"
    assert cfg.mqtt_port == 1883
    assert cfg.mqtt_topic_prefix == "SkripsiFuji/blindspot"
    assert cfg.camera_stream_url == "http://10.246.144.3:80/stream"
    assert cfg.static_dir == PACKAGE_STATIC_DIR
    assert cfg.log_level == "INFO"


def test_environment_overrides():
    cfg = GatewayConfig.from_env({
        "PORT": "8080",
        "CAMERA_HOST": "192.168.1.50",
        "CAMERA_PORT": "81",
        "CAMERA_STREAM_PATH": "mjpeg",
        "CAMERA_CONNECT_TIMEOUT": "2.5",
        "MQTT_HOST": "broker.local",
        "MQTT_PORT": "8883",
        "MQTT_TOPIC_PREFIX": "site/a",
        "SESSION_QUEUE_SIZE": "16",
        "STATIC_DIR": "/srv/www",
        "LOG_LEVEL": "debug",
    })

    assert cfg.port == 8080
    assert cfg.camera_stream_url == "http://192.168.1.50:81/mjpeg"
    assert cfg.camera_connect_timeout == 2.5
    assert cfg.mqtt_host == "broker.local"
    assert cfg.mqtt_port == 8883
    assert cfg.mqtt_topic_prefix == "site/a"
    assert cfg.session_queue_size == 16
    assert cfg.static_dir == Path("/srv/www")
    assert cfg.log_level == "DEBUG"


def test_empty_values_fall_back_to_defaults():
    assert GatewayConfig.from_env({"PORT": ""}).port == 3000


def test_invalid_number_is_rejected():
    with pytest.raises(ValueError, match="PORT"):
        GatewayConfig.from_env({"PORT": "three thousand"})
