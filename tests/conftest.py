import pytest
from fastapi.testclient import TestClient

from blindspot_gateway.config import GatewayConfig
from blindspot_gateway.main import ServerGateway
from blindspot_gateway.stream_relay import StreamRelay

from .fakes import CAMERA_URL, FakeBridge, camera_transport


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def config(tmp_path):
    static_dir = tmp_path / "static"
    static_dir.mkdir()
    (static_dir / "index.html").write_text("<html><body>Blind Spot</body></html>")
    return GatewayConfig(mqtt_topic_prefix="test/blindspot", static_dir=static_dir)


@pytest.fixture
def gateway(config, bridge):
    relay = StreamRelay(CAMERA_URL, transport=camera_transport())
    return ServerGateway(config, bridge=bridge, relay=relay)


@pytest.fixture
def client(gateway):
    with TestClient(gateway.get_app()) as test_client:
        yield test_client
