import json

from fastapi.testclient import TestClient

from blindspot_gateway.config import GatewayConfig
from blindspot_gateway.main import ServerGateway
from blindspot_gateway.stream_relay import BAD_GATEWAY_MESSAGE, StreamRelay

from .fakes import CAMERA_URL, MJPEG, FakeBridge, unreachable_camera_transport

DEFAULT_SNAPSHOT = {
    "distance": None,
    "ledStatus": "OFF",
    "sensorStatus": "OFFLINE",
    "cameraStatus": "OFFLINE",
    "lastUpdate": None,
}


def mqtt_message(gateway, binding, payload):
    gateway.dispatcher.submit(binding.topic, payload)


def test_session_receives_snapshot_on_connect(client):
    with client.websocket_connect("/ws") as ws:
        frame = ws.receive_json()

    assert frame == {"event": "system-state", "data": DEFAULT_SNAPSHOT}


def test_mqtt_messages_are_broadcast_in_order(client, gateway):
    topics = gateway.topics
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        assert ws1.receive_json()["event"] == "system-state"
        assert ws2.receive_json()["event"] == "system-state"

        mqtt_message(gateway, topics.distance, b'{"distance_cm": 42.5}')
        mqtt_message(gateway, topics.led_status, b"ON")
        mqtt_message(gateway, topics.camera_status, b"ONLINE")
        mqtt_message(gateway, topics.distance, b"ERROR")
        mqtt_message(gateway, topics.sensor_status, b"ONLINE")

        expected = [
            {"event": "mqtt-distance", "data": 42.5},
            {"event": "mqtt-led-status", "data": "ON"},
            {"event": "mqtt-camera-status", "data": "ONLINE"},
            {"event": "mqtt-distance", "data": None},
            {"event": "mqtt-sensor-status", "data": "ONLINE"},
        ]
        for ws in (ws1, ws2):
            assert [ws.receive_json() for _ in expected] == expected


def test_late_session_snapshot_reflects_current_state(client, gateway):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        mqtt_message(gateway, gateway.topics.led_status, b"ON")
        mqtt_message(gateway, gateway.topics.distance, b'{"distance_cm": 120}')
        ws.receive_json()
        ws.receive_json()

    with client.websocket_connect("/ws") as late:
        snapshot = late.receive_json()

    assert snapshot["event"] == "system-state"
    assert snapshot["data"]["ledStatus"] == "ON"
    assert snapshot["data"]["distance"] == 120
    assert snapshot["data"]["lastUpdate"].endswith("Z")


def test_unknown_topic_is_not_broadcast(client, gateway):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        gateway.dispatcher.submit("test/blindspot/unknown", b"ON")
        mqtt_message(gateway, gateway.topics.led_status, b"ON")

        assert ws.receive_json() == {"event": "mqtt-led-status", "data": "ON"}


def test_ping_returns_pong(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "ping"})
        frame = ws.receive_json()

    assert frame["event"] == "pong"
    assert frame["data"]["timestamp"].endswith("Z")


def test_get_initial_state_resends_snapshot(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "get-initial-state"})

        assert ws.receive_json() == {"event": "system-state", "data": DEFAULT_SNAPSHOT}


def test_command_is_published_to_commands_topic(client, bridge):
    command = {"action": "led", "value": "ON"}
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "mqtt-command", "data": command})
        ws.send_json({"event": "ping"})
        ws.receive_json()

    assert len(bridge.published) == 1
    topic, payload = bridge.published[0]
    assert topic == "test/blindspot/web/commands"
    assert json.loads(payload) == command


def test_command_is_published_when_bus_is_down(client, bridge):
    bridge.connected = False
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "mqtt-command", "data": "BUZZ"})
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"

    assert bridge.published == [("test/blindspot/web/commands", '"BUZZ"')]


def test_invalid_frames_keep_session_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json([1, 2, 3])
        ws.send_json({"data": "no event"})
        ws.send_json({"event": "teleport"})
        ws.send_bytes(b"\x00\x01")
        ws.send_json({"event": "ping"})

        assert ws.receive_json()["event"] == "pong"


def test_status_reports_state_and_connectivity(client, gateway, bridge):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        mqtt_message(gateway, gateway.topics.camera_status, b"ONLINE")
        ws.receive_json()

    response = client.get("/api/status")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["cameraStatus"] == "ONLINE"
    assert body["data"]["mqttConnected"] is True
    assert body["data"]["uptime"] >= 0

    bridge.connected = False
    body = client.get("/api/status").json()
    assert body["data"]["mqttConnected"] is False
    assert body["data"]["cameraStatus"] == "ONLINE"
    assert body["data"]["ledStatus"] == "OFF"


def test_health_endpoint(client, bridge):
    data = client.get("/api/health").json()
    assert data["status"] == "healthy"
    assert data["mqtt"] == "connected"
    assert data["timestamp"].endswith("Z")

    bridge.connected = False
    assert client.get("/api/health").json()["mqtt"] == "disconnected"


def test_camera_stream_is_relayed(client):
    response = client.get("/api/camera-stream")

    assert response.status_code == 200
    assert response.headers["content-type"] == MJPEG
    assert response.content == b"frame1frame2"


def test_camera_stream_unreachable_returns_502(config, bridge):
    relay = StreamRelay(CAMERA_URL, transport=unreachable_camera_transport())
    gateway = ServerGateway(config, bridge=bridge, relay=relay)

    with TestClient(gateway.get_app()) as client:
        response = client.get("/api/camera-stream")

    assert response.status_code == 502
    assert response.text == BAD_GATEWAY_MESSAGE


def test_static_client_is_served(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "Blind Spot" in response.text


def test_static_assets_are_served_from_root(client, config):
    (config.static_dir / "script.js").write_text("connect();")

    response = client.get("/script.js")

    assert response.status_code == 200
    assert response.text == "connect();"
    assert client.get("/static/script.js").status_code == 404


def test_cors_allows_any_origin(client):
    response = client.get("/api/health", headers={"Origin": "http://dashboard.local"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_unhandled_error_returns_json_500(bridge):
    gateway = ServerGateway(GatewayConfig(static_dir=None), bridge=bridge)

    async def boom():
        raise RuntimeError("boom")

    gateway.get_app().add_api_route("/api/boom", boom)

    with TestClient(gateway.get_app(), raise_server_exceptions=False) as client:
        response = client.get("/api/boom")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


def test_lifespan_starts_and_stops_components(config):
    bridge = FakeBridge()
    gateway = ServerGateway(config, bridge=bridge)

    with TestClient(gateway.get_app()):
        assert bridge.started
        assert gateway.running
        assert gateway.dispatcher.running

    assert bridge.stopped
    assert gateway.hub.closed
    assert not gateway.dispatcher.running
    assert not gateway.running
