import dataclasses
from datetime import datetime, timezone

import pytest

from blindspot_gateway.state import StateStore, SystemState, isoformat_z


def test_default_state():
    state = StateStore().get()

    assert state.distance is None
    assert state.led_status == "OFF"
    assert state.sensor_status == "OFFLINE"
    assert state.camera_status == "OFFLINE"
    assert state.last_update is None


def test_apply_overwrites_field_and_timestamp():
    store = StateStore()
    ts = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    state = store.apply("led_status", "ON", ts)

    assert state.led_status == "ON"
    assert state.last_update == ts
    assert store.get() is state
    assert store.mutation_count == 1


def test_snapshot_is_immutable():
    store = StateStore()
    before = store.get()

    store.apply("distance", 42.5)

    assert before.distance is None
    with pytest.raises(dataclasses.FrozenInstanceError):
        before.distance = 1


def test_unknown_field_is_rejected():
    with pytest.raises(KeyError):
        StateStore().apply("speed", 3)


def test_to_dict_uses_wire_names():
    ts = datetime(2026, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    state = SystemState(distance=12, led_status="ON", last_update=ts)

    assert state.to_dict() == {
        "distance": 12,
        "ledStatus": "ON",
        "sensorStatus": "OFFLINE",
        "cameraStatus": "OFFLINE",
        "lastUpdate": "2026-01-01T12:00:00.123Z",
    }
    assert SystemState().to_dict()["lastUpdate"] is None


def test_isoformat_z_converts_to_utc():
    from datetime import timedelta

    local = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert isoformat_z(local) == "2026-01-01T12:00:00.000Z"
