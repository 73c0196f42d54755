"""
Canonical system state.

Holds the latest known value of every monitored signal plus the time of the
last mutation. Snapshots are immutable; writers go through ``apply``.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

Distance = Optional[Union[int, float]]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    """Format like JavaScript's ``toISOString`` (millisecond precision, ``Z`` suffix)."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class SystemState:
    """Immutable snapshot of the system state."""
    distance: Distance = None
    led_status: str = "OFF"
    sensor_status: str = "OFFLINE"
    camera_status: str = "OFFLINE"
    last_update: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase keys)."""
        return {
            "distance": self.distance,
            "ledStatus": self.led_status,
            "sensorStatus": self.sensor_status,
            "cameraStatus": self.camera_status,
            "lastUpdate": isoformat_z(self.last_update) if self.last_update else None,
        }


STATE_FIELDS = ("distance", "led_status", "sensor_status", "camera_status")


class StateStore:
    """
    Single owner of the process-wide system state.

    Every mutation replaces the snapshot as a whole while holding the lock,
    so readers always observe either the old or the new state, never a
    partially applied one.
    """

    def __init__(self, initial: Optional[SystemState] = None):
        self._state = initial or SystemState()
        self._lock = threading.Lock()
        self._mutations = 0

    def get(self) -> SystemState:
        """Return the current snapshot."""
        with self._lock:
            return self._state

    def apply(
        self,
        field: str,
        value: Any,
        timestamp: Optional[datetime] = None,
    ) -> SystemState:
        """
        Overwrite one field and the last-update timestamp.

        Args:
            field: One of ``STATE_FIELDS``
            value: New value for the field
            timestamp: Mutation time, defaults to now

        Returns:
            The new snapshot
        """
        if field not in STATE_FIELDS:
            raise KeyError(f"Unknown state field: {field}")

        with self._lock:
            self._state = replace(
                self._state,
                **{field: value, "last_update": timestamp or utc_now()},
            )
            self._mutations += 1
            return self._state

    @property
    def mutation_count(self) -> int:
        return self._mutations
