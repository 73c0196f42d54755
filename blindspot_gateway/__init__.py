"""
Blind Spot Gateway - MQTT bridge with WebSocket broadcast and camera relay.

This package runs next to the blind spot detection devices and:
- Keeps one canonical system state fed by MQTT telemetry
- Broadcasts state updates to browser clients over WebSocket
- Forwards client commands back onto MQTT
- Relays the ESP32-CAM video stream to browser clients
"""

__version__ = "1.0.0"
