"""WebSocket gateway for one-shot DNSE stock quotes over MQTT."""

__version__ = "1.0.0"
