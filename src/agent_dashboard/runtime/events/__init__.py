"""Event bus and websocket hub exports."""

from .bus import EventBus
from .ws import WebSocketHub

__all__ = ["EventBus", "WebSocketHub"]
