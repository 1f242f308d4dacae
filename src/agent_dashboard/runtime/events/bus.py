"""Event bus that coalesces state changes and broadcasts them to viewers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..domain.models import DashboardState
from .ws import WebSocketHub

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.1


class EventBus:
    """Debounce bursts of state changes into single websocket broadcasts."""
    def __init__(self, hub: WebSocketHub, *, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS) -> None:
        """Initialize the EventBus.

        Args:
            hub (WebSocketHub): Hub that delivers messages to viewers.
            debounce_seconds (float): Quiet period before a broadcast; ``0``
                publishes every change immediately.
        """
        self._hub = hub
        self._debounce = max(0.0, float(debounce_seconds))
        self._latest: Optional[DashboardState] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self.published = 0

    def emit_state(self, state: DashboardState) -> None:
        """Queue ``state`` for broadcast; only the latest queued state is sent.

        Args:
            state (DashboardState): Consolidated state after a refresh.
        """
        self._latest = state
        if self._debounce == 0:
            self.flush()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        if self._handle is None:
            self._handle = loop.call_later(self._debounce, self.flush)

    def flush(self) -> None:
        """Broadcast the pending state now, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        state, self._latest = self._latest, None
        if state is None:
            return
        self.published += 1
        self._hub.publish_sync({"type": "state", "data": state.to_dict()})

    def close(self) -> None:
        """Drop any pending broadcast."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._latest = None
