"""Websocket hub for streaming dashboard state to viewers."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], dict[str, Any]]


@dataclass
class _WsClient:
    ws: WebSocket


class WebSocketHub:
    """Track websocket viewers and push full-state messages to them."""
    def __init__(self) -> None:
        self._clients: dict[int, _WsClient] = {}
        self._counter = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()
        self._snapshot: Optional[SnapshotProvider] = None

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Register the event loop used for cross-thread publish scheduling."""
        with self._lock:
            self._loop = loop

    def set_snapshot_provider(self, provider: Optional[SnapshotProvider]) -> None:
        """Set the callable that produces the state sent on connect."""
        self._snapshot = provider

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Serve one viewer: send the current state, then answer pings until close."""
        self.attach_loop(asyncio.get_running_loop())
        await websocket.accept()
        cid = id(websocket)
        self._clients[cid] = _WsClient(ws=websocket)
        try:
            if self._snapshot is not None:
                await websocket.send_text(json.dumps({"type": "state", "data": self._snapshot()}))
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(message, dict) and message.get("action") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong", "data": {}}))
        except Exception:
            logger.debug("WebSocket client loop terminated with exception", exc_info=True)
        finally:
            self._clients.pop(cid, None)

    async def publish(self, message: dict[str, Any]) -> None:
        """Send one message to every connected viewer, dropping broken clients."""
        self._counter += 1
        payload = json.dumps({**message, "seq": self._counter})
        stale: list[int] = []
        for cid, client in list(self._clients.items()):
            try:
                await client.ws.send_text(payload)
            except Exception:
                stale.append(cid)
        for cid in stale:
            self._clients.pop(cid, None)

    def publish_sync(self, message: dict[str, Any]) -> None:
        """Schedule async publish from sync code paths without blocking callers."""
        with self._lock:
            loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None:
            self.attach_loop(running)
            running.create_task(self.publish(message))
            return
        if loop and loop.is_running():
            asyncio.run_coroutine_threadsafe(self.publish(message), loop)
            return
        logger.debug("No running event loop available for publish_sync")
