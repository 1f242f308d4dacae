"""FastAPI app wiring for the agent dashboard."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import DashboardConfig, load_config
from ..runtime.api import create_router
from ..runtime.events import EventBus, WebSocketHub
from ..runtime.service import DashboardService

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[DashboardConfig] = None,
    service: Optional[DashboardService] = None,
    enable_cors: Optional[bool] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config (Optional[DashboardConfig]): Resolved configuration; loaded from
            the default location when omitted.
        service (Optional[DashboardService]): Prebuilt service. When omitted a
            service is built from ``config`` with its configured sources.
        enable_cors (Optional[bool]): Override for ``config.server.cors``.

    Returns:
        FastAPI: Application with the ``/api`` router, the ``/ws`` state stream,
        and the service and hub stored on ``app.state``.
    """
    config = config or load_config()
    hub = WebSocketHub()
    if service is None:
        service = DashboardService.from_config(
            config, bus=EventBus(hub, debounce_seconds=config.broadcast_debounce_seconds)
        )
    elif service.bus is None:
        service.bus = EventBus(hub, debounce_seconds=config.broadcast_debounce_seconds)

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        hub.attach_loop(asyncio.get_running_loop())
        hub.set_snapshot_provider(lambda: service.state.to_dict())
        await service.start()
        try:
            yield
        finally:
            try:
                service.stop()
            except Exception:
                logger.warning("Dashboard shutdown failed", exc_info=True)
            hub.set_snapshot_provider(None)

    app = FastAPI(
        title="Agent Dashboard",
        description="Live attention queue and kanban board for coding-agent sessions",
        version=__version__,
        lifespan=_lifespan,
    )

    cors = config.server.cors if enable_cors is None else enable_cors
    if cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.config = config
    app.state.service = service
    app.state.hub = hub

    app.include_router(create_router(lambda: app.state.service))

    @app.get("/")
    async def root() -> dict[str, object]:
        """Return basic service metadata."""
        return {
            "name": "Agent Dashboard",
            "version": __version__,
            "sources": [source.name for source in service.registry.sources],
        }

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        """Expose liveness status for process-level health checks."""
        return {"status": "ok", "version": __version__}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Stream the full state on connect and after every change."""
        await hub.handle_connection(websocket)

    return app
