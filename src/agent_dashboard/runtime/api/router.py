"""FastAPI routes exposing dashboard state and board commands."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query

from ..domain.models import URGENCY_ORDER
from ..engine.board import board_sort_key
from ..service import DashboardService
from .schemas import (
    AttentionListResponse,
    BoardResponse,
    DismissCardResponse,
    HealthResponse,
    WorkItemsResponse,
)


def create_router(resolve_service: Callable[[], DashboardService]) -> APIRouter:
    """Build the ``/api`` router.

    Args:
        resolve_service (Callable[[], DashboardService]): Returns the service
            owning the current dashboard state.

    Returns:
        APIRouter: Router with state, board and work-item endpoints.
    """
    router = APIRouter(prefix="/api", tags=["dashboard"])

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Expose liveness status and coarse counters."""
        service = resolve_service()
        return HealthResponse(
            status="ok",
            started=service.started,
            workspaces=len(service.state.workspaces),
            attention_items=len(service.state.attention_items),
            board_cards=len(service.state.board_cards),
        )

    @router.get("/state")
    async def get_state() -> dict[str, Any]:
        """Return the full consolidated state."""
        return resolve_service().state.to_dict()

    @router.get("/attention", response_model=AttentionListResponse)
    async def get_attention() -> AttentionListResponse:
        """Return attention items, most urgent first, oldest first within an urgency."""
        items = sorted(
            resolve_service().state.attention_items,
            key=lambda item: (URGENCY_ORDER.get(item.urgency, 99), item.created_at),
        )
        return AttentionListResponse(attention_items=[item.to_dict() for item in items])

    @router.get("/board", response_model=BoardResponse)
    async def get_board() -> BoardResponse:
        """Return board cards in display order."""
        cards = sorted(resolve_service().state.board_cards, key=board_sort_key)
        return BoardResponse(board_cards=[card.to_dict() for card in cards])

    @router.delete("/board/{card_id}", response_model=DismissCardResponse)
    async def dismiss_card(card_id: str) -> DismissCardResponse:
        """Dismiss a finished board card.

        Raises:
            HTTPException: 404 for unknown cards, 400 for cards not yet done.
        """
        service = resolve_service()
        try:
            state = service.dismiss_card(card_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return DismissCardResponse(ok=True, card_id=card_id, board_cards=len(state.board_cards))

    @router.get("/work-items", response_model=WorkItemsResponse)
    async def get_work_items(workspace: Optional[str] = Query(None)) -> WorkItemsResponse:
        """List work items, optionally restricted to sessions of one workspace id."""
        state = resolve_service().state
        items = state.work_items
        if workspace:
            session_ids = {
                session.id
                for ws in state.workspaces
                if ws.id == workspace
                for session in ws.sessions
            }
            items = [item for item in items if item.session_id in session_ids]
        return WorkItemsResponse(work_items=[item.to_dict() for item in items])

    return router
