"""Pydantic response schemas for dashboard API routes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness payload with coarse state counters."""

    status: str = "ok"
    started: bool = False
    workspaces: int = 0
    attention_items: int = 0
    board_cards: int = 0


class DismissCardResponse(BaseModel):
    """Result of a successful card dismissal."""

    ok: bool = True
    card_id: str
    board_cards: int = 0


class AttentionListResponse(BaseModel):
    """Current attention queue, most urgent first."""

    attention_items: list[dict[str, Any]] = Field(default_factory=list)


class BoardResponse(BaseModel):
    """Board cards in display order."""

    board_cards: list[dict[str, Any]] = Field(default_factory=list)


class WorkItemsResponse(BaseModel):
    """Work items, optionally filtered to one workspace."""

    work_items: list[dict[str, Any]] = Field(default_factory=list)
