"""Domain models for dashboard runtime state."""

from .models import (
    Agent,
    AttentionItem,
    AttentionSource,
    BoardCard,
    CardAttention,
    DashboardState,
    Epoch,
    Message,
    Session,
    TaskItem,
    WorkItem,
    Workspace,
    WorkspaceRef,
)

__all__ = [
    "Agent",
    "AttentionItem",
    "AttentionSource",
    "BoardCard",
    "CardAttention",
    "DashboardState",
    "Epoch",
    "Message",
    "Session",
    "TaskItem",
    "WorkItem",
    "Workspace",
    "WorkspaceRef",
]
