"""Attention classification with a message-id dedup index."""

from __future__ import annotations

import re

from ..domain.models import (
    AttentionItem,
    AttentionSource,
    AttentionUrgency,
    DashboardState,
    Message,
    Session,
    Workspace,
)

# Evaluated top to bottom; the first matching pattern wins.
URGENCY_RULES: tuple[tuple[re.Pattern[str], AttentionUrgency], ...] = (
    (re.compile(r"\b(blocked|blocking|cannot proceed)\b"), "blocking"),
    (re.compile(r"\b(waiting|approve|confirm|review)\b"), "waiting"),
)
DEFAULT_URGENCY: AttentionUrgency = "informational"


def classify_urgency(text: str) -> AttentionUrgency:
    """Map message text to an urgency using ``URGENCY_RULES``."""
    lowered = (text or "").lower()
    for pattern, urgency in URGENCY_RULES:
        if pattern.search(lowered):
            return urgency
    return DEFAULT_URGENCY


class AttentionClassifier:
    """Derive attention items from messages that need a human response.

    Items are keyed by message id so repeated evaluations return the same
    objects; entries whose message stops qualifying are dropped from the index
    on the next evaluation.
    """

    def __init__(self) -> None:
        self._known: dict[str, AttentionItem] = {}

    def evaluate(self, state: DashboardState) -> list[AttentionItem]:
        items: list[AttentionItem] = []
        for workspace, session in state.sessions():
            items.extend(self._check_messages(workspace, session))
        self._collect_stale(items)
        return items

    def known_count(self) -> int:
        """Number of entries currently held in the dedup index."""
        return len(self._known)

    def _check_messages(self, workspace: Workspace, session: Session) -> list[AttentionItem]:
        items: list[AttentionItem] = []
        for message in session.messages:
            if not message.needs_response:
                continue
            key = f"msg-{message.id}"
            existing = self._known.get(key)
            if existing is None:
                existing = self._build_item(workspace, session, message)
                self._known[key] = existing
            items.append(existing)
        return items

    @staticmethod
    def _build_item(workspace: Workspace, session: Session, message: Message) -> AttentionItem:
        return AttentionItem(
            urgency=classify_urgency(message.content),
            short_context=message.summary or f"{message.author}: message needs your response",
            full_context=message.content,
            source=AttentionSource(
                tool=workspace.tool,
                workspace=workspace.name,
                session=session.id,
                agent=message.author or None,
            ),
            created_at=message.timestamp,
        )

    def _collect_stale(self, current: list[AttentionItem]) -> None:
        current_ids = {item.id for item in current}
        for key in [k for k, item in self._known.items() if item.id not in current_ids]:
            del self._known[key]
