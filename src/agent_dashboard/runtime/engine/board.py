"""Board derivation engine: per-session epochs, stages and card projection."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Optional

from ..domain.models import (
    TASK_COMPLETED,
    URGENCY_ORDER,
    AttentionItem,
    AttentionUrgency,
    BoardCard,
    BoardStage,
    CardAttention,
    DashboardState,
    Epoch,
    Session,
    now_ms,
)
from .policy import DEFAULT_POLICY, BoardPolicy
from .titles import Summarizer, TitleResolver

logger = logging.getLogger(__name__)


def board_sort_key(card: BoardCard) -> tuple[int, int, int]:
    """Order cards: attention first, then most urgent, then oldest stage entry."""
    if card.attention is None:
        return (1, 0, card.stage_entered_at)
    return (0, URGENCY_ORDER.get(card.attention.urgency, 99), card.stage_entered_at)


def task_summary(session: Session) -> str:
    """Summarize task completion as ``"done/total tasks done"``."""
    if not session.tasks:
        return "no tasks"
    completed = sum(1 for task in session.tasks if task.status == TASK_COMPLETED)
    return f"{completed}/{len(session.tasks)} tasks done"


def derive_attention(session: Session, attention_items: list[AttentionItem]) -> Optional[CardAttention]:
    """Summarize the attention signals that belong to one session."""
    matching = [item for item in attention_items if item.source.session == session.id]
    if matching:
        matching.sort(key=lambda item: URGENCY_ORDER.get(item.urgency, 99))
        if len(matching) == 1:
            preview = matching[0].short_context
        else:
            preview = f"{len(matching)} items need attention"
        return CardAttention(urgency=matching[0].urgency, preview=preview)

    pending = [message for message in session.messages if message.needs_response]
    if not pending:
        return None
    urgency: AttentionUrgency = "waiting"
    if len(pending) == 1:
        preview = pending[0].summary or f"{pending[0].author}: needs response"
    else:
        preview = f"{len(pending)} messages need response"
    return CardAttention(urgency=urgency, preview=preview)


class BoardDerivationEngine:
    """Track epochs per session and project them into board cards.

    Epochs and the dismissed set are process-lifetime state owned by the
    instance; they are only mutated through ``evaluate`` and ``dismiss``.
    """

    def __init__(
        self,
        *,
        policy: BoardPolicy = DEFAULT_POLICY,
        summarizer: Optional[Summarizer] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the BoardDerivationEngine.

        Args:
            policy (BoardPolicy): Stage and resumption heuristics.
            summarizer (Optional[Summarizer]): Title fallback collaborator.
            clock (Callable[[], int]): Millisecond clock used for stage entry
                and completion timestamps.
        """
        self.policy = policy
        self._clock = clock
        self._titles = TitleResolver(summarizer)
        self._epochs: dict[str, list[Epoch]] = {}
        self._dismissed: set[str] = set()

    def evaluate(self, state: DashboardState) -> list[BoardCard]:
        cards: list[BoardCard] = []
        for _, session in state.sessions():
            epochs = self._resolve_epochs(session)
            live = epochs[-1]
            self._update_live_stage(live, session)
            attention = derive_attention(session, state.attention_items)
            summary = task_summary(session)
            for epoch in epochs:
                if epoch.card_id in self._dismissed:
                    continue
                stage: BoardStage = epoch.last_known_stage if epoch is live else "done"
                cards.append(
                    BoardCard(
                        id=epoch.card_id,
                        title=self._titles.resolve(session, epoch),
                        stage=stage,
                        session_id=session.id,
                        task_summary=summary,
                        attention=attention,
                        stage_entered_at=epoch.stage_entered_at,
                        last_activity=session.last_activity,
                    )
                )
        return cards

    def dismiss(self, card_id: str) -> bool:
        """Hide a finished card from all future evaluations.

        Args:
            card_id (str): Card id of the epoch to dismiss.

        Returns:
            bool: ``True`` when the card exists and is done; otherwise ``False``
            and nothing changes.
        """
        epoch = self.find_epoch(card_id)
        if epoch is None:
            return False
        if epoch.last_known_stage != "done" and not epoch.is_completed:
            return False
        self._dismissed.add(card_id)
        logger.debug("Dismissed board card %s", card_id)
        return True

    def find_epoch(self, card_id: str) -> Optional[Epoch]:
        """Look up the epoch that backs a card id."""
        for epochs in self._epochs.values():
            for epoch in epochs:
                if epoch.card_id == card_id:
                    return epoch
        return None

    def epochs_for(self, session_id: str) -> list[Epoch]:
        """Return a copy of a session's epoch list, oldest first."""
        return list(self._epochs.get(session_id, []))

    def is_dismissed(self, card_id: str) -> bool:
        return card_id in self._dismissed

    def on_title_resolved(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when a deferred card title becomes available."""
        self._titles.on_resolved = callback

    def _stage_for(self, epoch: Epoch, session: Session) -> BoardStage:
        # A resumed epoch is staged on the tasks added since the last completion.
        new_tasks = session.tasks[epoch.task_offset:]
        if epoch.task_offset == 0 or not new_tasks:
            return self.policy.derive_stage(session)
        return self.policy.derive_stage(replace(session, tasks=new_tasks))

    def _new_epoch(self, session: Session, number: int, previous: Optional[Epoch] = None) -> Epoch:
        now = self._clock()
        epoch = Epoch(
            session_id=session.id,
            epoch=number,
            stage_entered_at=now,
            last_known_stage="backlog",
            task_offset=(previous.task_count_at_completion or 0) if previous else 0,
        )
        epoch.last_known_stage = self._stage_for(epoch, session)
        if epoch.last_known_stage == "done":
            epoch.mark_completed(now, message_count=len(session.messages), task_count=len(session.tasks))
        return epoch

    def _resolve_epochs(self, session: Session) -> list[Epoch]:
        epochs = self._epochs.get(session.id)
        if epochs is None:
            epochs = [self._new_epoch(session, 0)]
            self._epochs[session.id] = epochs
            return epochs

        live = epochs[-1]
        if self.policy.has_resumed(live, session):
            resumed = self._new_epoch(session, live.epoch + 1, live)
            # Growth that leaves the session finished is not a new round of work.
            if resumed.last_known_stage == "done":
                return epochs
            epochs.append(resumed)
            logger.debug("Session %s resumed; opened epoch %s", session.id, resumed.epoch)
        return epochs

    def _update_live_stage(self, epoch: Epoch, session: Session) -> None:
        # A completed live epoch stays done until resumption opens a new epoch.
        if epoch.is_completed:
            return
        stage = self._stage_for(epoch, session)
        if stage == epoch.last_known_stage:
            return
        now = self._clock()
        epoch.stage_entered_at = now
        epoch.last_known_stage = stage
        if stage == "done":
            epoch.mark_completed(now, message_count=len(session.messages), task_count=len(session.tasks))
