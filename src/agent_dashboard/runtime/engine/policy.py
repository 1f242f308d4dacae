"""Board derivation policy: stage rules and epoch resumption triggers.

The mixed-task tie-break and the resumption triggers are heuristics, so they
live here as configuration rather than inside the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast

from ..domain.models import (
    TASK_COMPLETED,
    TASK_IN_PROGRESS,
    TASK_PENDING,
    BoardStage,
    Epoch,
    Session,
    is_valid_stage,
)


@dataclass(frozen=True)
class BoardPolicy:
    """Tunable heuristics used by the board engine."""

    # Stage for sessions with some completed and some pending tasks
    mixed_stage: BoardStage = "in_progress"

    # Whether a session reporting itself active overrides task-derived stages
    active_overrides_tasks: bool = True

    # Resumption: new tasks (with at least one still open) start a new epoch
    resume_on_new_tasks: bool = True

    # Resumption: any message beyond the completion baseline starts a new epoch
    resume_on_new_messages: bool = True

    def derive_stage(self, session: Session) -> BoardStage:
        """Compute a session's stage from its current tasks, messages and liveness."""
        tasks = session.tasks
        if not tasks:
            return "in_progress" if session.messages else "backlog"
        if session.is_active and self.active_overrides_tasks:
            return "in_progress"
        if all(task.status == TASK_COMPLETED for task in tasks):
            return "done"
        if any(task.status == TASK_IN_PROGRESS for task in tasks):
            return "in_progress"
        if all(task.status == TASK_PENDING for task in tasks):
            return "backlog"
        return self.mixed_stage

    def has_resumed(self, epoch: Epoch, session: Session) -> bool:
        """Return whether a completed epoch's session picked up new work."""
        if not epoch.is_completed:
            return False
        if self.resume_on_new_tasks:
            grew = len(session.tasks) > (epoch.task_count_at_completion or 0)
            if grew and any(task.is_open for task in session.tasks):
                return True
        if self.resume_on_new_messages:
            if len(session.messages) > (epoch.message_count_at_completion or 0):
                return True
        return False


DEFAULT_POLICY = BoardPolicy()


def policy_from_config(raw: Any) -> BoardPolicy:
    """Build a policy from a ``board`` config mapping, ignoring invalid values."""
    data = raw if isinstance(raw, dict) else {}
    mixed = str(data.get("mixed_stage") or DEFAULT_POLICY.mixed_stage).strip()
    if not is_valid_stage(mixed):
        mixed = DEFAULT_POLICY.mixed_stage

    def _flag(key: str, default: bool) -> bool:
        value = data.get(key)
        return value if isinstance(value, bool) else default

    return BoardPolicy(
        mixed_stage=cast(BoardStage, mixed),
        active_overrides_tasks=_flag("active_overrides_tasks", DEFAULT_POLICY.active_overrides_tasks),
        resume_on_new_tasks=_flag("resume_on_new_tasks", DEFAULT_POLICY.resume_on_new_tasks),
        resume_on_new_messages=_flag("resume_on_new_messages", DEFAULT_POLICY.resume_on_new_messages),
    )
