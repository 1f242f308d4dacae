"""Domain model dataclasses and normalization helpers."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional


AttentionUrgency = Literal["blocking", "waiting", "informational"]
BoardStage = Literal["backlog", "in_progress", "done"]
WorkItemStatus = Literal["planned", "in_progress", "done", "blocked"]
WorkItemSource = Literal["task", "plan", "spec"]

URGENCY_ORDER: dict[str, int] = {"blocking": 0, "waiting": 1, "informational": 2}
_VALID_STAGES = {"backlog", "in_progress", "done"}

TASK_PENDING = "pending"
TASK_IN_PROGRESS = "in_progress"
TASK_COMPLETED = "completed"
OPEN_TASK_STATUSES = {TASK_PENDING, TASK_IN_PROGRESS}


def now_ms() -> int:
    """Get the current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def _id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


@dataclass(frozen=True)
class WorkspaceRef:
    """Identity of one monitored unit inside a session source."""
    source: str
    workspace: str
    path: str = ""

    @property
    def key(self) -> str:
        """Stable merge key shared by the registry and workspace ids."""
        return f"{self.source}:{self.workspace}"


@dataclass
class Agent:
    """A participant in a team session."""
    id: str = ""
    name: str = ""
    role: Optional[str] = None
    status: str = "unknown"
    model: Optional[str] = None
    current_task: Optional[str] = None
    last_activity: int = 0
    cwd: Optional[str] = None
    prompt: Optional[str] = None


@dataclass
class TaskItem:
    """One task tracked inside a session."""
    id: str = ""
    subject: str = ""
    status: str = TASK_PENDING
    description: Optional[str] = None
    active_form: Optional[str] = None
    owner: Optional[str] = None
    blocks: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TASK_STATUSES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskItem":
        """Deserialize a task from raw tracker data.

        Accepts both snake_case and the camelCase keys written by task trackers
        (``activeForm``, ``blockedBy``).
        """
        return cls(
            id=str(data.get("id") or ""),
            subject=str(data.get("subject") or ""),
            status=str(data.get("status") or TASK_PENDING),
            description=_opt_str(data.get("description")),
            active_form=_opt_str(data.get("active_form", data.get("activeForm"))),
            owner=_opt_str(data.get("owner")),
            blocks=_str_list(data.get("blocks")),
            blocked_by=_str_list(data.get("blocked_by", data.get("blockedBy"))),
        )


@dataclass
class Message:
    """A chronological message exchanged inside a session."""
    id: str = ""
    author: str = ""
    content: str = ""
    recipient: Optional[str] = None
    summary: Optional[str] = None
    timestamp: int = 0
    read: bool = False
    needs_response: bool = False


@dataclass
class Session:
    """Immutable-by-convention snapshot of one tracked unit of work.

    Sources produce a fresh ``Session`` on every scan; consumers replace the
    previous snapshot wholesale instead of patching fields.
    """
    id: str = ""
    name: str = ""
    type: str = "solo"
    agents: list[Agent] = field(default_factory=list)
    tasks: list[TaskItem] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    last_activity: int = 0
    is_active: bool = False


@dataclass
class Workspace:
    """A monitored workspace and the sessions merged into it."""
    id: str = ""
    name: str = ""
    path: str = ""
    tool: str = ""
    sessions: list[Session] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the workspace and its sessions."""
        return asdict(self)


@dataclass
class AttentionSource:
    """Where an attention item originated."""
    tool: str = ""
    workspace: str = ""
    session: str = ""
    agent: Optional[str] = None
    file: str = ""


@dataclass
class AttentionItem:
    """A message that needs a human response, ranked by urgency."""
    id: str = field(default_factory=lambda: _id("attn"))
    urgency: AttentionUrgency = "informational"
    short_context: str = ""
    full_context: str = ""
    actions: list[str] = field(default_factory=list)
    source: AttentionSource = field(default_factory=AttentionSource)
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the attention item, including its source reference."""
        return asdict(self)


@dataclass
class Epoch:
    """One lifecycle round of a session on the board.

    Only the highest-numbered epoch of a session is live; earlier epochs are
    historical and always render as ``done``. A resumed epoch is staged on the
    tasks beyond the previous epoch's completion baseline (``task_offset``).
    """
    session_id: str
    epoch: int
    stage_entered_at: int
    last_known_stage: BoardStage
    title: str = ""
    task_offset: int = 0
    completed_at: Optional[int] = None
    message_count_at_completion: Optional[int] = None
    task_count_at_completion: Optional[int] = None

    @property
    def card_id(self) -> str:
        return f"{self.session_id}-epoch-{self.epoch}"

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def mark_completed(self, at: int, *, message_count: int, task_count: int) -> None:
        """Record the completion baseline used to detect resumed work."""
        self.completed_at = at
        self.message_count_at_completion = message_count
        self.task_count_at_completion = task_count


@dataclass
class CardAttention:
    """Attention summary attached to a board card."""
    urgency: AttentionUrgency
    preview: str


@dataclass
class BoardCard:
    """Read-only projection of an epoch plus its session."""
    id: str
    title: str
    stage: BoardStage
    session_id: str
    task_summary: str
    stage_entered_at: int
    last_activity: int
    attention: Optional[CardAttention] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the card to a plain dictionary."""
        return asdict(self)


@dataclass
class WorkItem:
    """A coarse unit of planned work derived from tasks or plan files."""
    id: str
    name: str
    status: WorkItemStatus
    source: WorkItemSource
    session_id: str
    last_activity: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize the work item to a plain dictionary."""
        return asdict(self)


@dataclass
class DashboardState:
    """Consolidated state pushed to viewers on every change."""
    workspaces: list[Workspace] = field(default_factory=list)
    attention_items: list[AttentionItem] = field(default_factory=list)
    work_items: list[WorkItem] = field(default_factory=list)
    board_cards: list[BoardCard] = field(default_factory=list)

    def sessions(self) -> list[tuple[Workspace, Session]]:
        """Flatten workspaces into ``(workspace, session)`` pairs in order."""
        return [(workspace, session) for workspace in self.workspaces for session in workspace.sessions]

    def to_dict(self) -> dict[str, Any]:
        """Serialize the full state for API and websocket payloads."""
        return {
            "workspaces": [w.to_dict() for w in self.workspaces],
            "attention_items": [a.to_dict() for a in self.attention_items],
            "work_items": [w.to_dict() for w in self.work_items],
            "board_cards": [c.to_dict() for c in self.board_cards],
        }


def is_valid_stage(value: str) -> bool:
    """Return whether ``value`` names a board stage."""
    return value in _VALID_STAGES
