"""Session source for Claude Code team and solo todo directories."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
import time
from concurrent.futures import Future
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..domain.models import Agent, Message, Session, TaskItem, WorkspaceRef
from .base import CompositeDisposable, Disposable

logger = logging.getLogger(__name__)

SOURCE_NAME = "claude-code"
SOLO_PREFIX = "solo-"
DEFAULT_HOME = Path.home() / ".claude"
DEFAULT_ACTIVE_THRESHOLD_SECONDS = 300
DEFAULT_WATCH_DEBOUNCE_SECONDS = 0.3
NAMESPACE_DEBOUNCE_SECONDS = 0.5
IDLE_PREFIX = "[idle]"

_NEEDS_RESPONSE = re.compile(r"\b(approve|confirm|review|blocked)\b", re.IGNORECASE)


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def _list_dir(path: Path) -> list[str]:
    try:
        return sorted(entry.name for entry in path.iterdir())
    except OSError:
        return []


def _parse_timestamp(value: Any) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str) or not value.strip():
        return 0
    raw = value.strip().replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _task_sort_key(task: TaskItem) -> tuple[int, int, str]:
    if task.id.isdigit():
        return (0, int(task.id), task.id)
    return (1, 0, task.id)


def is_idle_notification(text: str) -> bool:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return False
    return isinstance(parsed, dict) and parsed.get("type") == "idle_notification"


def parse_inbox_message(raw: dict[str, Any], inbox: str, index: int) -> Message:
    """Normalize one raw inbox entry.

    Args:
        raw (dict[str, Any]): Inbox entry with ``from``/``text``/``timestamp`` keys.
        inbox (str): Inbox file stem, part of the stable message id.
        index (int): Position of the entry inside its inbox file.

    Returns:
        Message: Normalized message with ``needs_response`` derived once.
    """
    author = str(raw.get("from") or "")
    text = str(raw.get("text") or "")
    idle = is_idle_notification(text)
    read = bool(raw.get("read", False))
    raw_ts = raw.get("timestamp")
    return Message(
        id=f"msg-{inbox}-{index}-{raw_ts}",
        author=author,
        content=f"{IDLE_PREFIX} {author} is available" if idle else text,
        summary=str(raw["summary"]) if raw.get("summary") else None,
        timestamp=_parse_timestamp(raw_ts),
        read=read,
        needs_response=not idle and not read and ("?" in text or bool(_NEEDS_RESPONSE.search(text))),
    )


def _parse_tasks(raw_items: Any) -> list[TaskItem]:
    if not isinstance(raw_items, list):
        return []
    return [TaskItem.from_dict(item) for item in raw_items if isinstance(item, dict)]


def _drop_foreign_edges(tasks: list[TaskItem]) -> None:
    known = {task.id for task in tasks}
    for task in tasks:
        task.blocks = [ref for ref in task.blocks if ref in known]
        task.blocked_by = [ref for ref in task.blocked_by if ref in known]


class _DebouncedHandler(FileSystemEventHandler):
    """Collapse bursts of filesystem events into one delayed callback."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self._delay = delay
        self._callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    # Only content changes count; the opened and closed events caused by our
    # own scans must not schedule another scan.
    def on_created(self, event: FileSystemEvent) -> None:
        self._schedule()

    def on_modified(self, event: FileSystemEvent) -> None:
        self._schedule()

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._schedule()

    def on_moved(self, event: FileSystemEvent) -> None:
        self._schedule()

    def _schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._callback)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class _ObserverHandle:
    def __init__(self, observer: Any, handler: _DebouncedHandler) -> None:
        self._observer = observer
        self._handler = handler

    def dispose(self) -> None:
        self._handler.cancel()
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join(timeout=2)


class ClaudeCodeSource:
    """Read team configs, inboxes and task files from a Claude Code home dir.

    Filesystem watcher threads never call back directly; every change is
    marshalled onto the event loop that was running when ``watch`` was called.
    """

    name = SOURCE_NAME

    def __init__(
        self,
        home: Optional[Path] = None,
        *,
        active_threshold_seconds: float = DEFAULT_ACTIVE_THRESHOLD_SECONDS,
        watch_debounce_seconds: float = DEFAULT_WATCH_DEBOUNCE_SECONDS,
    ) -> None:
        """Initialize the ClaudeCodeSource.

        Args:
            home (Optional[Path]): Claude home directory; defaults to ``~/.claude``.
            active_threshold_seconds (float): Recency window for liveness.
            watch_debounce_seconds (float): Delay used to coalesce file events.
        """
        self.home = Path(home or DEFAULT_HOME).expanduser()
        self.active_threshold_ms = int(active_threshold_seconds * 1000)
        self.watch_debounce_seconds = watch_debounce_seconds

    @property
    def teams_dir(self) -> Path:
        return self.home / "teams"

    @property
    def tasks_dir(self) -> Path:
        return self.home / "tasks"

    @property
    def todos_dir(self) -> Path:
        return self.home / "todos"

    def _team_ref(self, team: str) -> WorkspaceRef:
        return WorkspaceRef(source=self.name, workspace=team, path=str(self.teams_dir / team))

    def _solo_ref(self, file_name: str) -> WorkspaceRef:
        stem = Path(file_name).stem
        return WorkspaceRef(source=self.name, workspace=f"{SOLO_PREFIX}{stem}", path=str(self.todos_dir / file_name))

    def _detect_teams(self) -> list[WorkspaceRef]:
        return [
            self._team_ref(team)
            for team in _list_dir(self.teams_dir)
            if (self.teams_dir / team / "config.json").is_file()
        ]

    def _detect_todos(self) -> list[WorkspaceRef]:
        return [self._solo_ref(name) for name in _list_dir(self.todos_dir) if name.endswith(".json")]

    async def detect(self) -> list[WorkspaceRef]:
        return [*self._detect_teams(), *self._detect_todos()]

    async def scan(self, ref: WorkspaceRef) -> Session:
        if ref.workspace.startswith(SOLO_PREFIX):
            return self._scan_solo(ref)
        return self._scan_team(ref.workspace)

    def _scan_team(self, team: str) -> Session:
        team_dir = self.teams_dir / team
        config = _read_json(team_dir / "config.json")
        config = config if isinstance(config, dict) else {}

        agents: list[Agent] = []
        for member in config.get("members") or []:
            if not isinstance(member, dict):
                continue
            agents.append(
                Agent(
                    id=str(member.get("agentId") or ""),
                    name=str(member.get("name") or ""),
                    role=member.get("agentType"),
                    model=member.get("model"),
                    last_activity=_parse_timestamp(member.get("joinedAt")),
                    cwd=member.get("cwd"),
                    prompt=member.get("prompt"),
                )
            )

        tasks: list[TaskItem] = []
        task_dir = self.tasks_dir / team
        for name in _list_dir(task_dir):
            if not name.endswith(".json"):
                continue
            raw = _read_json(task_dir / name)
            if isinstance(raw, dict):
                tasks.append(TaskItem.from_dict(raw))
        tasks.sort(key=_task_sort_key)
        _drop_foreign_edges(tasks)

        messages: list[Message] = []
        inbox_dir = team_dir / "inboxes"
        for name in _list_dir(inbox_dir):
            if not name.endswith(".json"):
                continue
            raw_messages = _read_json(inbox_dir / name)
            if not isinstance(raw_messages, list):
                continue
            inbox = Path(name).stem
            for index, raw in enumerate(raw_messages):
                if isinstance(raw, dict):
                    messages.append(parse_inbox_message(raw, inbox, index))
        messages.sort(key=lambda m: m.timestamp)

        for agent in agents:
            own = [m for m in messages if m.author == agent.name]
            if own:
                agent.last_activity = own[-1].timestamp
                agent.status = "idle" if own[-1].content.startswith(IDLE_PREFIX) else "active"
            active_task = next((t for t in tasks if t.owner == agent.name and t.status == "in_progress"), None)
            if active_task is not None:
                agent.current_task = active_task.subject

        last_activity = max(
            [_parse_timestamp(config.get("createdAt"))]
            + [a.last_activity for a in agents]
            + [m.timestamp for m in messages]
        )
        session = Session(
            id=f"claude-team-{team}",
            name=str(config.get("name") or team),
            type="team",
            agents=agents,
            tasks=tasks,
            messages=messages,
            metadata={"description": config.get("description"), "lead_agent_id": config.get("leadAgentId")},
            last_activity=last_activity,
        )
        session.is_active = self._is_team_active(session, team_dir)
        return session

    def _is_team_active(self, session: Session, team_dir: Path) -> bool:
        if (team_dir / ".lock").is_file():
            return True
        now = int(time.time() * 1000)
        for message in session.messages:
            if message.needs_response:
                return True
            if not message.content.startswith(IDLE_PREFIX) and now - message.timestamp < self.active_threshold_ms:
                return True
        return False

    def _scan_solo(self, ref: WorkspaceRef) -> Session:
        path = Path(ref.path)
        stem = path.stem
        empty = Session(id=f"claude-solo-{stem}", name=stem, type="solo")
        tasks = _parse_tasks(_read_json(path))
        if not tasks:
            return empty
        _drop_foreign_edges(tasks)
        try:
            mtime = int(path.stat().st_mtime * 1000)
        except OSError:
            return empty
        return Session(
            id=f"claude-solo-{stem}",
            name=stem,
            type="solo",
            tasks=tasks,
            last_activity=mtime,
            is_active=int(time.time() * 1000) - mtime < self.active_threshold_ms,
        )

    def watch(self, ref: WorkspaceRef, on_change: Callable[[Session], None]) -> Disposable:
        loop = asyncio.get_running_loop()

        async def _rescan() -> None:
            on_change(await self.scan(ref))

        def _report(future: Future[None]) -> None:
            if future.cancelled():
                return
            exc = future.exception()
            if exc is not None:
                logger.warning("Rescan of %s failed", ref.key, exc_info=exc)

        def _fire() -> None:
            asyncio.run_coroutine_threadsafe(_rescan(), loop).add_done_callback(_report)

        handler = _DebouncedHandler(self.watch_debounce_seconds, _fire)
        observer = Observer()
        if ref.workspace.startswith(SOLO_PREFIX):
            # Watch the parent so atomic replace-on-write is still seen.
            targets = [(Path(ref.path).parent, False)]
        else:
            targets = [(Path(ref.path), True), (self.tasks_dir / ref.workspace, True)]
        scheduled = 0
        for target, recursive in targets:
            if target.is_dir():
                observer.schedule(handler, str(target), recursive=recursive)
                scheduled += 1
        if scheduled:
            observer.start()
        else:
            logger.debug("Nothing to watch for %s", ref.key)
        return _ObserverHandle(observer, handler)

    def watch_for_new(
        self,
        on_added: Callable[[WorkspaceRef], None],
        on_removed: Callable[[WorkspaceRef], None],
    ) -> Disposable:
        """Report team directories and todo files that appear or disappear."""
        loop = asyncio.get_running_loop()
        handles = CompositeDisposable()
        namespaces: list[tuple[Path, Callable[[], list[WorkspaceRef]]]] = [
            (self.teams_dir, self._detect_teams),
            (self.todos_dir, self._detect_todos),
        ]
        for directory, detect in namespaces:
            if not directory.is_dir():
                logger.debug("Namespace %s does not exist; not watching", directory)
                continue
            known = {ref.workspace: ref for ref in detect()}

            def _diff(detect: Callable[[], list[WorkspaceRef]] = detect, known: dict[str, WorkspaceRef] = known) -> None:
                current = {ref.workspace: ref for ref in detect()}
                for key, ref in current.items():
                    if key not in known:
                        known[key] = ref
                        on_added(ref)
                for key in [k for k in known if k not in current]:
                    on_removed(known.pop(key))

            def _fire(diff: Callable[[], None] = _diff) -> None:
                loop.call_soon_threadsafe(diff)

            handler = _DebouncedHandler(NAMESPACE_DEBOUNCE_SECONDS, _fire)
            observer = Observer()
            observer.schedule(handler, str(directory), recursive=directory == self.teams_dir)
            observer.start()
            handles.add(_ObserverHandle(observer, handler))
        return handles
