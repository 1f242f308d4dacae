"""Derive coarse work items from session tasks and project plan files."""

from __future__ import annotations

import base64
import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from ..domain.models import (
    TASK_COMPLETED,
    TASK_IN_PROGRESS,
    Session,
    TaskItem,
    WorkItem,
    WorkItemStatus,
    Workspace,
    now_ms,
)

logger = logging.getLogger(__name__)

TICKET_PATTERN = re.compile(r"\b([A-Z]+-\d+)\b")
PLAN_PREFIXES = ("PLAN", "SPEC", "DESIGN")
_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_ALL_DONE = re.compile(r"\ball\s+tasks?\s+(completed|done)\b", re.IGNORECASE)
_IN_PROGRESS = re.compile(r"\bin progress\b", re.IGNORECASE)
_CURRENT_WORK = re.compile(
    r"^##\s+(Current Work|In Progress|TODO)[^\n]*\n(.*?)(?=^##|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_BULLET = re.compile(r"^[-*]\s+(.+)$", re.MULTILINE)
MIN_BULLET_CHARS = 5


def infer_status(tasks: Iterable[TaskItem]) -> WorkItemStatus:
    """Collapse a group of tasks into a single work item status."""
    items = list(tasks)
    if not items:
        return "planned"
    if any(task.blocked_by and task.status != TASK_COMPLETED for task in items):
        return "blocked"
    if all(task.status == TASK_COMPLETED for task in items):
        return "done"
    if any(task.status == TASK_IN_PROGRESS for task in items):
        return "in_progress"
    return "planned"


def extract_ticket_id(text: str) -> Optional[str]:
    match = TICKET_PATTERN.search(text or "")
    return match.group(1) if match else None


def work_items_from_tasks(session: Session) -> list[WorkItem]:
    """Group a session's tasks by ticket id; untagged tasks stand alone."""
    groups: dict[str, list[TaskItem]] = {}
    ungrouped: list[TaskItem] = []
    for task in session.tasks:
        if not task.subject:
            continue
        ticket = extract_ticket_id(task.subject)
        if ticket:
            groups.setdefault(ticket, []).append(task)
        else:
            ungrouped.append(task)

    items: list[WorkItem] = []
    for ticket, tasks in groups.items():
        primary = tasks[0].subject
        remainder = TICKET_PATTERN.sub("", primary).strip() or primary
        items.append(
            WorkItem(
                id=f"wi-task-{ticket}-{session.id}",
                name=f"{ticket}: {remainder}",
                status=infer_status(tasks),
                source="task",
                session_id=session.id,
                last_activity=session.last_activity,
            )
        )
    for task in ungrouped:
        items.append(
            WorkItem(
                id=f"wi-task-{task.id}-{session.id}",
                name=task.subject,
                status=infer_status([task]),
                source="task",
                session_id=session.id,
                last_activity=session.last_activity,
            )
        )
    return items


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def _plan_files(cwd: Path) -> list[Path]:
    found: list[Path] = []
    try:
        root_entries = sorted(cwd.iterdir())
    except OSError:
        root_entries = []
    for entry in root_entries:
        if entry.suffix == ".md" and entry.name.upper().startswith(PLAN_PREFIXES) and entry.is_file():
            found.append(entry)
    plans_dir = cwd / "docs" / "plans"
    if plans_dir.is_dir():
        found.extend(sorted(p for p in plans_dir.glob("*.md") if p.is_file()))
    return found


def work_items_from_plan_files(cwd: Path, session_id: str) -> list[WorkItem]:
    """Read plan/spec/design documents in a project directory."""
    items: list[WorkItem] = []
    for path in _plan_files(cwd):
        content = _read_text(path)
        if not content:
            continue
        heading = _HEADING.search(content)
        status: WorkItemStatus = "planned"
        if _ALL_DONE.search(content):
            status = "done"
        elif _IN_PROGRESS.search(content):
            status = "in_progress"
        try:
            mtime = int(path.stat().st_mtime * 1000)
        except OSError:
            mtime = 0
        items.append(
            WorkItem(
                id=f"wi-plan-{path.stem}-{session_id}",
                name=heading.group(1).strip() if heading else path.stem,
                status=status,
                source="plan",
                session_id=session_id,
                last_activity=mtime,
            )
        )
    return items


def work_items_from_project_notes(cwd: Path, session_id: str) -> list[WorkItem]:
    """Turn bullets under a "Current Work" style heading in CLAUDE.md into items."""
    content = _read_text(cwd / "CLAUDE.md")
    if not content:
        return []
    section = _CURRENT_WORK.search(content)
    if not section:
        return []
    items: list[WorkItem] = []
    for bullet in _BULLET.finditer(section.group(2)):
        text = bullet.group(1).strip()
        if len(text) <= MIN_BULLET_CHARS:
            continue
        slug = base64.b64encode(text.encode("utf-8")).decode("ascii")[:12]
        items.append(
            WorkItem(
                id=f"wi-claude-{slug}-{session_id}",
                name=text,
                status="in_progress",
                source="spec",
                session_id=session_id,
                last_activity=now_ms(),
            )
        )
    return items


def deduplicate(items: list[WorkItem]) -> list[WorkItem]:
    """Keep the most recently active item per normalized name."""
    seen: dict[str, WorkItem] = {}
    for item in items:
        key = TICKET_PATTERN.sub("", (item.name or "")).lower().strip()
        if not key:
            continue
        existing = seen.get(key)
        if existing is None or item.last_activity > existing.last_activity:
            seen[key] = item
    return list(seen.values())


class WorkflowScanner:
    """Collect work items across all workspaces."""

    def scan(self, workspaces: list[Workspace]) -> list[WorkItem]:
        items: list[WorkItem] = []
        for workspace in workspaces:
            for session in workspace.sessions:
                items.extend(work_items_from_tasks(session))

            cwds: list[str] = []
            for session in workspace.sessions:
                for agent in session.agents:
                    if agent.cwd and agent.cwd not in cwds:
                        cwds.append(agent.cwd)
            if not cwds:
                continue
            session_id = workspace.sessions[0].id if workspace.sessions else workspace.id
            for cwd in cwds:
                path = Path(cwd)
                if not path.is_dir():
                    continue
                try:
                    items.extend(work_items_from_plan_files(path, session_id))
                    items.extend(work_items_from_project_notes(path, session_id))
                except Exception:
                    logger.warning("Workflow scan failed for %s", cwd, exc_info=True)
        return deduplicate(items)
