from __future__ import annotations

import asyncio
import subprocess
import threading
from typing import Any, Optional

import pytest

from agent_dashboard.runtime.domain.models import Epoch, Message, Session, TaskItem
from agent_dashboard.runtime.engine.titles import (
    OPAQUE_NAME_PATTERN,
    CliSummarizer,
    TitleResolver,
    truncate_title,
)


class _RecordingSummarizer:
    def __init__(self, result: Optional[str]) -> None:
        self.result = result
        self.calls: list[list[str]] = []

    def summarize(self, previews: list[str]) -> Optional[str]:
        self.calls.append(previews)
        return self.result


def _epoch(number: int = 0) -> Epoch:
    return Epoch(session_id="s1", epoch=number, stage_entered_at=0, last_known_stage="backlog")


@pytest.mark.parametrize(
    "name,opaque",
    [
        ("3f2a9c1e-4b5d-4e6f", True),
        ("team-a1b2c3d4", True),
        ("0123456789abcdef0123", True),
        ("Refactor auth flow", False),
        ("frontend", False),
    ],
)
def test_opaque_name_pattern(name: str, opaque: bool) -> None:
    assert bool(OPAQUE_NAME_PATTERN.search(name)) is opaque


def test_truncate_title() -> None:
    assert truncate_title("short") == "short"
    assert truncate_title("x" * 50) == "x" * 50
    assert truncate_title("x" * 51) == "x" * 47 + "..."


def test_title_rules_apply_in_order() -> None:
    resolver = TitleResolver()
    tasks = [TaskItem(id="1", subject="Wire up API")]
    messages = [Message(id="m1", content="y" * 60)]

    described = Session(id="s1", name="Readable", metadata={"description": "Ship v2"}, tasks=tasks)
    assert resolver.resolve(described, _epoch()) == "Ship v2"

    named = Session(id="s1", name="Readable", tasks=tasks)
    assert resolver.resolve(named, _epoch()) == "Readable"

    opaque = Session(id="s1", name="team-a1b2c3d4", tasks=tasks, messages=messages)
    assert resolver.resolve(opaque, _epoch()) == "Wire up API"

    chat_only = Session(id="s1", name="team-a1b2c3d4", messages=messages)
    assert resolver.resolve(chat_only, _epoch()) == "y" * 47 + "..."


def test_resolved_title_is_cached_on_epoch() -> None:
    resolver = TitleResolver()
    epoch = _epoch()
    resolver.resolve(Session(id="s1", name="First"), epoch)
    assert resolver.resolve(Session(id="s1", name="Second"), epoch) == "First"


def test_summarizer_fallback_runs_once_per_epoch() -> None:
    summarizer = _RecordingSummarizer("Fix flaky tests")
    resolver = TitleResolver(summarizer)
    session = Session(
        id="s1",
        name="team-a1b2c3d4",
        messages=[Message(id="m1", content=""), Message(id="m2", content="looking at CI")],
    )

    assert resolver.resolve(session, _epoch()) == "Fix flaky tests"
    assert resolver.resolve(session, _epoch()) == "Fix flaky tests"
    assert summarizer.calls == [["looking at CI"]]


def test_summarizer_failure_falls_back_to_session_name() -> None:
    resolver = TitleResolver(_RecordingSummarizer(None))
    session = Session(id="s1", name="team-a1b2c3d4", messages=[Message(id="m1"), Message(id="m2", content="hi")])
    assert resolver.resolve(session, _epoch()) == "team-a1b2c3d4"


def test_cli_summarizer_returns_stripped_output(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        seen["cmd"] = cmd
        seen["timeout"] = kwargs.get("timeout")
        return subprocess.CompletedProcess(cmd, 0, stdout="  Fix login bug \n", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    summarizer = CliSummarizer("claude --print -p", timeout_seconds=3.0)

    assert summarizer.summarize(["a", "b"]) == "Fix login bug"
    assert seen["cmd"][:3] == ["claude", "--print", "-p"]
    assert "a | b" in seen["cmd"][3]
    assert seen["timeout"] == 3.0


def test_cli_summarizer_swallows_timeout_and_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    def timeout(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout") or 0)

    monkeypatch.setattr(subprocess, "run", timeout)
    assert CliSummarizer().summarize(["x"]) is None

    def missing(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", missing)
    assert CliSummarizer().summarize(["x"]) is None

    def failing(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(cmd, 1, stdout="partial", stderr="boom")

    monkeypatch.setattr(subprocess, "run", failing)
    assert CliSummarizer().summarize(["x"]) is None
    assert CliSummarizer().summarize([]) is None


class _ThreadRecordingSummarizer(_RecordingSummarizer):
    def __init__(self, result: Optional[str]) -> None:
        super().__init__(result)
        self.threads: list[int] = []

    def summarize(self, previews: list[str]) -> Optional[str]:
        self.threads.append(threading.get_ident())
        return super().summarize(previews)


def test_summarizer_runs_off_the_event_loop_and_reports_back() -> None:
    summarizer = _ThreadRecordingSummarizer("Fix flaky tests")
    resolved: list[str] = []
    resolver = TitleResolver(summarizer, on_resolved=lambda: resolved.append("s1-epoch-0"))
    session = Session(id="s1", name="team-a1b2c3d4", messages=[Message(id="m1", content="looking at CI")])
    epoch = _epoch()

    async def run() -> tuple[str, str, str, int]:
        provisional = resolver.resolve(session, epoch)
        again = resolver.resolve(session, epoch)
        for _ in range(200):
            if resolved:
                break
            await asyncio.sleep(0.01)
        return provisional, again, resolver.resolve(session, epoch), threading.get_ident()

    provisional, again, final, loop_thread = asyncio.run(run())

    assert (provisional, again) == ("team-a1b2c3d4", "team-a1b2c3d4")
    assert final == "Fix flaky tests"
    assert epoch.title == "Fix flaky tests"
    assert resolved == ["s1-epoch-0"]
    assert summarizer.calls == [["looking at CI"]]
    assert summarizer.threads and summarizer.threads[0] != loop_thread


def test_raising_summarizer_off_loop_settles_on_session_name() -> None:
    class _Broken:
        def summarize(self, previews: list[str]) -> Optional[str]:
            raise RuntimeError("cli crashed")

    resolved: list[bool] = []
    resolver = TitleResolver(_Broken(), on_resolved=lambda: resolved.append(True))
    session = Session(id="s1", name="team-a1b2c3d4", messages=[Message(id="m1", content="hi")])
    epoch = _epoch()

    async def run() -> str:
        resolver.resolve(session, epoch)
        for _ in range(200):
            if resolved:
                break
            await asyncio.sleep(0.01)
        return resolver.resolve(session, epoch)

    assert asyncio.run(run()) == "team-a1b2c3d4"
    assert resolved == [True]
