from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import pytest
import uvicorn

from agent_dashboard import cli
from agent_dashboard.runtime.domain.models import DashboardState, Message, Session, TaskItem, Workspace
from agent_dashboard.runtime.engine.board import BoardDerivationEngine
from agent_dashboard.runtime.service import DashboardService


def _workspaces(*statuses: str) -> list[Workspace]:
    session = Session(id="s1", name="Docs", tasks=[TaskItem(id=str(i), subject=f"t{i}", status=s) for i, s in enumerate(statuses)])
    return [Workspace(id="fake:docs", name="docs", tool="fake", sessions=[session])]


class _RecordingBus:
    def __init__(self) -> None:
        self.states: list[DashboardState] = []

    def emit_state(self, state: DashboardState) -> None:
        self.states.append(state)

    def close(self) -> None:
        pass


def test_refresh_runs_every_engine_and_publishes() -> None:
    bus = _RecordingBus()
    service = DashboardService(bus=bus)  # type: ignore[arg-type]

    state = service.refresh(_workspaces("pending"))

    assert [c.stage for c in state.board_cards] == ["backlog"]
    assert [w.name for w in state.work_items] == ["t0"]
    assert bus.states == [state]


def test_dismiss_card_errors_and_success() -> None:
    service = DashboardService()
    service.refresh(_workspaces("in_progress"))

    with pytest.raises(LookupError, match="Card not found"):
        service.dismiss_card("missing-epoch-0")
    with pytest.raises(ValueError, match="not in done stage"):
        service.dismiss_card("s1-epoch-0")

    service.refresh(_workspaces("completed"))
    assert service.dismiss_card("s1-epoch-0").board_cards == []


def test_workflow_failure_keeps_previous_items(monkeypatch: pytest.MonkeyPatch) -> None:
    service = DashboardService()
    service.refresh(_workspaces("pending"))

    def broken(workspaces: list[Workspace]) -> list[Any]:
        raise RuntimeError("disk gone")

    monkeypatch.setattr(service.workflow, "scan", broken)
    state = service.refresh(_workspaces("pending"))

    assert [w.name for w in state.work_items] == ["t0"]


def test_cli_serve_applies_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("server:\n  port: 9000\nsources:\n  claude_code:\n    enabled: false\n", encoding="utf-8")
    seen: dict[str, Any] = {}

    def fake_run(app: Any, **kwargs: Any) -> None:
        seen["app"] = app
        seen.update(kwargs)

    monkeypatch.setattr(uvicorn, "run", fake_run)
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("AGENT_DASHBOARD_PORT", raising=False)

    code = cli.main(["serve", "--config", str(config_path), "--host", "0.0.0.0", "--no-summarizer"])

    assert code == 0
    assert seen["host"] == "0.0.0.0"
    assert seen["port"] == 9000
    assert seen["app"].state.config.summarizer.enabled is False


def test_cli_reports_missing_config(tmp_path: Path) -> None:
    assert cli.main(["serve", "--config", str(tmp_path / "missing.yaml")]) == 2


def test_deferred_card_title_republishes_board() -> None:
    class _FixedSummarizer:
        def summarize(self, previews: list[str]) -> Optional[str]:
            return "Triage CI failures"

    bus = _RecordingBus()
    service = DashboardService(board=BoardDerivationEngine(summarizer=_FixedSummarizer()), bus=bus)  # type: ignore[arg-type]
    chat = Session(id="s1", name="team-a1b2c3d4", messages=[Message(id="m1", content="CI is red again")])
    workspaces = [Workspace(id="fake:ci", name="ci", tool="fake", sessions=[chat])]

    async def run() -> None:
        service.refresh(workspaces)
        for _ in range(200):
            if len(bus.states) > 1:
                break
            await asyncio.sleep(0.01)

    asyncio.run(run())

    assert [card.title for card in bus.states[-1].board_cards] == ["Triage CI failures"]
    assert len(bus.states) == 2
