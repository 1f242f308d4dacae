from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

from fastapi.testclient import TestClient

from agent_dashboard.config import parse_config
from agent_dashboard.runtime.domain.models import Message, Session, TaskItem, WorkspaceRef
from agent_dashboard.runtime.service import DashboardService
from agent_dashboard.server.api import create_app


class _Handle:
    def dispose(self) -> None:
        pass


class StaticSource:
    name = "fake"

    def __init__(self, sessions: dict[str, Session]) -> None:
        self.sessions = sessions

    async def detect(self) -> list[WorkspaceRef]:
        return [WorkspaceRef(source=self.name, workspace=name) for name in self.sessions]

    async def scan(self, ref: WorkspaceRef) -> Session:
        return self.sessions[ref.workspace]

    def watch(self, ref: WorkspaceRef, on_change: Callable[[Session], None]) -> _Handle:
        return _Handle()


def _tasks(prefix: str, *statuses: str) -> list[TaskItem]:
    return [TaskItem(id=str(i + 1), subject=f"{prefix} step {i + 1}", status=s) for i, s in enumerate(statuses)]


def _client() -> tuple[TestClient, DashboardService]:
    service = DashboardService()
    service.add_source(
        StaticSource(
            {
                "alpha": Session(id="s-done", name="Release notes", tasks=_tasks("Notes", "completed", "completed")),
                "beta": Session(
                    id="s-busy",
                    name="Payments",
                    tasks=_tasks("Payments", "completed", "in_progress"),
                    messages=[
                        Message(id="m1", author="dev", content="blocked on API keys", timestamp=1, needs_response=True)
                    ],
                ),
            }
        )
    )
    config = parse_config({"broadcast": {"debounce_seconds": 0}}, environ={})
    return TestClient(create_app(config, service=service)), service


def test_health_and_state() -> None:
    client, service = _client()
    with client:
        health = client.get("/api/health").json()
        assert health["status"] == "ok"
        assert health["started"] is True
        assert health["workspaces"] == 2
        assert health["attention_items"] == 1

        state = client.get("/api/state").json()
        assert {w["id"] for w in state["workspaces"]} == {"fake:alpha", "fake:beta"}
        assert client.get("/healthz").json()["status"] == "ok"
        assert client.get("/").json()["sources"] == ["fake"]


def test_attention_and_board_are_sorted() -> None:
    client, _ = _client()
    with client:
        attention = client.get("/api/attention").json()["attention_items"]
        assert [a["urgency"] for a in attention] == ["blocking"]

        cards = client.get("/api/board").json()["board_cards"]
        assert [c["id"] for c in cards] == ["s-busy-epoch-0", "s-done-epoch-0"]
        assert cards[0]["attention"]["urgency"] == "blocking"
        assert cards[1]["stage"] == "done"


def test_dismiss_card_status_codes() -> None:
    client, _ = _client()
    with client:
        busy = client.delete("/api/board/s-busy-epoch-0")
        assert busy.status_code == 400
        assert "not in done stage" in busy.json()["detail"]

        assert client.delete("/api/board/nope-epoch-0").status_code == 404

        done = client.delete("/api/board/s-done-epoch-0")
        assert done.status_code == 200
        assert done.json()["ok"] is True
        assert [c["id"] for c in client.get("/api/board").json()["board_cards"]] == ["s-busy-epoch-0"]

        assert client.delete("/api/board/s-done-epoch-0").status_code == 404


def test_work_items_filter_by_workspace() -> None:
    client, _ = _client()
    with client:
        everything = client.get("/api/work-items").json()["work_items"]
        assert {i["session_id"] for i in everything} == {"s-done", "s-busy"}

        beta = client.get("/api/work-items", params={"workspace": "fake:beta"}).json()["work_items"]
        assert beta and all(i["session_id"] == "s-busy" for i in beta)


def test_websocket_sends_state_on_connect_and_answers_ping() -> None:
    client, _ = _client()
    with client:
        with client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            assert first["type"] == "state"
            assert len(first["data"]["board_cards"]) == 2

            ws.send_text(json.dumps({"action": "ping"}))
            assert ws.receive_json()["type"] == "pong"


def test_app_built_from_config_reads_claude_home(tmp_path: Path) -> None:
    team = tmp_path / "teams" / "alpha"
    team.mkdir(parents=True)
    (team / "config.json").write_text(json.dumps({"name": "Billing", "members": []}), encoding="utf-8")
    tasks = tmp_path / "tasks" / "alpha"
    tasks.mkdir(parents=True)
    (tasks / "1.json").write_text(json.dumps({"id": "1", "subject": "Add invoices", "status": "pending"}), encoding="utf-8")

    config = parse_config(
        {"sources": {"claude_code": {"home": str(tmp_path)}}, "summarizer": {"enabled": False}},
        environ={},
    )
    with TestClient(create_app(config)) as client:
        cards = client.get("/api/board").json()["board_cards"]

    assert [(c["id"], c["title"], c["stage"]) for c in cards] == [("claude-team-alpha-epoch-0", "Billing", "backlog")]


def test_dismiss_maps_error_types_not_messages() -> None:
    client, service = _client()

    def invalid(card_id: str) -> None:
        raise ValueError(f"Card not found in done stage: {card_id}")

    with client:
        service.dismiss_card = invalid  # type: ignore[method-assign]
        response = client.delete("/api/board/s-busy-epoch-0")

    assert response.status_code == 400
