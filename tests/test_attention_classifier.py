from __future__ import annotations

import pytest

from agent_dashboard.runtime.domain.models import DashboardState, Message, Session, Workspace
from agent_dashboard.runtime.engine.attention import AttentionClassifier, classify_urgency


def _state(*messages: Message, session_id: str = "claude-team-alpha") -> DashboardState:
    session = Session(id=session_id, name="alpha", type="team", messages=list(messages))
    return DashboardState(
        workspaces=[Workspace(id="claude-code:alpha", name="alpha", tool="claude-code", sessions=[session])]
    )


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Can you review this?", "waiting"),
        ("blocked on input", "blocking"),
        ("I cannot proceed without credentials", "blocking"),
        ("Please approve the migration", "waiting"),
        ("Here is a status update", "informational"),
        ("The reviewer liked it", "informational"),
    ],
)
def test_classify_urgency(text: str, expected: str) -> None:
    assert classify_urgency(text) == expected


def test_messages_needing_response_become_attention_items() -> None:
    classifier = AttentionClassifier()
    state = _state(
        Message(id="m1", author="agent-1", content="Can you review this?", timestamp=10, needs_response=True),
        Message(id="m2", author="agent-2", content="blocked on input", timestamp=20, needs_response=True),
        Message(id="m3", author="agent-3", content="all good", timestamp=30),
    )

    items = classifier.evaluate(state)

    assert [item.urgency for item in items] == ["waiting", "blocking"]
    first = items[0]
    assert first.short_context == "agent-1: message needs your response"
    assert first.full_context == "Can you review this?"
    assert first.created_at == 10
    assert first.source.tool == "claude-code"
    assert first.source.workspace == "alpha"
    assert first.source.session == "claude-team-alpha"
    assert first.source.agent == "agent-1"


def test_summary_is_used_as_short_context() -> None:
    classifier = AttentionClassifier()
    items = classifier.evaluate(
        _state(Message(id="m1", author="lead", content="long text", summary="Approve plan?", needs_response=True))
    )
    assert items[0].short_context == "Approve plan?"


def test_repeated_evaluation_keeps_item_identity() -> None:
    classifier = AttentionClassifier()
    state = _state(Message(id="m1", author="a", content="please confirm", timestamp=5, needs_response=True))

    first = classifier.evaluate(state)
    second = classifier.evaluate(state)

    assert [(i.id, i.created_at) for i in first] == [(i.id, i.created_at) for i in second]


def test_items_for_resolved_messages_are_collected() -> None:
    classifier = AttentionClassifier()
    classifier.evaluate(_state(Message(id="m1", author="a", content="review?", needs_response=True)))
    assert classifier.known_count() == 1

    items = classifier.evaluate(_state(Message(id="m1", author="a", content="review?", needs_response=False)))

    assert items == []
    assert classifier.known_count() == 0


def test_fresh_classifiers_do_not_share_state() -> None:
    state = _state(Message(id="m1", author="a", content="review?", needs_response=True))
    first = AttentionClassifier().evaluate(state)
    second = AttentionClassifier().evaluate(state)
    assert first[0].id != second[0].id
