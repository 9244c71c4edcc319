from __future__ import annotations

import pytest

from memini.errors import AddressingError, TransitionError
from memini.sessions import (
    SessionEventKind,
    SessionOrigin,
    SessionRegistry,
    SessionState,
)


def test_spawn_assigns_ids_and_starts_running() -> None:
    registry = SessionRegistry()
    events: list[tuple[SessionEventKind, int]] = []
    registry.subscribe(lambda event: events.append((event.kind, event.session.id)))

    first = registry.spawn("summarize the logs")
    second = registry.spawn("draft a reply")

    assert (first.id, second.id) == (1, 2)
    assert first.state is SessionState.RUNNING
    assert first.slot == 1 and second.slot == 2
    assert first.label == "Agent #1"
    assert first.transcript[0].content == "summarize the logs"
    assert events == [
        (SessionEventKind.SPAWNED, 1),
        (SessionEventKind.STARTED, 1),
        (SessionEventKind.SPAWNED, 2),
        (SessionEventKind.STARTED, 2),
    ]


def test_spawn_rejects_blank_prompt() -> None:
    registry = SessionRegistry()

    with pytest.raises(ValueError):
        registry.spawn("   ")


def test_overflow_beyond_visible_slots_and_promotion_on_remove() -> None:
    registry = SessionRegistry(visible_slots=2)
    first = registry.spawn("one")
    registry.spawn("two")
    third = registry.spawn("three")
    fourth = registry.spawn("four")

    assert third.slot is None and fourth.slot is None
    assert [session.id for session in registry.overflow()] == [3, 4]
    assert len(registry) == 4

    registry.remove(first.id)

    assert third.slot == 1
    assert [session.id for session in registry.visible()] == [3, 2]
    assert [session.id for session in registry.overflow()] == [4]
    with pytest.raises(AddressingError):
        registry.get(first.id)


def test_waiting_round_trip_records_transcript() -> None:
    registry = SessionRegistry()
    session = registry.spawn("plan the trip")

    registry.request_input(session.id, "Which city?")
    assert session.state is SessionState.WAITING_FOR_INPUT
    assert session.pending_question == "Which city?"

    registry.resume(session.id, "Lisbon")
    assert session.state is SessionState.RUNNING
    assert session.pending_question is None
    assert [turn.role for turn in session.transcript] == ["user", "assistant", "user"]
    assert session.transcript[-1].content == "Lisbon"


def test_blank_question_gets_default_text() -> None:
    registry = SessionRegistry()
    session = registry.spawn("plan")

    registry.request_input(session.id, "  ")

    assert session.pending_question == "How would you like me to proceed?"


def test_resume_requires_waiting_state() -> None:
    registry = SessionRegistry()
    session = registry.spawn("plan")

    with pytest.raises(AddressingError):
        registry.resume(session.id, "hello")


def test_terminal_states_reject_further_transitions() -> None:
    registry = SessionRegistry()
    session = registry.spawn("plan")
    registry.complete(session.id, "all done")

    assert session.is_terminal
    assert session.result == "all done"
    with pytest.raises(TransitionError):
        registry.request_input(session.id, "more?")
    with pytest.raises(TransitionError):
        registry.fail(session.id, "late failure")


def test_cancel_is_idempotent_and_keeps_terminal_outcome() -> None:
    registry = SessionRegistry()
    running = registry.spawn("one")
    done = registry.spawn("two")
    registry.complete(done.id, "ok")

    registry.cancel(running.id)
    registry.cancel(running.id)
    registry.cancel(done.id)

    assert running.state is SessionState.CANCELLED
    assert running.failure == "cancelled"
    assert done.state is SessionState.COMPLETED


def test_get_accepts_hash_prefixed_ids() -> None:
    registry = SessionRegistry()
    session = registry.spawn("one")

    assert registry.get("#1") is session
    assert registry.get("1") is session
    with pytest.raises(AddressingError):
        registry.get("abc")
    with pytest.raises(AddressingError):
        registry.get(42)


def test_origin_and_children_tracking() -> None:
    registry = SessionRegistry()
    parent = registry.spawn("parent")
    child = registry.spawn("child", origin=SessionOrigin.child(parent.id))
    scheduled = registry.spawn("recipe", origin=SessionOrigin.recipe("briefing"))
    registry.attach_children(parent.id, [child.id])

    assert child.origin.describe() == f"child-of:{parent.id}"
    assert scheduled.origin.describe() == "recipe:briefing"
    assert registry.children_of(parent.id) == [child]
    assert not registry.all_terminal(parent.child_ids)

    registry.fail(child.id, "boom")

    assert registry.all_terminal(parent.child_ids)
    assert child.failure == "boom"


def test_visible_slots_bounds() -> None:
    with pytest.raises(ValueError):
        SessionRegistry(visible_slots=0)
    with pytest.raises(ValueError):
        SessionRegistry(visible_slots=10)


def test_failing_listener_does_not_abort_transition() -> None:
    registry = SessionRegistry()
    seen: list[SessionEventKind] = []

    def broken(event) -> None:
        raise ValueError("journal write failed")

    registry.subscribe(broken)
    registry.subscribe(lambda event: seen.append(event.kind))

    session = registry.spawn("keep going")
    registry.complete(session.id, "done")

    assert session.state is SessionState.COMPLETED
    assert seen == [SessionEventKind.SPAWNED, SessionEventKind.STARTED, SessionEventKind.COMPLETED]
