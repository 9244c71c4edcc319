from __future__ import annotations

import pytest

from memini.errors import AddressingError
from memini.routing import WaitingInputRouter, parse_inline_reply
from memini.sessions import SessionRegistry, SessionState


def _waiting(registry: SessionRegistry, prompt: str, question: str):
    session = registry.spawn(prompt)
    registry.request_input(session.id, question)
    return session


def test_parse_inline_reply() -> None:
    assert parse_inline_reply("#3 use the staging db") == (3, "use the staging db")
    assert parse_inline_reply("  #12   yes ") == (12, "yes")
    assert parse_inline_reply("#3") is None
    assert parse_inline_reply("#abc hi") is None
    assert parse_inline_reply("#12abc") is None
    assert parse_inline_reply("plain text") is None


def test_queue_follows_enqueue_order() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    first = _waiting(registry, "a", "question a")
    second = _waiting(registry, "b", "question b")

    assert router.queue == [first.id, second.id]
    entries = router.waiting()
    assert [(entry.session_id, entry.question) for entry in entries] == [
        (first.id, "question a"),
        (second.id, "question b"),
    ]


def test_next_resolves_to_oldest_waiter() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    first = _waiting(registry, "a", "qa")
    second = _waiting(registry, "b", "qb")

    resumed = router.reply("next", "answer")

    assert resumed is first
    assert first.state is SessionState.RUNNING
    assert router.queue == [second.id]


def test_targeted_reply_skips_queue_order() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    first = _waiting(registry, "a", "qa")
    second = _waiting(registry, "b", "qb")

    router.reply(str(second.id), "answer b")

    assert second.state is SessionState.RUNNING
    assert router.queue == [first.id]


def test_reply_errors() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    running = registry.spawn("busy")

    with pytest.raises(AddressingError, match="No sessions are waiting"):
        router.reply("next", "hello")
    with pytest.raises(AddressingError, match="not waiting"):
        router.reply(running.id, "hello")
    with pytest.raises(AddressingError):
        router.reply("bogus", "hello")

    waiting = _waiting(registry, "q", "question")
    with pytest.raises(ValueError):
        router.reply(waiting.id, "   ")
    assert waiting.state is SessionState.WAITING_FOR_INPUT


def test_plain_text_routes_to_head_only_when_someone_waits() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)

    assert router.route("what's the weather?") is None

    first = _waiting(registry, "a", "qa")
    _waiting(registry, "b", "qb")

    assert router.route("go ahead") is first
    assert first.transcript[-1].content == "go ahead"


def test_inline_reply_targets_session() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    _waiting(registry, "a", "qa")
    second = _waiting(registry, "b", "qb")

    assert router.route(f"#{second.id} do it") is second
    assert second.transcript[-1].content == "do it"


def test_cancel_and_remove_drop_queue_entries() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    first = _waiting(registry, "a", "qa")
    second = _waiting(registry, "b", "qb")
    third = _waiting(registry, "c", "qc")

    registry.cancel(first.id)
    registry.remove(second.id)
    registry.fail(third.id, "timed out")

    assert router.queue == []
    assert len(router) == 0


def test_double_reply_resolves_once() -> None:
    registry = SessionRegistry()
    router = WaitingInputRouter(registry)
    only = _waiting(registry, "a", "qa")

    router.reply("next", "first")

    with pytest.raises(AddressingError):
        router.reply(only.id, "second")
    assert [turn.content for turn in only.transcript if turn.role == "user"] == ["a", "first"]
