"""Session data model and state machine rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.SPAWNED: frozenset({SessionState.RUNNING, SessionState.CANCELLED}),
    SessionState.RUNNING: frozenset(
        {
            SessionState.WAITING_FOR_INPUT,
            SessionState.COMPLETED,
            SessionState.FAILED,
            SessionState.CANCELLED,
        }
    ),
    SessionState.WAITING_FOR_INPUT: frozenset(
        {SessionState.RUNNING, SessionState.FAILED, SessionState.CANCELLED}
    ),
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
    SessionState.CANCELLED: frozenset(),
}


class OriginKind(str, Enum):
    INTERACTIVE = "interactive"
    RECIPE = "recipe"
    CHILD = "child"


@dataclass(frozen=True, slots=True)
class SessionOrigin:
    """Where a session came from: an operator spawn, a recipe firing, or a delegating parent."""

    kind: OriginKind = OriginKind.INTERACTIVE
    recipe_name: str | None = None
    parent_id: int | None = None

    @classmethod
    def interactive(cls) -> "SessionOrigin":
        return cls(OriginKind.INTERACTIVE)

    @classmethod
    def recipe(cls, name: str) -> "SessionOrigin":
        return cls(OriginKind.RECIPE, recipe_name=name)

    @classmethod
    def child(cls, parent_id: int) -> "SessionOrigin":
        return cls(OriginKind.CHILD, parent_id=parent_id)

    def describe(self) -> str:
        if self.kind is OriginKind.RECIPE:
            return f"recipe:{self.recipe_name}"
        if self.kind is OriginKind.CHILD:
            return f"child-of:{self.parent_id}"
        return self.kind.value


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Per-session capability switches.

    ``tool_access`` exposes tool capabilities to the reasoning step.
    ``delegate_tools`` makes tool requests spawn child sessions instead of
    being invoked by the session itself. ``tool_selectors`` narrows which
    tools are offered (see :func:`memini.capabilities.select_tools`).
    """

    tool_access: bool = False
    delegate_tools: bool = True
    tool_selectors: tuple[str, ...] = ()


@dataclass(slots=True)
class Turn:
    role: str
    content: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class Session:
    """One unit of agent work with its own state machine and transcript."""

    id: int
    prompt: str
    label: str
    origin: SessionOrigin = field(default_factory=SessionOrigin.interactive)
    config: SessionConfig = field(default_factory=SessionConfig)
    state: SessionState = SessionState.SPAWNED
    slot: int | None = None
    transcript: list[Turn] = field(default_factory=list)
    pending_question: str | None = None
    coordination_key: str | None = None
    persona: str | None = None
    child_ids: list[int] = field(default_factory=list)
    result: str | None = None
    failure: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slot": self.slot,
            "label": self.label,
            "prompt": self.prompt,
            "origin": self.origin.describe(),
            "state": self.state.value,
            "pending_question": self.pending_question,
            "coordination_key": self.coordination_key,
            "child_ids": list(self.child_ids),
            "result": self.result,
            "failure": self.failure,
            "turns": len(self.transcript),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class SessionEventKind(str, Enum):
    SPAWNED = "spawned"
    STARTED = "started"
    ATTENTION_REQUESTED = "attention_requested"
    RESUMED = "resumed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: SessionEventKind
    session: Session
    previous_state: SessionState | None = None


__all__ = [
    "ALLOWED_TRANSITIONS",
    "OriginKind",
    "Session",
    "SessionConfig",
    "SessionEvent",
    "SessionEventKind",
    "SessionOrigin",
    "SessionState",
    "TERMINAL_STATES",
    "Turn",
]
