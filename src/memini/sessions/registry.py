"""Process-wide table of live sessions."""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..errors import AddressingError, TransitionError
from .models import (
    ALLOWED_TRANSITIONS,
    Session,
    SessionConfig,
    SessionEvent,
    SessionEventKind,
    SessionOrigin,
    SessionState,
    Turn,
)

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]

_TRANSITION_EVENTS = {
    SessionState.RUNNING: SessionEventKind.STARTED,
    SessionState.WAITING_FOR_INPUT: SessionEventKind.ATTENTION_REQUESTED,
    SessionState.COMPLETED: SessionEventKind.COMPLETED,
    SessionState.FAILED: SessionEventKind.FAILED,
    SessionState.CANCELLED: SessionEventKind.CANCELLED,
}


class SessionRegistry:
    """Owns every session, assigns ids, and maps a bounded set of them onto visible slots.

    All mutations run under ``lock``. Listeners are notified synchronously while
    the lock is held, so a subscriber observes each transition exactly once and
    in order. Readers use :meth:`snapshot` and friends, which return copies.
    """

    def __init__(self, *, visible_slots: int = 9) -> None:
        if not 1 <= visible_slots <= 9:
            raise ValueError("visible_slots must be between 1 and 9")
        self.lock = threading.RLock()
        self._visible_slots = visible_slots
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)
        self._listeners: list[SessionListener] = []

    # -- listeners ---------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> None:
        with self.lock:
            self._listeners.append(listener)

    def _emit(self, kind: SessionEventKind, session: Session, previous: SessionState | None) -> None:
        event = SessionEvent(kind=kind, session=session, previous_state=previous)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Session listener failed",
                    extra={"session_id": session.id, "event": kind.value},
                )

    # -- queries -----------------------------------------------------------

    def get(self, session_id: int | str) -> Session:
        key = self._coerce_id(session_id)
        try:
            return self._sessions[key]
        except KeyError as exc:
            raise AddressingError(f"Unknown session #{key}") from exc

    def find(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def snapshot(self) -> list[Session]:
        return sorted(list(self._sessions.values()), key=lambda session: session.id)

    def visible(self) -> list[Session]:
        slotted = [session for session in list(self._sessions.values()) if session.slot is not None]
        return sorted(slotted, key=lambda session: session.slot)

    def overflow(self) -> list[Session]:
        return [session for session in self.snapshot() if session.slot is None]

    def children_of(self, session_id: int) -> list[Session]:
        parent = self.get(session_id)
        return [self._sessions[child] for child in parent.child_ids if child in self._sessions]

    def all_terminal(self, session_ids: Iterable[int]) -> bool:
        for session_id in session_ids:
            session = self._sessions.get(session_id)
            if session is not None and not session.is_terminal:
                return False
        return True

    def __len__(self) -> int:
        return len(self._sessions)

    # -- lifecycle ---------------------------------------------------------

    def spawn(
        self,
        prompt: str,
        coordination_key: str | None = None,
        *,
        origin: SessionOrigin | None = None,
        config: SessionConfig | None = None,
        label: str | None = None,
        persona: str | None = None,
    ) -> Session:
        """Create a session and move it straight to ``running``.

        Never rejected for capacity: once the visible slots are taken the
        session lands in the overflow set.
        """

        text = prompt.strip()
        if not text:
            raise ValueError("Session prompt must not be empty")

        with self.lock:
            session_id = next(self._ids)
            session = Session(
                id=session_id,
                prompt=text,
                label=label or f"Agent #{session_id}",
                origin=origin or SessionOrigin.interactive(),
                config=config or SessionConfig(),
                coordination_key=coordination_key,
                persona=persona,
                slot=self._free_slot(),
            )
            session.transcript.append(Turn(role="user", content=text))
            self._sessions[session_id] = session
            logger.info(
                "Spawned session",
                extra={
                    "session_id": session_id,
                    "slot": session.slot,
                    "origin": session.origin.describe(),
                    "coordination_key": coordination_key,
                },
            )
            self._emit(SessionEventKind.SPAWNED, session, None)
            self._transition(session, SessionState.RUNNING)
            return session

    def request_input(self, session_id: int, question: str) -> Session:
        text = question.strip() or "How would you like me to proceed?"
        with self.lock:
            session = self.get(session_id)
            self._check(session, SessionState.WAITING_FOR_INPUT)
            session.pending_question = text
            session.transcript.append(Turn(role="assistant", content=text))
            self._transition(session, SessionState.WAITING_FOR_INPUT)
            return session

    def resume(self, session_id: int, reply: str) -> Session:
        with self.lock:
            session = self.get(session_id)
            if session.state is not SessionState.WAITING_FOR_INPUT:
                raise AddressingError(f"Session #{session.id} is not waiting for input")
            session.pending_question = None
            session.transcript.append(Turn(role="user", content=reply))
            self._transition(session, SessionState.RUNNING, event=SessionEventKind.RESUMED)
            return session

    def complete(self, session_id: int, result: str) -> Session:
        with self.lock:
            session = self.get(session_id)
            self._check(session, SessionState.COMPLETED)
            session.result = result
            session.transcript.append(Turn(role="assistant", content=result))
            self._transition(session, SessionState.COMPLETED)
            return session

    def fail(self, session_id: int, detail: str) -> Session:
        with self.lock:
            session = self.get(session_id)
            self._check(session, SessionState.FAILED)
            session.failure = detail or "unknown failure"
            session.pending_question = None
            self._transition(session, SessionState.FAILED)
            logger.warning(
                "Session failed",
                extra={"session_id": session.id, "detail": session.failure},
            )
            return session

    def cancel(self, session_id: int | str) -> Session:
        with self.lock:
            session = self.get(session_id)
            if session.is_terminal:
                return session
            session.pending_question = None
            session.failure = session.failure or "cancelled"
            self._transition(session, SessionState.CANCELLED)
            return session

    def remove(self, session_id: int | str) -> Session:
        """Cancel (if needed) and drop a session, then promote an overflow session into its slot."""

        with self.lock:
            session = self.cancel(session_id)
            del self._sessions[session.id]
            freed = session.slot
            session.slot = None
            if freed is not None:
                waiting_room = self.overflow()
                if waiting_room:
                    waiting_room[0].slot = freed
            self._emit(SessionEventKind.REMOVED, session, session.state)
            return session

    def record_turn(self, session_id: int, role: str, content: str) -> Session:
        with self.lock:
            session = self.get(session_id)
            session.transcript.append(Turn(role=role, content=content))
            session.updated_at = datetime.now(timezone.utc)
            return session

    def attach_children(self, session_id: int, child_ids: Iterable[int]) -> Session:
        with self.lock:
            session = self.get(session_id)
            session.child_ids.extend(child_ids)
            session.updated_at = datetime.now(timezone.utc)
            return session

    # -- internals ---------------------------------------------------------

    def _free_slot(self) -> int | None:
        taken = {session.slot for session in self._sessions.values() if session.slot is not None}
        for slot in range(1, self._visible_slots + 1):
            if slot not in taken:
                return slot
        return None

    @staticmethod
    def _coerce_id(session_id: int | str) -> int:
        if isinstance(session_id, int):
            return session_id
        text = str(session_id).strip().lstrip("#")
        if not text.isdigit():
            raise AddressingError(f"Invalid session id '{session_id}'")
        return int(text)

    @staticmethod
    def _check(session: Session, target: SessionState) -> None:
        if target not in ALLOWED_TRANSITIONS[session.state]:
            raise TransitionError(
                f"Session #{session.id} cannot move from {session.state.value} to {target.value}"
            )

    def _transition(
        self,
        session: Session,
        target: SessionState,
        *,
        event: SessionEventKind | None = None,
    ) -> None:
        self._check(session, target)
        previous = session.state
        session.state = target
        session.updated_at = datetime.now(timezone.utc)
        logger.debug(
            "Session transition",
            extra={"session_id": session.id, "from": previous.value, "to": target.value},
        )
        self._emit(event or _TRANSITION_EVENTS[target], session, previous)


__all__ = ["SessionListener", "SessionRegistry"]
