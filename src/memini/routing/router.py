"""Waiting-input queue and reply addressing."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from ..errors import AddressingError
from ..sessions import Session, SessionEvent, SessionEventKind, SessionRegistry, SessionState

logger = logging.getLogger(__name__)

NEXT_TARGET = "next"


@dataclass(frozen=True, slots=True)
class WaitingEntry:
    session_id: int
    label: str
    question: str


def parse_inline_reply(line: str) -> tuple[int, str] | None:
    """Parse ``#<id> <text>`` shorthand; returns ``None`` when the line is not one."""

    trimmed = line.lstrip()
    if not trimmed.startswith("#"):
        return None
    rest = trimmed[1:]
    digits = len(rest) - len(rest.lstrip("0123456789"))
    if digits == 0:
        return None
    if not rest[digits:digits + 1].isspace():
        return None
    reply = rest[digits:].strip()
    if not reply:
        return None
    return int(rest[:digits]), reply


class WaitingInputRouter:
    """FIFO of sessions blocked on the operator, with out-of-order targeting.

    Queue membership follows registry transitions: a session is appended when it
    requests attention and dropped the moment it leaves ``waiting_for_input``
    for any reason. Both happen under the registry lock, so the queue never
    holds an id whose session is not waiting.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._queue: deque[int] = deque()
        registry.subscribe(self._on_session_event)

    @property
    def queue(self) -> list[int]:
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def waiting(self) -> list[WaitingEntry]:
        entries: list[WaitingEntry] = []
        for session_id in list(self._queue):
            session = self._registry.find(session_id)
            if session is None:
                continue
            entries.append(
                WaitingEntry(
                    session_id=session.id,
                    label=session.label,
                    question=session.pending_question or "(question missing)",
                )
            )
        return entries

    def reply(self, target: int | str, text: str) -> Session:
        """Resolve ``target`` to exactly one queued session and resume it with ``text``."""

        message = text.strip()
        if not message:
            raise ValueError("Reply message cannot be empty")

        with self._registry.lock:
            session_id = self._resolve(target)
            session = self._registry.resume(session_id, message)

        logger.info(
            "Routed reply",
            extra={"session_id": session.id, "target": str(target), "remaining": len(self._queue)},
        )
        return session

    def route(self, line: str) -> Session | None:
        """Route free-form operator input.

        Inline ``#<id>`` shorthand addresses that session. Plain text goes to
        the oldest waiter when anyone is waiting. Returns ``None`` when the
        queue is empty, leaving the line to the top-level chat flow.
        """

        inline = parse_inline_reply(line)
        if inline is not None:
            session_id, message = inline
            return self.reply(session_id, message)
        if not line.strip():
            return None
        with self._registry.lock:
            if not self._queue:
                return None
            return self.reply(NEXT_TARGET, line)

    def _resolve(self, target: int | str) -> int:
        if isinstance(target, str) and target.strip().lower() == NEXT_TARGET:
            if not self._queue:
                raise AddressingError("No sessions are waiting for input")
            return self._queue[0]

        if isinstance(target, int):
            session_id = target
        else:
            text = str(target).strip().lstrip("#")
            if not text.isdigit():
                raise AddressingError(f"Invalid target '{target}'. Use 'reply list'.")
            session_id = int(text)

        if session_id not in self._queue:
            raise AddressingError(f"Session #{session_id} is not waiting for input")
        return session_id

    def _on_session_event(self, event: SessionEvent) -> None:
        session = event.session
        if event.kind is SessionEventKind.ATTENTION_REQUESTED:
            if session.id not in self._queue:
                self._queue.append(session.id)
            logger.info(
                "Session needs input",
                extra={
                    "session_id": session.id,
                    "question": session.pending_question,
                    "waiting": len(self._queue),
                },
            )
            return

        if event.previous_state is SessionState.WAITING_FOR_INPUT or event.kind is SessionEventKind.REMOVED:
            if session.id in self._queue:
                self._queue.remove(session.id)


__all__ = ["NEXT_TARGET", "WaitingEntry", "WaitingInputRouter", "parse_inline_reply"]
