"""Coordination groups: sessions spawned together whose results merge into one answer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from ..errors import AddressingError
from ..sessions import Session, SessionEvent, SessionEventKind, SessionRegistry, SessionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MemberOutcome:
    ok: bool
    text: str

    def as_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "result": self.text}
        return {"ok": False, "failure": self.text}


@dataclass(slots=True)
class CoordinationGroup:
    key: str
    members: list[int] = field(default_factory=list)
    labels: dict[int, str] = field(default_factory=dict)
    outcomes: dict[int, MemberOutcome] = field(default_factory=dict)
    synthesis: str | None = None

    @property
    def complete(self) -> bool:
        return all(member in self.outcomes for member in self.members)


@dataclass(frozen=True, slots=True)
class GroupResult:
    key: str
    complete: bool
    total: int
    finished: int
    outcomes: dict[int, MemberOutcome]
    synthesis: str | None

    @property
    def status(self) -> str:
        return "complete" if self.complete else "pending"

    def as_dict(self) -> dict[str, Any]:
        return {
            "coordination_key": self.key,
            "status": self.status,
            "total": self.total,
            "finished": self.finished,
            "results": {str(member): outcome.as_dict() for member, outcome in self.outcomes.items()},
            "synthesis": self.synthesis,
        }


def synthesize(group: CoordinationGroup) -> str:
    """Merge member outcomes in spawn order; failures appear as explicit notes."""

    sections: list[str] = []
    for member in group.members:
        outcome = group.outcomes[member]
        header = f"### #{member} {group.labels.get(member, '')}".rstrip()
        body = outcome.text if outcome.ok else f"FAILED: {outcome.text}"
        sections.append(f"{header}\n{body}")
    return "\n\n".join(sections)


class Aggregator:
    """Tracks coordination groups and posts terminal session outcomes into them."""

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._groups: dict[str, CoordinationGroup] = {}
        self._membership: dict[int, str] = {}
        registry.subscribe(self._on_session_event)

    def create_group(self, key: str | None = None) -> str:
        with self._registry.lock:
            group_key = key or uuid4().hex[:8]
            self._groups.setdefault(group_key, CoordinationGroup(key=group_key))
            return group_key

    def group_of(self, session_id: int) -> str | None:
        return self._membership.get(session_id)

    def keys(self) -> list[str]:
        return list(self._groups)

    def add_member(self, key: str, session: Session) -> None:
        with self._registry.lock:
            existing = self._membership.get(session.id)
            if existing is not None and existing != key:
                raise AddressingError(
                    f"Session #{session.id} already belongs to coordination group '{existing}'"
                )
            group = self._groups.setdefault(key, CoordinationGroup(key=key))
            if session.id not in group.members:
                group.members.append(session.id)
                group.labels[session.id] = session.label
            self._membership[session.id] = key
            if session.is_terminal:
                self._post(group, session)

    def collect_results(self, key: str) -> GroupResult:
        """Report the group's progress; never waits on members."""

        with self._registry.lock:
            try:
                group = self._groups[key]
            except KeyError as exc:
                raise AddressingError(f"Unknown coordination key '{key}'") from exc

            if group.complete and group.synthesis is None:
                group.synthesis = synthesize(group)

            return GroupResult(
                key=group.key,
                complete=group.complete,
                total=len(group.members),
                finished=len(group.outcomes),
                outcomes={member: group.outcomes[member] for member in group.members if member in group.outcomes},
                synthesis=group.synthesis,
            )

    def _post(self, group: CoordinationGroup, session: Session) -> None:
        if session.state is SessionState.COMPLETED:
            outcome = MemberOutcome(ok=True, text=session.result or "")
        else:
            outcome = MemberOutcome(ok=False, text=session.failure or session.state.value)
        group.outcomes[session.id] = outcome
        if group.complete:
            group.synthesis = synthesize(group)
            logger.info(
                "Coordination group complete",
                extra={"coordination_key": group.key, "members": len(group.members)},
            )

    def _prune(self, session_id: int) -> None:
        # Groups are kept while any member is still registered.
        key = self._membership.pop(session_id, None)
        if key is None:
            return
        group = self._groups.get(key)
        if group is None:
            return
        if all(self._registry.find(member) is None for member in group.members):
            del self._groups[key]
            for member in group.members:
                self._membership.pop(member, None)
            logger.debug("Coordination group pruned", extra={"coordination_key": key})

    def _on_session_event(self, event: SessionEvent) -> None:
        session = event.session
        if event.kind is SessionEventKind.SPAWNED and session.coordination_key:
            self.add_member(session.coordination_key, session)
            return
        if event.kind is SessionEventKind.REMOVED:
            self._prune(session.id)
            return
        if event.kind in {
            SessionEventKind.COMPLETED,
            SessionEventKind.FAILED,
            SessionEventKind.CANCELLED,
        }:
            key = self._membership.get(session.id)
            if key is not None:
                self._post(self._groups[key], session)


__all__ = ["Aggregator", "CoordinationGroup", "GroupResult", "MemberOutcome", "synthesize"]
