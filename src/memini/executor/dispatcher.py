"""Drives each session's turn loop against the reasoning capability."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Iterable

from ..capabilities import McpToolService, ToolServiceError, select_tools
from ..coordination import Aggregator
from ..sessions import (
    Session,
    SessionConfig,
    SessionEvent,
    SessionEventKind,
    SessionOrigin,
    SessionRegistry,
    SessionState,
)
from ..storage import MemoryStore, MemoryTrace, MemoryUnavailableError
from .reasoning import (
    Clarification,
    FinalAnswer,
    Reasoner,
    ReasoningError,
    ReasoningRequest,
    ToolCall,
    ToolUseRequest,
)

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = {
    SessionEventKind.COMPLETED,
    SessionEventKind.FAILED,
    SessionEventKind.CANCELLED,
}


def child_prompt(parent: Session, call: ToolCall) -> str:
    arguments = json.dumps(call.arguments, sort_keys=True)
    return (
        f"Use the tool {call.name} with arguments {arguments} and report what it returns.\n\n"
        f"This is a sub-task of: {parent.prompt}"
    )


class Executor:
    """Runs sessions turn by turn.

    Each call to :meth:`advance` re-enters a session's loop from its current
    transcript and stops at the next suspension point: a final answer, a
    question for the operator, or a hand-off to child sessions. Tool work is
    never done by a delegating session; it spawns children and stays
    ``running`` until every child is terminal, then resumes with their merged
    results.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        aggregator: Aggregator,
        reasoner: Reasoner,
        *,
        memory: MemoryStore | None = None,
        tools: McpToolService | None = None,
        recall_limit: int = 6,
        max_tool_loops: int = 6,
        reasoning_attempts: int = 2,
    ) -> None:
        self._registry = registry
        self._aggregator = aggregator
        self._reasoner = reasoner
        self._memory = memory
        self._tools = tools
        self._recall_limit = recall_limit
        self._max_tool_loops = max_tool_loops
        self._reasoning_attempts = max(1, reasoning_attempts)
        self._tasks: dict[int, asyncio.Task] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._delegations: dict[int, str] = {}
        self._delegation_counts: dict[int, int] = defaultdict(int)
        registry.subscribe(self._on_session_event)

    @property
    def tools_available(self) -> bool:
        return self._tools is not None and self._tools.available

    def default_config(self, tool_selectors: Iterable[str] = ()) -> SessionConfig:
        return SessionConfig(
            tool_access=self.tools_available,
            delegate_tools=True,
            tool_selectors=tuple(tool_selectors),
        )

    # -- scheduling --------------------------------------------------------

    def launch(self, session_id: int, *, delegation_key: str | None = None) -> asyncio.Task:
        """Schedule the session's loop on the running event loop."""

        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self.advance(session_id, delegation_key=delegation_key),
            name=f"memini-session-{session_id}",
        )
        self._tasks[session_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(session_id) is done:
                del self._tasks[session_id]

        task.add_done_callback(_forget)
        return task

    async def drain(self) -> None:
        """Wait until no session loop is in flight, including ones started meanwhile."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        self._tasks.clear()

    # -- turn loop ---------------------------------------------------------

    async def advance(self, session_id: int, *, delegation_key: str | None = None) -> None:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            try:
                if delegation_key is not None:
                    self._record_child_results(session_id, delegation_key)
                await self._turn_loop(session_id)
            except asyncio.CancelledError:
                logger.debug("Session loop cancelled", extra={"session_id": session_id})
                raise
            except Exception as exc:
                logger.exception("Session loop crashed", extra={"session_id": session_id})
                self._fail(session_id, f"internal error: {exc}")
            finally:
                session = self._registry.find(session_id)
                if session is None or session.is_terminal:
                    self._locks.pop(session_id, None)

    async def _turn_loop(self, session_id: int) -> None:
        tool_loops = 0
        while True:
            session = self._running(session_id)
            if session is None:
                return
            if session.child_ids and not self._registry.all_terminal(session.child_ids):
                return

            request = await self._build_request(session)
            try:
                response = await self._ask(request)
            except ReasoningError as exc:
                self._fail(session_id, f"reasoning failed: {exc}")
                return

            session = self._running(session_id)
            if session is None:
                logger.info(
                    "Discarding reasoning response for inactive session",
                    extra={"session_id": session_id},
                )
                return

            if isinstance(response, FinalAnswer):
                self._registry.complete(session_id, response.text)
                await self._commit(session, response.text)
                return

            if isinstance(response, Clarification):
                self._registry.request_input(session_id, response.question)
                return

            if not isinstance(response, ToolUseRequest):
                self._fail(session_id, f"unexpected reasoning response {type(response).__name__}")
                return

            if not request.tools_available:
                self._fail(session_id, "tool capability unavailable for this session")
                return

            blocked = [call.name for call in response.calls if call.name not in request.tool_names]
            if session.config.tool_selectors and blocked:
                self._fail(session_id, f"tools not offered to this session: {', '.join(blocked)}")
                return

            if session.config.delegate_tools:
                self._delegate(session, response)
                return

            if tool_loops >= self._max_tool_loops:
                self._fail(session_id, "tool loop limit reached")
                return
            tool_loops += 1
            try:
                await self._invoke_tools(session_id, response.calls)
            except ToolServiceError as exc:
                self._fail(session_id, f"tool failed: {exc}")
                return

    def _running(self, session_id: int) -> Session | None:
        session = self._registry.find(session_id)
        if session is None or session.state is not SessionState.RUNNING:
            return None
        return session

    async def _ask(self, request: ReasoningRequest):
        attempt = 1
        while True:
            try:
                return await self._reasoner.respond(request)
            except ReasoningError as exc:
                logger.warning(
                    "Reasoning attempt failed",
                    extra={"session_id": request.session_id, "attempt": attempt, "error": str(exc)},
                )
                if attempt >= self._reasoning_attempts:
                    raise
            attempt += 1

    async def _build_request(self, session: Session) -> ReasoningRequest:
        tools_available = session.config.tool_access and self.tools_available
        tool_names: list[str] = []
        if tools_available:
            tool_names = await self._tools.capabilities()  # type: ignore[union-attr]
            if session.config.tool_selectors:
                tool_names = select_tools(tool_names, session.config.tool_selectors)
                tools_available = bool(tool_names)
        query = next(
            (turn.content for turn in reversed(session.transcript) if turn.role == "user"),
            session.prompt,
        )
        return ReasoningRequest(
            session_id=session.id,
            prompt=session.prompt,
            transcript=list(session.transcript),
            tools_available=tools_available,
            tool_names=tool_names,
            memories=await self._recall(session.id, query),
            persona=session.persona,
        )

    async def _invoke_tools(self, session_id: int, calls: tuple[ToolCall, ...]) -> None:
        if self._tools is None:
            raise ToolServiceError("no tool service configured")
        for call in calls:
            self._registry.record_turn(session_id, "assistant", f"Calling tool: {call.name}")
            output = await self._tools.call(call.name, call.arguments)
            if self._running(session_id) is None:
                return
            self._registry.record_turn(session_id, "tool", f"{call.name} returned:\n{output}")

    # -- delegation --------------------------------------------------------

    def _delegate(self, parent: Session, request: ToolUseRequest) -> None:
        self._delegation_counts[parent.id] += 1
        key = self._aggregator.create_group(
            f"delegate-{parent.id}-{self._delegation_counts[parent.id]}"
        )
        config = SessionConfig(
            tool_access=True,
            delegate_tools=False,
            tool_selectors=parent.config.tool_selectors,
        )
        children = [
            self._registry.spawn(
                child_prompt(parent, call),
                key,
                origin=SessionOrigin.child(parent.id),
                config=config,
                label=f"{parent.label} > {call.name}",
            )
            for call in request.calls
        ]
        self._registry.attach_children(parent.id, [child.id for child in children])
        self._registry.record_turn(
            parent.id,
            "assistant",
            "Delegated tool work to " + ", ".join(f"#{child.id}" for child in children),
        )
        self._delegations[parent.id] = key
        logger.info(
            "Delegated tool work",
            extra={
                "session_id": parent.id,
                "coordination_key": key,
                "children": [child.id for child in children],
            },
        )
        for child in children:
            self.launch(child.id)

    def _record_child_results(self, session_id: int, key: str) -> None:
        if self._running(session_id) is None:
            return
        result = self._aggregator.collect_results(key)
        self._registry.record_turn(
            session_id,
            "tool",
            "Results from delegated sessions:\n\n" + (result.synthesis or "(no results)"),
        )

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind is SessionEventKind.REMOVED:
            self._delegations.pop(event.session.id, None)
            self._delegation_counts.pop(event.session.id, None)
            return
        if event.kind not in _TERMINAL_EVENTS:
            return
        session = event.session

        if event.kind is SessionEventKind.CANCELLED:
            task = self._tasks.get(session.id)
            if task is not None and task is not _current_task():
                task.cancel()
            self._delegations.pop(session.id, None)
            for child_id in session.child_ids:
                child = self._registry.find(child_id)
                if child is not None and not child.is_terminal:
                    self._registry.cancel(child_id)

        parent_id = session.origin.parent_id
        if parent_id is None or parent_id not in self._delegations:
            return
        parent = self._registry.find(parent_id)
        if parent is None or parent.state is not SessionState.RUNNING:
            self._delegations.pop(parent_id, None)
            return
        if not self._registry.all_terminal(parent.child_ids):
            return
        key = self._delegations.pop(parent_id)
        logger.info(
            "Children finished; resuming parent",
            extra={"session_id": parent_id, "coordination_key": key},
        )
        self.launch(parent_id, delegation_key=key)

    # -- memory ------------------------------------------------------------

    async def _recall(self, session_id: int, query: str) -> list[MemoryTrace]:
        if self._memory is None:
            return []
        try:
            return await asyncio.to_thread(self._memory.recall, query, self._recall_limit)
        except MemoryUnavailableError as exc:
            logger.warning("Memory recall unavailable", extra={"session_id": session_id, "error": str(exc)})
            return []

    async def _commit(self, session: Session, outcome: str) -> None:
        if self._memory is None:
            return
        try:
            await asyncio.to_thread(self._memory.commit, session.prompt, f"session:{session.id}", outcome)
        except MemoryUnavailableError as exc:
            logger.warning("Memory commit unavailable", extra={"session_id": session.id, "error": str(exc)})

    async def focus(self, session_id: int, text: str) -> None:
        if self._memory is None:
            return
        try:
            await asyncio.to_thread(self._memory.focus, text)
        except MemoryUnavailableError as exc:
            logger.warning("Memory focus unavailable", extra={"session_id": session_id, "error": str(exc)})

    def _fail(self, session_id: int, detail: str) -> None:
        session = self._registry.find(session_id)
        if session is None or session.is_terminal:
            return
        self._registry.fail(session_id, detail)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


__all__ = ["Executor", "child_prompt"]
