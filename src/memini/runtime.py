"""Wires the registry, router, aggregator, executor and scheduler together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .capabilities import McpToolService
from .codex import CodexNotFoundError, CodexRunner
from .config import MeminiSettings
from .coordination import Aggregator, GroupResult
from .errors import RecipeValidationError
from .executor import CodexReasoner, Executor, Reasoner
from .recipes import RecipeDefinition, RecipeLoader, RecipeScheduler, TaskRun
from .routing import WaitingInputRouter
from .sessions import Session, SessionEvent, SessionOrigin, SessionRegistry, SessionState
from .storage import MemoryStore, MemoryUnavailableError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeMetadata:
    """What :func:`build_orchestrator` managed to bring up."""

    codex: dict[str, Any] = field(default_factory=dict)
    memory: dict[str, Any] = field(default_factory=dict)
    tools: dict[str, Any] = field(default_factory=dict)


class Orchestrator:
    """Single entry point for everything that creates or addresses sessions.

    Interactive spawns, replies and recipe firings all go through the same
    registry and executor, so every session gets the same lifecycle
    regardless of who started it. Anything that launches a session needs a
    running event loop.
    """

    def __init__(
        self,
        reasoner: Reasoner,
        *,
        memory: MemoryStore | None = None,
        tools: McpToolService | None = None,
        recipe_dir: Path | None = None,
        visible_slots: int = 9,
        recall_limit: int = 6,
        max_tool_loops: int = 6,
        reasoning_attempts: int = 2,
        run_history_limit: int = 20,
        metadata: RuntimeMetadata | None = None,
    ) -> None:
        self.memory = memory
        self.tools = tools
        self.metadata = metadata or RuntimeMetadata()
        self.registry = SessionRegistry(visible_slots=visible_slots)
        self.router = WaitingInputRouter(self.registry)
        self.aggregator = Aggregator(self.registry)
        self.executor = Executor(
            self.registry,
            self.aggregator,
            reasoner,
            memory=memory,
            tools=tools,
            recall_limit=recall_limit,
            max_tool_loops=max_tool_loops,
            reasoning_attempts=reasoning_attempts,
        )
        self.scheduler = RecipeScheduler(
            self.registry,
            self._launch_recipe,
            loader=RecipeLoader(recipe_dir) if recipe_dir is not None else None,
            history_limit=run_history_limit,
            on_run=self._journal_run,
        )
        self.registry.subscribe(self._journal_transition)

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Load recipe files; a malformed directory leaves recipes empty but keeps running."""

        try:
            report = await self.scheduler.reload()
        except RecipeValidationError as exc:
            logger.error("Failed to load recipes", extra={"error": str(exc)})
            return
        logger.info("Orchestrator started", extra={"recipes": report.added})

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.executor.shutdown()
        logger.info("Orchestrator stopped", extra={"sessions": len(self.registry)})

    # -- sessions ----------------------------------------------------------

    def spawn(
        self,
        prompt: str,
        coordination_key: str | None = None,
        *,
        label: str | None = None,
    ) -> Session:
        session = self.registry.spawn(
            prompt,
            coordination_key,
            config=self.executor.default_config(),
            label=label,
        )
        self.executor.launch(session.id)
        return session

    def spawn_group(self, prompts: Iterable[str], key: str | None = None) -> str:
        """Spawn one session per prompt into a fresh coordination group.

        With no prompts the group is created empty and reports complete at once.
        """

        texts = [prompt.strip() for prompt in prompts]
        if not all(texts):
            raise ValueError("Coordination group prompts must not be empty")
        group_key = self.aggregator.create_group(key)
        for text in texts:
            self.spawn(text, group_key)
        return group_key

    async def reply(self, target: int | str, text: str) -> Session:
        session = self.router.reply(target, text)
        self.executor.launch(session.id)
        await self.executor.focus(session.id, text)
        return session

    async def route_text(self, line: str) -> Session | None:
        """Route free text to a waiting session; ``None`` when nothing claims it."""

        session = self.router.route(line)
        if session is None:
            return None
        self.executor.launch(session.id)
        await self.executor.focus(session.id, session.transcript[-1].content)
        return session

    def cancel(self, session_id: int | str) -> Session:
        return self.registry.cancel(session_id)

    def remove(self, session_id: int | str) -> Session:
        return self.registry.remove(session_id)

    def collect_results(self, key: str) -> GroupResult:
        return self.aggregator.collect_results(key)

    def status(self) -> dict[str, Any]:
        sessions = self.registry.snapshot()
        counts: dict[str, int] = {state.value: 0 for state in SessionState}
        for session in sessions:
            counts[session.state.value] += 1
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sessions": {
                "count": len(sessions),
                "by_state": counts,
                "visible": [session.id for session in self.registry.visible()],
                "overflow": [session.id for session in self.registry.overflow()],
            },
            "waiting": self.router.queue,
            "groups": self.aggregator.keys(),
            "recipes": self.scheduler.summary(),
            "codex": self.metadata.codex,
            "memory": self.metadata.memory,
            "tools": self.metadata.tools,
        }

    # -- internals ---------------------------------------------------------

    def _launch_recipe(self, definition: RecipeDefinition, origin: SessionOrigin) -> Session:
        session = self.registry.spawn(
            definition.instructions,
            origin=origin,
            config=self.executor.default_config(definition.tools),
            label=f"auto:{definition.name}",
            persona=definition.persona,
        )
        self.executor.launch(session.id)
        return session

    def _journal(self, stream: str, event_type: str, body: dict[str, Any], metadata: dict[str, Any]) -> None:
        if self.memory is None:
            return
        try:
            self.memory.record_event(
                stream=stream,
                event_type=event_type,
                body=body,
                metadata=metadata,
            )
        except MemoryUnavailableError as exc:
            logger.warning("Memory journal unavailable", extra={"stream": stream, "error": str(exc)})

    def _journal_transition(self, event: SessionEvent) -> None:
        session = event.session
        self._journal(
            f"session::{session.id}",
            "session_transition",
            {
                "event": event.kind.value,
                "from": event.previous_state.value if event.previous_state else None,
                "to": session.state.value,
                "session": session.summary(),
            },
            {
                "session_id": session.id,
                "state": session.state.value,
                "origin": session.origin.describe(),
            },
        )

    def _journal_run(self, run: TaskRun) -> None:
        self._journal(
            f"recipe::{run.recipe_name}",
            "task_run",
            run.as_dict(),
            {
                "recipe": run.recipe_name,
                "trigger": run.trigger,
                "outcome": run.outcome.value if run.outcome else "running",
                "session_id": run.session_id,
            },
        )


def build_orchestrator(
    settings: MeminiSettings,
    *,
    reasoner: Reasoner | None = None,
    memory: MemoryStore | None = None,
    tools: McpToolService | None = None,
) -> Orchestrator:
    """Construct an orchestrator from settings, degrading when optional pieces are missing."""

    metadata = RuntimeMetadata()

    if reasoner is None:
        metadata.codex = {
            "path": settings.codex_path,
            "default_model": settings.codex_default_model,
            "available": False,
            "error": None,
        }
        runner: CodexRunner | None = None
        try:
            runner = CodexRunner(Path(settings.codex_path) if settings.codex_path else None)
            metadata.codex["available"] = True
        except CodexNotFoundError as exc:
            metadata.codex["error"] = str(exc)
            logger.warning("Codex CLI unavailable; sessions will fail", extra={"error": str(exc)})
        reasoner = CodexReasoner(runner, model=settings.codex_default_model)
    else:
        metadata.codex = {"available": True, "reasoner": type(reasoner).__name__}

    if memory is None:
        metadata.memory = {
            "available": False,
            "path": str(settings.chroma_persist_path),
            "error": None,
        }
        try:
            candidate = MemoryStore(settings.chroma_persist_path)
            candidate.ping()
            memory = candidate
            metadata.memory["available"] = True
        except MemoryUnavailableError as exc:
            metadata.memory["error"] = str(exc)
            logger.warning("Memory store unavailable", extra={"error": str(exc)})
    else:
        metadata.memory = {"available": True}

    if tools is None and settings.mcp_servers:
        tools = McpToolService(settings.mcp_servers)
    metadata.tools = {
        "available": tools is not None and tools.available,
        "servers": tools.server_ids if tools is not None else [],
    }

    return Orchestrator(
        reasoner,
        memory=memory,
        tools=tools,
        recipe_dir=settings.recipe_dir,
        visible_slots=settings.visible_slots,
        recall_limit=settings.recall_limit,
        max_tool_loops=settings.max_tool_loops,
        reasoning_attempts=settings.reasoning_attempts,
        run_history_limit=settings.run_history_limit,
        metadata=metadata,
    )


__all__ = ["Orchestrator", "RuntimeMetadata", "build_orchestrator"]
