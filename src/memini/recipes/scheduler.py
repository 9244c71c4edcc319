"""Recurring recipe timers with file-backed reconciliation."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from ..errors import AddressingError, RecipeValidationError
from ..sessions import (
    Session,
    SessionEvent,
    SessionEventKind,
    SessionOrigin,
    SessionRegistry,
    SessionState,
)
from .loader import RecipeLoader
from .models import Recipe, RecipeDefinition, RunOutcome, TaskRun
from .templates import BUILTIN_TEMPLATES, RecipeTemplate

logger = logging.getLogger(__name__)

RecipeLauncher = Callable[[RecipeDefinition, SessionOrigin], Session]
RunListener = Callable[[TaskRun], None]


@dataclass(slots=True)
class ReloadReport:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.updated)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "updated": list(self.updated),
            "conflicts": list(self.conflicts),
        }


class RecipeScheduler:
    """Owns recipes, their timers, and their run history.

    A firing goes through ``launch`` (the same spawn path interactive sessions
    use) and stays active until its session reaches a terminal state. Firing
    again while that session is still live records a skipped run instead.
    Definition changes (create, remove, reload, start, stop, scaffold) are
    serialized on one lock.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        launch: RecipeLauncher,
        *,
        loader: RecipeLoader | None = None,
        history_limit: int = 20,
        templates: Mapping[str, RecipeTemplate] | None = None,
        on_run: RunListener | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self._launch = launch
        self._loader = loader
        self._history_limit = history_limit
        self._templates = dict(templates if templates is not None else BUILTIN_TEMPLATES)
        self._on_run = on_run
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._recipes: dict[str, Recipe] = {}
        self._runs_by_session: dict[int, tuple[Recipe, TaskRun]] = {}
        self._lock = asyncio.Lock()
        registry.subscribe(self._on_session_event)

    # -- queries -----------------------------------------------------------

    @property
    def file_backed(self) -> bool:
        return self._loader is not None

    def list(self) -> list[Recipe]:
        return [self._recipes[name] for name in sorted(self._recipes)]

    def get(self, name: str) -> Recipe:
        try:
            return self._recipes[name]
        except KeyError as exc:
            raise AddressingError(f"Unknown recipe '{name}'") from exc

    def templates(self) -> list[RecipeTemplate]:
        return [self._templates[name] for name in sorted(self._templates)]

    def history(self, name: str) -> list[TaskRun]:
        return list(self.get(name).history)

    def summary(self) -> dict[str, dict[str, Any]]:
        return {recipe.name: recipe.summary() for recipe in self.list()}

    def results(self, name: str | None = None) -> list[TaskRun] | dict[str, dict[str, Any]]:
        """History ring for one recipe, or a summary across all of them."""

        if name is not None:
            return self.history(name)
        return self.summary()

    # -- operations --------------------------------------------------------

    async def run(self, name: str) -> TaskRun:
        """Fire once now, independent of the timer."""

        return self._fire(self.get(name), trigger="manual")

    async def start(self, name: str) -> Recipe:
        async with self._lock:
            recipe = self.get(name)
            if not recipe.definition.enabled:
                await self._persist(recipe, recipe.definition.model_copy(update={"enabled": True}))
            self._ensure_timer(recipe)
            logger.info(
                "Recipe started",
                extra={"recipe": name, "interval_secs": recipe.definition.interval_secs},
            )
            return recipe

    async def stop(self, name: str) -> Recipe:
        async with self._lock:
            recipe = self.get(name)
            if recipe.definition.enabled:
                await self._persist(recipe, recipe.definition.model_copy(update={"enabled": False}))
            self._cancel_timer(recipe)
            logger.info("Recipe stopped", extra={"recipe": name})
            return recipe

    async def create(
        self,
        name: str,
        interval_secs: float,
        instructions: str,
        *,
        persona: str | None = None,
        tools: Iterable[str] = (),
        ephemeral: bool = False,
    ) -> Recipe:
        """Define a new recipe and start its timer.

        File-backed unless ``ephemeral`` is set or no recipe directory is
        configured; ephemeral recipes are lost on restart.
        """

        try:
            definition = RecipeDefinition(
                name=name,
                interval_secs=interval_secs,
                instructions=instructions,
                persona=persona,
                tools=list(tools),
            )
        except ValidationError as exc:
            raise RecipeValidationError(f"Invalid recipe '{name}': {exc}") from exc

        async with self._lock:
            if definition.name in self._recipes:
                raise RecipeValidationError(f"A recipe named '{definition.name}' already exists")

            path = None
            if self._loader is not None and not ephemeral:
                existing = self._loader.existing_path(definition.name)
                if existing is not None:
                    raise RecipeValidationError(
                        f"Recipe file {existing} already exists; run 'auto reload' to pick it up"
                    )
                path = await asyncio.to_thread(self._loader.write, definition)

            recipe = self._add(definition, path)
            logger.info(
                "Recipe created",
                extra={
                    "recipe": recipe.name,
                    "interval_secs": definition.interval_secs,
                    "persistence": "ephemeral" if path is None else str(path),
                },
            )
            return recipe

    async def remove(self, name: str) -> Recipe:
        async with self._lock:
            recipe = self.get(name)
            self._drop(recipe)
            if recipe.path is not None and self._loader is not None:
                await asyncio.to_thread(self._loader.delete, recipe.path)
            logger.info("Recipe removed", extra={"recipe": name})
            return recipe

    async def scaffold(self, template_name: str, name: str | None = None) -> Recipe:
        try:
            template = self._templates[template_name]
        except KeyError as exc:
            raise AddressingError(f"Unknown recipe template '{template_name}'") from exc
        return await self.create(
            name or template.name,
            template.interval_secs,
            template.instructions,
            persona=template.persona,
            tools=template.tools,
        )

    async def reload(self) -> ReloadReport:
        """Rescan the recipe directory and reconcile it with the live recipes.

        New files become recipes, vanished files stop and drop theirs, and
        edited files update the live definition in place so history survives.
        A malformed file aborts the reload before anything changes.
        """

        report = ReloadReport()
        if self._loader is None:
            return report

        async with self._lock:
            scanned = await asyncio.to_thread(self._loader.scan)

            for name, (definition, path) in scanned.items():
                recipe = self._recipes.get(name)
                if recipe is None:
                    self._add(definition, path)
                    report.added.append(name)
                elif recipe.ephemeral:
                    report.conflicts.append(name)
                    logger.warning(
                        "Recipe file shadows an ephemeral recipe; file ignored",
                        extra={"recipe": name, "path": str(path)},
                    )
                else:
                    recipe.path = path
                    if recipe.definition.to_document() != definition.to_document():
                        self._apply(recipe, definition)
                        report.updated.append(name)

            for recipe in list(self._recipes.values()):
                if not recipe.ephemeral and recipe.name not in scanned:
                    self._drop(recipe)
                    report.removed.append(recipe.name)

        if report.changed or report.conflicts:
            logger.info("Recipes reloaded", extra=report.as_dict())
        return report

    async def shutdown(self) -> None:
        timers = [recipe.timer for recipe in self._recipes.values() if recipe.timer is not None]
        for recipe in self._recipes.values():
            self._cancel_timer(recipe)
        await asyncio.gather(*timers, return_exceptions=True)

    # -- internals ---------------------------------------------------------

    def _add(self, definition: RecipeDefinition, path) -> Recipe:
        recipe = Recipe(
            definition=definition,
            path=path,
            history=deque(maxlen=self._history_limit),
        )
        self._recipes[definition.name] = recipe
        self._ensure_timer(recipe)
        return recipe

    def _drop(self, recipe: Recipe) -> None:
        self._cancel_timer(recipe)
        self._recipes.pop(recipe.name, None)

    def _apply(self, recipe: Recipe, definition: RecipeDefinition) -> None:
        previous = recipe.definition
        recipe.definition = definition
        if not definition.enabled:
            self._cancel_timer(recipe)
        elif recipe.timer is None:
            self._ensure_timer(recipe)
        elif previous.interval_secs != definition.interval_secs:
            recipe.wake.set()
        logger.info(
            "Recipe updated",
            extra={
                "recipe": recipe.name,
                "interval_secs": definition.interval_secs,
                "enabled": definition.enabled,
            },
        )

    async def _persist(self, recipe: Recipe, definition: RecipeDefinition) -> None:
        if recipe.path is not None and self._loader is not None:
            await asyncio.to_thread(self._loader.write, definition, recipe.path)
        recipe.definition = definition

    def _ensure_timer(self, recipe: Recipe) -> None:
        if not recipe.definition.enabled:
            return
        if recipe.timer is not None and not recipe.timer.done():
            return
        recipe.wake = asyncio.Event()
        recipe.timer = asyncio.get_running_loop().create_task(
            self._timer_loop(recipe), name=f"memini-recipe-{recipe.name}"
        )

    @staticmethod
    def _cancel_timer(recipe: Recipe) -> None:
        if recipe.timer is not None:
            recipe.timer.cancel()
            recipe.timer = None

    async def _timer_loop(self, recipe: Recipe) -> None:
        while True:
            recipe.wake.clear()
            try:
                await asyncio.wait_for(recipe.wake.wait(), timeout=recipe.definition.interval_secs)
            except asyncio.TimeoutError:
                self._fire(recipe, trigger="timer")
            # A wake means the interval changed; the next wait uses the new period.

    def _fire(self, recipe: Recipe, *, trigger: str) -> TaskRun:
        now = self._clock()
        run = TaskRun(recipe_name=recipe.name, trigger=trigger, started_at=now)

        if recipe.busy:
            run.finished_at = now
            run.outcome = RunOutcome.SKIPPED
            run.reason = f"previous run (session #{recipe.active_run.session_id}) still active"
            recipe.skipped += 1
            recipe.history.append(run)
            logger.info(
                "Skipped overlapping recipe run",
                extra={"recipe": recipe.name, "trigger": trigger, "skipped": recipe.skipped},
            )
            self._notify(run)
            return run

        recipe.last_run_at = now
        recipe.active_run = run
        recipe.history.append(run)
        try:
            session = self._launch(recipe.definition, SessionOrigin.recipe(recipe.name))
        except Exception as exc:
            logger.exception("Recipe launch failed", extra={"recipe": recipe.name})
            recipe.active_run = None
            self._finish(run, RunOutcome.FAILED, reason=f"launch failed: {exc}")
            return run

        run.session_id = session.id
        if session.is_terminal:
            self._complete_from_session(recipe, run, session)
        else:
            self._runs_by_session[session.id] = (recipe, run)
        logger.info(
            "Recipe fired",
            extra={"recipe": recipe.name, "trigger": trigger, "session_id": session.id},
        )
        return run

    def _finish(
        self,
        run: TaskRun,
        outcome: RunOutcome,
        *,
        result: str | None = None,
        reason: str | None = None,
    ) -> None:
        run.finished_at = self._clock()
        run.outcome = outcome
        run.result = result
        run.reason = reason
        self._notify(run)

    def _complete_from_session(self, recipe: Recipe, run: TaskRun, session: Session) -> None:
        if recipe.active_run is run:
            recipe.active_run = None
        if session.state is SessionState.COMPLETED:
            self._finish(run, RunOutcome.SUCCEEDED, result=session.result)
        else:
            self._finish(run, RunOutcome.FAILED, reason=session.failure or session.state.value)

    def _notify(self, run: TaskRun) -> None:
        if self._on_run is not None:
            self._on_run(run)

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind not in {
            SessionEventKind.COMPLETED,
            SessionEventKind.FAILED,
            SessionEventKind.CANCELLED,
        }:
            return
        entry = self._runs_by_session.pop(event.session.id, None)
        if entry is None:
            return
        recipe, run = entry
        self._complete_from_session(recipe, run, event.session)


__all__ = ["RecipeLauncher", "RecipeScheduler", "ReloadReport"]
