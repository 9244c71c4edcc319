"""Operator command surface (``spawn``, ``reply``, ``#<id>``, ``auto ...``)."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field

from .errors import MeminiError
from .recipes import Recipe, ReloadReport, RunOutcome, TaskRun
from .routing import parse_inline_reply
from .runtime import Orchestrator
from .sessions import Session

logger = logging.getLogger(__name__)

SPAWN_USAGE = "usage: spawn <prompt> | spawn list"
REPLY_USAGE = "usage: reply list | reply <id|next> <text>"
AUTO_USAGE = (
    "usage: auto [list] | auto run|start|stop|remove <name> | "
    "auto create|add <name> <seconds> <instructions> [--tools=a,b] | auto templates | "
    "auto scaffold <template> [name] | auto reload | auto results [name]"
)


@dataclass(slots=True)
class CommandOutcome:
    """Result of one input line.

    ``handled`` is false only for plain text nobody was waiting for; the caller
    owns what happens to it next.
    """

    handled: bool
    lines: list[str] = field(default_factory=list)


def _session_line(session: Session) -> str:
    slot = f"slot {session.slot}" if session.slot is not None else "overflow"
    line = f"#{session.id} [{slot}] {session.state.value:<17} {session.label}"
    if session.pending_question:
        line += f" - asks: {session.pending_question}"
    elif session.failure:
        line += f" - {session.failure}"
    return line


def _recipe_line(recipe: Recipe) -> str:
    summary = recipe.summary()
    state = "enabled" if recipe.definition.enabled else "stopped"
    if recipe.busy:
        state += ", running"
    last = summary["last_outcome"] or "never run"
    line = (
        f"{recipe.name}: every {summary['interval_secs']:g}s ({state}; {summary['persistence']}) "
        f"runs={summary['runs']} skipped={summary['skipped']} last={last}"
    )
    if summary["tools"]:
        line += f" tools={','.join(summary['tools'])}"
    return line


def _run_line(run: TaskRun) -> str:
    outcome = run.outcome.value if run.outcome else "running"
    line = f"{run.started_at.isoformat()} {run.trigger:<6} {outcome}"
    if run.session_id is not None:
        line += f" #{run.session_id}"
    detail = run.result if run.outcome is RunOutcome.SUCCEEDED else run.reason
    if detail:
        line += f": {detail.splitlines()[0][:120]}"
    return line


def _reload_lines(report: ReloadReport) -> list[str]:
    if not report.changed and not report.conflicts:
        return ["Recipes unchanged."]
    lines = []
    for label, names in (
        ("added", report.added),
        ("removed", report.removed),
        ("updated", report.updated),
    ):
        if names:
            lines.append(f"{label}: {', '.join(names)}")
    if report.conflicts:
        lines.append(f"ignored (ephemeral recipe with the same name): {', '.join(report.conflicts)}")
    return lines


class CommandInterpreter:
    """Parses operator lines and drives the orchestrator.

    Errors come back as ``error: ...`` lines rather than exceptions.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator

    async def handle(self, line: str) -> CommandOutcome:
        text = line.strip()
        if not text:
            return CommandOutcome(handled=False)

        try:
            if parse_inline_reply(text) is not None:
                return await self._route(text)

            command, _, rest = text.lstrip("/").partition(" ")
            rest = rest.strip()
            if command == "spawn":
                return self._spawn(rest)
            if command == "reply":
                return await self._reply(rest)
            if command == "auto":
                return await self._auto(rest)
            return await self._route(text)
        except (MeminiError, ValueError) as exc:
            logger.debug("Command rejected", extra={"line": text, "error": str(exc)})
            return CommandOutcome(handled=True, lines=[f"error: {exc}"])

    async def _route(self, text: str) -> CommandOutcome:
        session = await self._orchestrator.route_text(text)
        if session is None:
            return CommandOutcome(handled=False)
        return CommandOutcome(handled=True, lines=[f"Replied to #{session.id}"])

    # -- spawn / reply -----------------------------------------------------

    def _spawn(self, rest: str) -> CommandOutcome:
        if not rest:
            return CommandOutcome(handled=True, lines=[f"error: {SPAWN_USAGE}"])
        if rest == "list":
            sessions = self._orchestrator.registry.snapshot()
            if not sessions:
                return CommandOutcome(handled=True, lines=["No sessions."])
            return CommandOutcome(handled=True, lines=[_session_line(session) for session in sessions])

        session = self._orchestrator.spawn(rest)
        where = f"slot {session.slot}" if session.slot is not None else "overflow"
        return CommandOutcome(handled=True, lines=[f"Spawned #{session.id} ({where})"])

    async def _reply(self, rest: str) -> CommandOutcome:
        if rest == "list":
            entries = self._orchestrator.router.waiting()
            if not entries:
                return CommandOutcome(handled=True, lines=["No sessions are waiting for input."])
            return CommandOutcome(
                handled=True,
                lines=[f"#{entry.session_id} {entry.label}: {entry.question}" for entry in entries],
            )

        target, _, message = rest.partition(" ")
        if not target or not message.strip():
            return CommandOutcome(handled=True, lines=[f"error: {REPLY_USAGE}"])
        session = await self._orchestrator.reply(target, message)
        return CommandOutcome(handled=True, lines=[f"Replied to #{session.id}"])

    # -- auto --------------------------------------------------------------

    async def _auto(self, rest: str) -> CommandOutcome:
        scheduler = self._orchestrator.scheduler
        subcommand, _, argument = rest.partition(" ")
        argument = argument.strip()

        if subcommand in {"", "list"}:
            recipes = scheduler.list()
            if not recipes:
                return CommandOutcome(handled=True, lines=["No recipes defined."])
            return CommandOutcome(handled=True, lines=[_recipe_line(recipe) for recipe in recipes])

        if subcommand == "templates":
            return CommandOutcome(
                handled=True,
                lines=[
                    f"{template.name}: every {template.interval_secs}s - {template.description}"
                    for template in scheduler.templates()
                ],
            )

        if subcommand == "reload":
            return CommandOutcome(handled=True, lines=_reload_lines(await scheduler.reload()))

        if subcommand == "results":
            if argument:
                runs = scheduler.history(argument)
                if not runs:
                    return CommandOutcome(handled=True, lines=[f"{argument}: no runs yet."])
                return CommandOutcome(handled=True, lines=[_run_line(run) for run in runs])
            recipes = scheduler.list()
            if not recipes:
                return CommandOutcome(handled=True, lines=["No recipes defined."])
            return CommandOutcome(handled=True, lines=[_recipe_line(recipe) for recipe in recipes])

        if subcommand in {"create", "add"}:
            return await self._auto_create(argument)

        if subcommand == "scaffold":
            parts = argument.split()
            if not 1 <= len(parts) <= 2:
                return CommandOutcome(handled=True, lines=[f"error: {AUTO_USAGE}"])
            recipe = await scheduler.scaffold(*parts)
            return CommandOutcome(handled=True, lines=[f"Created recipe {recipe.name} from template {parts[0]}"])

        if subcommand in {"run", "start", "stop", "remove"}:
            if not argument or len(argument.split()) != 1:
                return CommandOutcome(handled=True, lines=[f"error: {AUTO_USAGE}"])
            if subcommand == "run":
                run = await scheduler.run(argument)
                if run.outcome is RunOutcome.SKIPPED:
                    return CommandOutcome(handled=True, lines=[f"Skipped {argument}: {run.reason}"])
                if run.outcome is RunOutcome.FAILED and run.session_id is None:
                    return CommandOutcome(handled=True, lines=[f"error: {run.reason}"])
                return CommandOutcome(handled=True, lines=[f"Fired {argument} as #{run.session_id}"])
            if subcommand == "start":
                await scheduler.start(argument)
                return CommandOutcome(handled=True, lines=[f"Started {argument}"])
            if subcommand == "stop":
                await scheduler.stop(argument)
                return CommandOutcome(handled=True, lines=[f"Stopped {argument}"])
            await scheduler.remove(argument)
            return CommandOutcome(handled=True, lines=[f"Removed {argument}"])

        return CommandOutcome(handled=True, lines=[f"error: {AUTO_USAGE}"])

    async def _auto_create(self, argument: str) -> CommandOutcome:
        try:
            parts = shlex.split(argument)
        except ValueError:
            parts = argument.split()
        tools: list[str] = []
        for part in [part for part in parts if part.startswith("--tools=")]:
            parts.remove(part)
            tools.extend(selector for selector in part.split("=", 1)[1].split(",") if selector)
        if len(parts) < 3:
            return CommandOutcome(handled=True, lines=[f"error: {AUTO_USAGE}"])
        name, seconds, *words = parts
        try:
            interval = float(seconds)
        except ValueError:
            return CommandOutcome(handled=True, lines=[f"error: interval must be a number of seconds, got '{seconds}'"])
        recipe = await self._orchestrator.scheduler.create(name, interval, " ".join(words), tools=tools)
        where = "ephemeral" if recipe.ephemeral else str(recipe.path)
        return CommandOutcome(handled=True, lines=[f"Created recipe {recipe.name} ({where})"])


__all__ = ["CommandInterpreter", "CommandOutcome"]
