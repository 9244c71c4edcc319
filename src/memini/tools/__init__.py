"""Tool registration for the Memini MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..commands import CommandInterpreter
from ..runtime import Orchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    spawn_session: Any
    spawn_group: Any
    list_sessions: Any
    list_waiting: Any
    reply: Any
    cancel_session: Any
    collect_results: Any
    run_command: Any


def register_tools(server: FastMCP, *, orchestrator: Orchestrator) -> ToolHandles:
    """Register Memini's MCP tools on the server."""

    interpreter = CommandInterpreter(orchestrator)

    async def _spawn_session(
        prompt: str,
        coordination_key: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Spawn a session for the prompt, optionally inside a coordination group."""

        session = orchestrator.spawn(prompt, coordination_key)
        _emit_log(
            context,
            "info",
            "Spawned session",
            extra={"session_id": session.id, "coordination_key": coordination_key},
        )
        return session.summary()

    async def _spawn_group(
        prompts: list[str],
        coordination_key: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Spawn one session per prompt under a shared coordination key."""

        key = orchestrator.spawn_group(prompts, coordination_key)
        result = orchestrator.collect_results(key)
        _emit_log(
            context,
            "info",
            "Spawned coordination group",
            extra={"coordination_key": key, "members": result.total},
        )
        return result.as_dict()

    def _list_sessions(context: Context | None = None) -> list[dict[str, Any]]:
        sessions = [session.summary() for session in orchestrator.registry.snapshot()]
        _emit_log(context, "debug", "Listing sessions", extra={"count": len(sessions)})
        return sessions

    def _list_waiting(context: Context | None = None) -> list[dict[str, Any]]:
        entries = [
            {"session_id": entry.session_id, "label": entry.label, "question": entry.question}
            for entry in orchestrator.router.waiting()
        ]
        _emit_log(context, "debug", "Listing waiting sessions", extra={"count": len(entries)})
        return entries

    async def _reply(target: str, text: str, context: Context | None = None) -> dict[str, Any]:
        """Answer a waiting session by id, ``#id``, or ``next`` for the oldest waiter."""

        session = await orchestrator.reply(target, text)
        _emit_log(context, "info", "Replied to session", extra={"session_id": session.id})
        return session.summary()

    def _cancel_session(session_id: int, context: Context | None = None) -> dict[str, Any]:
        session = orchestrator.cancel(session_id)
        _emit_log(context, "info", "Cancelled session", extra={"session_id": session.id})
        return session.summary()

    def _collect_results(coordination_key: str, context: Context | None = None) -> dict[str, Any]:
        result = orchestrator.collect_results(coordination_key)
        _emit_log(
            context,
            "debug",
            "Collected group results",
            extra={"coordination_key": coordination_key, "status": result.status},
        )
        return result.as_dict()

    async def _run_command(line: str, context: Context | None = None) -> dict[str, Any]:
        """Run an operator command line exactly as typed at the prompt."""

        outcome = await interpreter.handle(line)
        _emit_log(context, "debug", "Ran command", extra={"handled": outcome.handled})
        return {"handled": outcome.handled, "lines": outcome.lines}

    tool_spawn = server.tool(
        name="spawn_session",
        description=(
            "Start a new agent session for a prompt. Sessions run in the background; "
            "poll list_sessions or list_waiting to follow them."
        ),
    )(_spawn_session)

    tool_group = server.tool(
        name="spawn_group",
        description="Start several sessions that report into one coordination group.",
    )(_spawn_group)

    tool_list = server.tool(
        name="list_sessions",
        description="List every session with its slot, state, and result or pending question.",
    )(_list_sessions)

    tool_waiting = server.tool(
        name="list_waiting",
        description="List sessions waiting for operator input, oldest first.",
    )(_list_waiting)

    tool_reply = server.tool(
        name="reply",
        description="Answer a waiting session. Target is a session id or 'next' for the oldest waiter.",
    )(_reply)

    tool_cancel = server.tool(
        name="cancel_session",
        description="Cancel a session and any child sessions it delegated to.",
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Cancelled work is not resumable",
            }
        },
    )(_cancel_session)

    tool_collect = server.tool(
        name="collect_results",
        description="Report a coordination group's progress and its merged answer once complete.",
    )(_collect_results)

    tool_command = server.tool(
        name="run_command",
        description="Run an operator command: spawn, reply, #<id> <text>, or auto ... for recipes.",
    )(_run_command)

    return ToolHandles(
        spawn_session=tool_spawn,
        spawn_group=tool_group,
        list_sessions=tool_list,
        list_waiting=tool_waiting,
        reply=tool_reply,
        cancel_session=tool_cancel,
        collect_results=tool_collect,
        run_command=tool_command,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
