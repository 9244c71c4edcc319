"""Reasoning capability interface and the Codex-backed implementation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence, Union

from ..codex import CodexRunner
from ..sessions import Turn
from ..storage import MemoryTrace, format_memories

logger = logging.getLogger(__name__)

NEEDS_INPUT_MARKER = "[NEEDS_INPUT]"
TOOL_USE_MARKER = "[TOOL_USE]"
DEFAULT_QUESTION = "How would you like me to proceed?"


class ReasoningError(RuntimeError):
    """Raised when the reasoning capability fails or returns something unusable."""


@dataclass(frozen=True, slots=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FinalAnswer:
    text: str


@dataclass(frozen=True, slots=True)
class Clarification:
    question: str


@dataclass(frozen=True, slots=True)
class ToolUseRequest:
    calls: tuple[ToolCall, ...]


ReasoningResponse = Union[FinalAnswer, Clarification, ToolUseRequest]


@dataclass(slots=True)
class ReasoningRequest:
    session_id: int
    prompt: str
    transcript: list[Turn]
    tools_available: bool = False
    tool_names: list[str] = field(default_factory=list)
    memories: list[MemoryTrace] = field(default_factory=list)
    persona: str | None = None


class Reasoner(Protocol):
    async def respond(self, request: ReasoningRequest) -> ReasoningResponse:
        ...


def _parse_tool_calls(payload: str) -> tuple[ToolCall, ...]:
    try:
        document = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ReasoningError(f"Malformed tool-use payload: {exc}") from exc

    if isinstance(document, dict):
        document = document.get("calls", [document] if "name" in document else [])
    if not isinstance(document, list):
        raise ReasoningError("Tool-use payload must be an object or a list of calls")

    calls: list[ToolCall] = []
    for entry in document:
        if not isinstance(entry, dict) or not str(entry.get("name", "")).strip():
            raise ReasoningError("Every tool call needs a name")
        arguments = entry.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ReasoningError(f"Arguments for tool '{entry['name']}' must be an object")
        calls.append(ToolCall(name=str(entry["name"]).strip(), arguments=arguments))
    if not calls:
        raise ReasoningError("Tool-use request did not name any tools")
    return tuple(calls)


def parse_response(text: str) -> ReasoningResponse:
    """Classify raw model output as a final answer, a clarification, or a tool-use request."""

    if TOOL_USE_MARKER in text:
        _, _, payload = text.partition(TOOL_USE_MARKER)
        return ToolUseRequest(calls=_parse_tool_calls(payload.strip()))

    if NEEDS_INPUT_MARKER in text:
        question = text.split(NEEDS_INPUT_MARKER, 1)[1].strip()
        return Clarification(question=question or DEFAULT_QUESTION)

    stripped = text.strip()
    return FinalAnswer(text=stripped or "(no output)")


def render_prompt(request: ReasoningRequest) -> str:
    sections = [
        request.persona
        or "You are a background agent working one task for a single operator. Be concise and actionable.",
        (
            f"If you need the operator to answer a question, reply with {NEEDS_INPUT_MARKER} "
            "followed by the question."
        ),
    ]
    if request.tools_available and request.tool_names:
        sections.append(
            f"To use tools, reply with {TOOL_USE_MARKER} followed by JSON "
            '{"calls": [{"name": "<server>__<tool>", "arguments": {...}}]}.\n'
            "Available tools:\n" + "\n".join(f"- {name}" for name in request.tool_names)
        )
    memory_block = format_memories(request.memories)
    if memory_block:
        sections.append(memory_block)
    transcript = "\n".join(f"{turn.role.capitalize()}: {turn.content}" for turn in request.transcript)
    sections.append("Conversation so far:\n" + transcript)
    return "\n\n".join(sections)


class CodexReasoner:
    """Runs one reasoning step per Codex CLI invocation."""

    def __init__(
        self,
        runner: CodexRunner | None,
        *,
        model: str | None = None,
        flags: Sequence[str] | None = None,
    ) -> None:
        self._runner = runner
        self._flags: list[str] = []
        if model and not (flags and "--model" in flags):
            self._flags.extend(["--model", model])
        self._flags.extend(flags or [])

    async def respond(self, request: ReasoningRequest) -> ReasoningResponse:
        if self._runner is None:
            raise ReasoningError("Codex runner is unavailable; cannot run a reasoning step")
        result = await self._runner.exec(
            render_prompt(request),
            flags=self._flags,
            env={"MEMINI_SESSION_ID": str(request.session_id)},
        )
        if not result.ok:
            detail = result.stderr.strip() or f"Codex exited with code {result.returncode}"
            raise ReasoningError(detail)
        return parse_response(result.stdout)


ScriptStep = Union[ReasoningResponse, Exception, Callable[[ReasoningRequest], Awaitable[ReasoningResponse]]]


class ScriptedReasoner:
    """Test double answering from per-prompt scripts.

    ``scripts`` maps a session's original prompt to the ordered responses it
    should receive; ``default`` answers prompts without a script.
    """

    def __init__(
        self,
        scripts: dict[str, Iterable[ScriptStep]] | None = None,
        *,
        default: ReasoningResponse | None = None,
    ) -> None:
        self._scripts = {prompt: list(steps) for prompt, steps in (scripts or {}).items()}
        self._default = default or FinalAnswer("done")
        self.requests: list[ReasoningRequest] = []

    def add(self, prompt: str, *steps: ScriptStep) -> None:
        self._scripts.setdefault(prompt, []).extend(steps)

    async def respond(self, request: ReasoningRequest) -> ReasoningResponse:
        self.requests.append(request)
        steps = self._scripts.get(request.prompt)
        if not steps:
            return self._default
        step = steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return await step(request)
        return step


__all__ = [
    "Clarification",
    "CodexReasoner",
    "FinalAnswer",
    "NEEDS_INPUT_MARKER",
    "Reasoner",
    "ReasoningError",
    "ReasoningRequest",
    "ReasoningResponse",
    "ScriptedReasoner",
    "TOOL_USE_MARKER",
    "ToolCall",
    "ToolUseRequest",
    "parse_response",
    "render_prompt",
]
