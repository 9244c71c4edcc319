"""Session execution and delegation."""

from .dispatcher import Executor, child_prompt
from .reasoning import (
    Clarification,
    CodexReasoner,
    FinalAnswer,
    Reasoner,
    ReasoningError,
    ReasoningRequest,
    ReasoningResponse,
    ScriptedReasoner,
    ToolCall,
    ToolUseRequest,
    parse_response,
    render_prompt,
)

__all__ = [
    "Clarification",
    "CodexReasoner",
    "Executor",
    "FinalAnswer",
    "Reasoner",
    "ReasoningError",
    "ReasoningRequest",
    "ReasoningResponse",
    "ScriptedReasoner",
    "ToolCall",
    "ToolUseRequest",
    "child_prompt",
    "parse_response",
    "render_prompt",
]
