"""Codex CLI orchestration utilities."""

from .runner import (
    CodexExecutionResult,
    CodexNotFoundError,
    CodexRunner,
    CodexRunnerError,
    FakeCodexRunner,
    child_environment,
)

__all__ = [
    "CodexRunner",
    "CodexExecutionResult",
    "CodexRunnerError",
    "CodexNotFoundError",
    "FakeCodexRunner",
    "child_environment",
]
