"""Async runner for the Codex CLI, the default reasoning capability."""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence

# Interpreter settings of the orchestrator must not leak into the CLI.
_STRIPPED_ENV = ("PYTHONHOME", "PYTHONPATH", "VIRTUAL_ENV", "PIP_RESPECT_VIRTUALENV")


def child_environment(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    env = {key: value for key, value in os.environ.items() if key not in _STRIPPED_ENV}
    if extra:
        env.update(extra)
    return env


class CodexRunnerError(RuntimeError):
    """Base class for Codex runner errors."""


class CodexNotFoundError(CodexRunnerError):
    """Raised when the Codex CLI executable cannot be located."""


@dataclass(slots=True)
class CodexExecutionResult:
    """Holds the outcome of a Codex CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CodexRunner:
    """Execute Codex CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise CodexNotFoundError(f"Codex executable not found at {candidate}")

        binary = shutil.which("codex")
        if binary is None:
            raise CodexNotFoundError("Codex CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CodexExecutionResult:
        return await self._invoke("--version")

    async def exec(
        self,
        prompt: str,
        *,
        flags: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CodexExecutionResult:
        prefix = list(flags or [])
        return await self._invoke(*prefix, "exec", prompt, env=env)

    async def _invoke(self, *args: str, env: Mapping[str, str] | None = None) -> CodexExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=child_environment(env),
        )
        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CodexExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeCodexRunner(CodexRunner):
    """Test double that replays canned Codex CLI responses."""

    def __init__(self, responses: Iterable[CodexExecutionResult | str] | None = None) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-codex")

    async def _invoke(  # type: ignore[override]
        self, *args: str, env: Mapping[str, str] | None = None
    ) -> CodexExecutionResult:
        self._invocations.append(tuple(args))
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, str):
                return CodexExecutionResult(args=tuple(args), returncode=0, stdout=response, stderr="")
            return response
        return CodexExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations
