"""Recipe definitions and run records."""

from __future__ import annotations

import asyncio
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class RecipeDefinition(BaseModel):
    """Persisted definition of a recurring background task."""

    name: str = Field(..., description="Unique recipe name; also the file stem on disk.")
    interval_secs: float = Field(..., gt=0, description="Seconds between timer firings.")
    instructions: str = Field(..., description="Prompt handed to each session the recipe fires.")
    enabled: bool = Field(default=True, description="Whether the recipe's timer is running.")
    persona: str | None = Field(
        default=None,
        description="Optional persona framing passed to the reasoning step.",
    )
    tools: list[str] = Field(
        default_factory=list,
        description="Tool selectors offered to fired sessions: server ids, server__tool names, 'all' or 'none'.",
    )

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not _NAME_PATTERN.match(normalized):
            raise ValueError(
                "Recipe name must start with a letter or digit and contain only letters, digits, '-' or '_'"
            )
        return normalized

    @field_validator("instructions")
    @classmethod
    def _require_instructions(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Recipe instructions must not be empty")
        return normalized

    @field_validator("tools")
    @classmethod
    def _normalize_tools(cls, value: list[str]) -> list[str]:
        return [selector.strip() for selector in value if selector.strip()]

    def to_document(self) -> dict[str, Any]:
        interval: float | int = self.interval_secs
        if float(interval).is_integer():
            interval = int(interval)
        document: dict[str, Any] = {
            "name": self.name,
            "interval_secs": interval,
            "instructions": self.instructions,
            "enabled": self.enabled,
        }
        if self.persona:
            document["persona"] = self.persona
        if self.tools:
            document["tools"] = list(self.tools)
        return document


class RunOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class TaskRun:
    """One firing of a recipe."""

    recipe_name: str
    trigger: str
    started_at: datetime
    session_id: int | None = None
    finished_at: datetime | None = None
    outcome: RunOutcome | None = None
    result: str | None = None
    reason: str | None = None

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    def as_dict(self) -> dict[str, Any]:
        return {
            "recipe": self.recipe_name,
            "trigger": self.trigger,
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcome": self.outcome.value if self.outcome else "running",
            "result": self.result,
            "reason": self.reason,
        }


@dataclass(slots=True)
class Recipe:
    """Scheduler-owned runtime state for one recipe."""

    definition: RecipeDefinition
    path: Path | None
    history: deque[TaskRun]
    last_run_at: datetime | None = None
    skipped: int = 0
    active_run: TaskRun | None = None
    timer: asyncio.Task | None = None
    wake: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def ephemeral(self) -> bool:
        return self.path is None

    @property
    def busy(self) -> bool:
        return self.active_run is not None

    def summary(self) -> dict[str, Any]:
        last = self.history[-1] if self.history else None
        return {
            "name": self.name,
            "interval_secs": self.definition.interval_secs,
            "enabled": self.definition.enabled,
            "tools": list(self.definition.tools),
            "persistence": "ephemeral" if self.ephemeral else str(self.path),
            "running": self.busy,
            "runs": len(self.history),
            "skipped": self.skipped,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_outcome": last.outcome.value if last and last.outcome else None,
        }


__all__ = ["Recipe", "RecipeDefinition", "RunOutcome", "TaskRun"]
