"""Data models for persistent memory."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class MemoryTrace:
    id: str
    input: str
    action: str
    outcome: str
    timestamp: datetime
    distance: float | None = None


@dataclass(slots=True)
class MemoryEvent:
    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


__all__ = ["MemoryEvent", "MemoryTrace"]
