"""Persistent memory for Memini."""

from .chroma import MemoryStore, MemoryUnavailableError, format_memories
from .models import MemoryEvent, MemoryTrace

__all__ = [
    "MemoryEvent",
    "MemoryStore",
    "MemoryTrace",
    "MemoryUnavailableError",
    "format_memories",
]
