"""Chroma-backed memory service: semantic traces plus an event journal."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import MemoryEvent, MemoryTrace

MEMORY_STREAM = "memory"
_PREVIEW_CHARS = 2000


class MemoryUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed or a collection call fails."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Memini."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...

    def query(
        self,
        *,
        query_texts: list[str],
        n_results: int,
        where: dict[str, Any] | None = None,
    ) -> dict[str, list[list[Any]]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Memini."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


def _clean_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma only stores scalar metadata values.
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value)
    return cleaned


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


def format_memories(traces: Iterable[MemoryTrace]) -> str:
    """Render recalled traces as a context block for the reasoning step."""

    lines = [
        f"- [{trace.timestamp:%Y-%m-%d %H:%M}] {trace.input.strip()} -> {trace.outcome.strip()}"
        for trace in traces
    ]
    if not lines:
        return ""
    return "Relevant memories:\n" + "\n".join(lines)


class MemoryStore:
    """Persist conversation traces and journal events via ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "memini_memory",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise MemoryUnavailableError(
                "chromadb package is not installed; install chromadb to enable memory"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            try:
                client = self._client or self._client_factory()
                self._client = client
                self._collection = client.get_or_create_collection(self._collection_name)
            except MemoryUnavailableError:
                raise
            except Exception as exc:
                raise MemoryUnavailableError(f"Failed to open Chroma collection at {self._path}: {exc}") from exc
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def _add(self, stream: str, document: str, metadata: dict[str, Any]) -> tuple[str, datetime, dict[str, Any]]:
        collection = self._ensure_collection()
        counter = self._counters[stream] = self._counters[stream] + 1
        record_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()
        record_metadata = {
            "stream": stream,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        record_metadata.update(_clean_metadata(metadata))
        try:
            collection.add(documents=[document], metadatas=[record_metadata], ids=[record_id])
        except Exception as exc:
            raise MemoryUnavailableError(f"Failed to write to stream '{stream}': {exc}") from exc
        return record_id, timestamp, record_metadata

    # -- semantic memory ---------------------------------------------------

    def focus(self, text: str) -> str:
        """Record a semantic embedding of one turn; returns the trace id."""

        trace_id, _, _ = self._add(
            MEMORY_STREAM,
            text,
            {"kind": "focus", "input": text[:_PREVIEW_CHARS], "action": "focus", "outcome": ""},
        )
        return trace_id

    def commit(self, input_text: str, action: str, outcome: str) -> str:
        """Record one conversation turn for future recall."""

        document = f"{input_text.strip()}\n\n{outcome.strip()}"
        trace_id, _, _ = self._add(
            MEMORY_STREAM,
            document,
            {
                "kind": "trace",
                "input": input_text[:_PREVIEW_CHARS],
                "action": action,
                "outcome": outcome[:_PREVIEW_CHARS],
            },
        )
        return trace_id

    def recall(self, query: str, k: int = 6) -> list[MemoryTrace]:
        """Return up to ``k`` traces ranked by semantic distance to ``query``."""

        if k < 1 or not query.strip():
            return []
        collection = self._ensure_collection()
        try:
            result = collection.query(
                query_texts=[query],
                n_results=k,
                where={"stream": MEMORY_STREAM},
            )
        except Exception as exc:
            raise MemoryUnavailableError(f"Memory recall failed: {exc}") from exc
        ids = (result.get("ids") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0] or [None] * len(ids)
        traces: list[MemoryTrace] = []
        for trace_id, metadata, distance in zip(ids, metadatas, distances):
            metadata = metadata or {}
            timestamp_raw = metadata.get("timestamp")
            traces.append(
                MemoryTrace(
                    id=trace_id,
                    input=metadata.get("input", ""),
                    action=metadata.get("action", ""),
                    outcome=metadata.get("outcome", ""),
                    timestamp=(
                        datetime.fromisoformat(timestamp_raw)
                        if isinstance(timestamp_raw, str)
                        else self._clock()
                    ),
                    distance=distance,
                )
            )
        return traces[:k]

    # -- event journal -----------------------------------------------------

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryEvent:
        document = body if isinstance(body, str) else json.dumps(body)
        record_id, timestamp, record_metadata = self._add(
            stream,
            document,
            {"event_type": event_type, **(metadata or {})},
        )
        return MemoryEvent(
            id=record_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def search_events(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[MemoryEvent]:
        collection = self._ensure_collection()
        try:
            result = collection.get(where=_where(filters), limit=limit)
        except Exception as exc:
            raise MemoryUnavailableError(f"Event search failed: {exc}") from exc
        events: list[MemoryEvent] = []
        for record_id, document, metadata in zip(
            result.get("ids", []), result.get("documents", []), result.get("metadatas", [])
        ):
            if metadata.get("stream") == MEMORY_STREAM:
                continue
            timestamp_raw = metadata.get("timestamp")
            events.append(
                MemoryEvent(
                    id=record_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=(
                        datetime.fromisoformat(timestamp_raw)
                        if isinstance(timestamp_raw, str)
                        else self._clock()
                    ),
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events[:limit] if limit else events


__all__ = ["MemoryStore", "MemoryUnavailableError", "format_memories"]
