from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from memini.storage import MemoryStore, MemoryUnavailableError, format_memories


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any] | None) -> bool:
    if not where:
        return True
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []
        self.queries: list[dict[str, Any]] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = [record for record in self.records if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }

    def query(self, *, query_texts, n_results, where=None):  # type: ignore[override]
        self.queries.append({"query_texts": query_texts, "n_results": n_results, "where": where})
        needle = query_texts[0].lower()
        candidates = [record for record in self.records if _matches(record.metadata, where)]
        ranked = sorted(candidates, key=lambda record: 0.0 if needle in record.document.lower() else 1.0)
        ranked = ranked[:n_results]
        return {
            "ids": [[record.id for record in ranked]],
            "documents": [[record.document for record in ranked]],
            "metadatas": [[record.metadata for record in ranked]],
            "distances": [[0.0 if needle in record.document.lower() else 1.0 for record in ranked]],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


def _store(tmp_path: Path, client: StubClient | None = None) -> MemoryStore:
    client = client or StubClient()
    return MemoryStore(
        tmp_path,
        client_factory=lambda: client,
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )


def test_commit_and_recall_ranked_traces(tmp_path: Path) -> None:
    client = StubClient()
    store = _store(tmp_path, client)

    store.commit("How do I rotate logs?", "session:1", "Use logrotate weekly")
    store.commit("Best pizza nearby?", "session:2", "Try the corner place")

    traces = store.recall("logs", k=1)

    assert len(traces) == 1
    assert traces[0].input == "How do I rotate logs?"
    assert traces[0].outcome == "Use logrotate weekly"
    assert traces[0].distance == 0.0
    query = client.collections["memini_memory"].queries[0]
    assert query["where"] == {"stream": "memory"}
    assert query["n_results"] == 1


def test_recall_ignores_journal_events(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_event(stream="session::1", event_type="session_transition", body={"to": "running"})

    assert store.recall("running") == []
    assert store.recall("   ") == []


def test_focus_records_trace(tmp_path: Path) -> None:
    client = StubClient()
    store = _store(tmp_path, client)

    trace_id = store.focus("use the staging database")

    [record] = client.collections["memini_memory"].records
    assert record.id == trace_id
    assert record.metadata["kind"] == "focus"
    assert record.metadata["stream"] == "memory"


def test_record_event_sequences_per_stream(tmp_path: Path) -> None:
    store = _store(tmp_path)

    first = store.record_event(stream="recipe::digest", event_type="task_run", body={"outcome": "succeeded"})
    second = store.record_event(stream="recipe::digest", event_type="task_run", body="plain text")
    other = store.record_event(stream="session::4", event_type="session_transition", body={})

    assert first.metadata["sequence"] == 1
    assert second.metadata["sequence"] == 2
    assert other.metadata["sequence"] == 1
    assert first.document == '{"outcome": "succeeded"}'
    assert second.document == "plain text"


def test_search_events_filters_and_drops_none_metadata(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_event(
        stream="recipe::digest",
        event_type="task_run",
        body={},
        metadata={"recipe": "digest", "session_id": None, "tags": ["a", "b"]},
    )
    store.record_event(
        stream="recipe::inbox",
        event_type="task_run",
        body={},
        metadata={"recipe": "inbox"},
    )
    store.commit("q", "session:1", "a")

    events = store.search_events(filters={"event_type": "task_run", "recipe": "digest"})

    assert len(events) == 1
    assert events[0].stream == "recipe::digest"
    assert "session_id" not in events[0].metadata
    assert events[0].metadata["tags"] == '["a", "b"]'
    assert len(store.search_events()) == 2


def test_format_memories(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.commit("rotate logs?", "session:1", "use logrotate")

    block = format_memories(store.recall("logs"))

    assert block == "Relevant memories:\n- [2025-01-01 00:00] rotate logs? -> use logrotate"
    assert format_memories([]) == ""


def test_unavailable_client_surfaces_error(tmp_path: Path) -> None:
    def broken_factory():
        raise MemoryUnavailableError("chromadb package is not installed")

    store = MemoryStore(tmp_path, client_factory=broken_factory)

    with pytest.raises(MemoryUnavailableError):
        store.ping()


class BrokenCollection(StubCollection):
    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        raise ValueError("collection add failed")

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        raise RuntimeError("sqlite is locked")

    def query(self, *, query_texts, n_results, where=None):  # type: ignore[override]
        raise RuntimeError("HNSW index corrupted")


def test_collection_failures_surface_as_unavailable(tmp_path: Path) -> None:
    client = StubClient()
    client.collections["memini_memory"] = BrokenCollection()
    store = _store(tmp_path, client)

    with pytest.raises(MemoryUnavailableError, match="collection add failed"):
        store.record_event(stream="session::1", event_type="session_transition", body={})
    with pytest.raises(MemoryUnavailableError, match="collection add failed"):
        store.commit("q", "session:1", "a")
    with pytest.raises(MemoryUnavailableError, match="HNSW index corrupted"):
        store.recall("anything")
    with pytest.raises(MemoryUnavailableError, match="sqlite is locked"):
        store.search_events()


def test_client_construction_failure_is_wrapped(tmp_path: Path) -> None:
    def broken_factory():
        raise OSError("permission denied")

    store = MemoryStore(tmp_path, client_factory=broken_factory)

    with pytest.raises(MemoryUnavailableError, match="permission denied"):
        store.ping()
