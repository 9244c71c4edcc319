from __future__ import annotations

import argparse
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from memini.storage import MemoryUnavailableError


def _load_diag(module_name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "memini_diag.py"
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def test_recipes_lists_valid_files(monkeypatch, capsys, tmp_path: Path) -> None:
    (tmp_path / "digest.yaml").write_text("interval_secs: 7200\ninstructions: Digest\n", encoding="utf-8")
    monkeypatch.setenv("MEMINI_RECIPE_DIR", str(tmp_path))
    diag = _load_diag("memini_diag_recipes")

    diag.cmd_recipes(argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["recipes"][0]["name"] == "digest"
    assert payload["recipes"][0]["interval_secs"] == 7200


def test_recipes_reports_malformed_file(monkeypatch, capsys, tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("interval_secs: [", encoding="utf-8")
    monkeypatch.setenv("MEMINI_RECIPE_DIR", str(tmp_path))
    diag = _load_diag("memini_diag_broken")

    with pytest.raises(SystemExit) as excinfo:
        diag.cmd_recipes(argparse.Namespace())

    assert excinfo.value.code == 1
    assert "Recipe error" in capsys.readouterr().out


def test_missing_memory_store_exits(monkeypatch, capsys, tmp_path: Path) -> None:
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))
    diag = _load_diag("memini_diag_missing")

    class UnavailableStore:
        def __init__(self, path) -> None:
            self.path = path

        def ping(self) -> bool:
            raise MemoryUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(diag, "MemoryStore", UnavailableStore)

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["runs"])

    assert excinfo.value.code == 1
    assert "Memory store unavailable" in capsys.readouterr().out


def test_runs_filters_by_recipe_and_limit(monkeypatch, capsys) -> None:
    base_time = datetime(2025, 1, 1, tzinfo=timezone.utc)
    seen_filters = []

    class StubStore:
        def search_events(self, filters=None):
            seen_filters.append(filters)
            return [
                argparse.Namespace(
                    id=f"recipe::digest:{idx}",
                    metadata={
                        "recipe": "digest",
                        "trigger": "timer",
                        "outcome": "succeeded" if idx else "skipped",
                        "session_id": idx,
                    },
                    timestamp=base_time.replace(minute=idx),
                )
                for idx in range(3)
            ]

    diag = _load_diag("memini_diag_runs")
    monkeypatch.setattr(diag, "load_store", lambda _settings: StubStore())

    diag.cmd_runs(argparse.Namespace(recipe="digest", limit=2))

    payload = json.loads(capsys.readouterr().out)
    assert seen_filters == [{"event_type": "task_run", "recipe": "digest"}]
    assert [entry["session_id"] for entry in payload] == [1, 2]


def test_traces_outputs_recall(monkeypatch, capsys) -> None:
    class StubStore:
        def recall(self, query, k=6):
            assert (query, k) == ("logs", 3)
            return [
                argparse.Namespace(
                    id="memory:1",
                    input="rotate logs?",
                    action="session:1",
                    outcome="use logrotate",
                    timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
                    distance=0.1,
                )
            ]

    diag = _load_diag("memini_diag_traces")
    monkeypatch.setattr(diag, "load_store", lambda _settings: StubStore())

    diag.cmd_traces(argparse.Namespace(query="logs", limit=3))

    payload = json.loads(capsys.readouterr().out)
    assert payload[0]["outcome"] == "use logrotate"
