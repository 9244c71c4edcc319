from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from memini.config import MeminiSettings


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MEMINI_RECIPE_DIR", str(tmp_path))
    monkeypatch.setenv("MEMINI_LOG_LEVEL", "debug")
    monkeypatch.setenv("MEMINI_MCP_SERVERS", "files=http://localhost:9000/mcp, web=http://localhost:9001/mcp")
    monkeypatch.setenv("MEMINI_RUN_HISTORY", "5")

    settings = MeminiSettings()

    assert settings.recipe_dir == tmp_path
    assert settings.log_level == "DEBUG"
    assert settings.mcp_servers == {
        "files": "http://localhost:9000/mcp",
        "web": "http://localhost:9001/mcp",
    }
    assert settings.run_history_limit == 5
    assert settings.visible_slots == 9


def test_empty_recipe_dir_means_ephemeral_only(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMINI_RECIPE_DIR", "")

    assert MeminiSettings().recipe_dir is None


def test_rejects_invalid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMINI_MCP_SERVERS", "files")
    with pytest.raises(ValidationError):
        MeminiSettings()

    monkeypatch.delenv("MEMINI_MCP_SERVERS")
    with pytest.raises(ValidationError):
        MeminiSettings(visible_slots=12)
    with pytest.raises(ValidationError):
        MeminiSettings(log_level="LOUD")
