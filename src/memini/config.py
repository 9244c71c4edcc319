"""Configuration management for Memini."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class MeminiSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    codex_path: str | None = Field(default=None, validation_alias="CODEX_PATH")
    codex_default_model: str | None = Field(default=None, validation_alias="CODEX_DEFAULT_MODEL")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    recipe_dir: Path | None = Field(default=Path("recipes"), validation_alias="MEMINI_RECIPE_DIR")
    log_level: str = Field(default="INFO", validation_alias="MEMINI_LOG_LEVEL")
    recall_limit: int = Field(default=6, validation_alias="MEMINI_RECALL_LIMIT")
    visible_slots: int = Field(default=9, validation_alias="MEMINI_VISIBLE_SLOTS")
    run_history_limit: int = Field(default=20, validation_alias="MEMINI_RUN_HISTORY")
    max_tool_loops: int = Field(default=6, validation_alias="MEMINI_MAX_TOOL_LOOPS")
    reasoning_attempts: int = Field(default=2, validation_alias="MEMINI_REASONING_ATTEMPTS")
    mcp_servers: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict, validation_alias="MEMINI_MCP_SERVERS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "MEMINI_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("recipe_dir", mode="before")
    @classmethod
    def _parse_recipe_dir(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return Path(str(value).strip())

    @field_validator("recall_limit", "run_history_limit", "reasoning_attempts")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("max_tool_loops")
    @classmethod
    def _validate_tool_loops(cls, value: int) -> int:
        if value < 0:
            raise ValueError("MEMINI_MAX_TOOL_LOOPS must be >= 0")
        return value

    @field_validator("visible_slots")
    @classmethod
    def _validate_visible_slots(cls, value: int) -> int:
        if not 1 <= value <= 9:
            raise ValueError("MEMINI_VISIBLE_SLOTS must be between 1 and 9")
        return value

    @field_validator("mcp_servers", mode="before")
    @classmethod
    def _parse_mcp_servers(cls, value):
        if value is None or value == "":
            return {}
        if isinstance(value, dict):
            return {str(key).strip(): str(url).strip() for key, url in value.items()}
        if isinstance(value, str):
            servers: dict[str, str] = {}
            for part in value.split(","):
                part = part.strip()
                if not part:
                    continue
                server_id, sep, url = part.partition("=")
                if not sep or not server_id.strip() or not url.strip():
                    raise ValueError(f"MEMINI_MCP_SERVERS entry '{part}' must look like id=url")
                servers[server_id.strip()] = url.strip()
            return servers
        raise TypeError("MEMINI_MCP_SERVERS must be a mapping or a comma-separated id=url string")


@lru_cache(maxsize=1)
def get_settings() -> MeminiSettings:
    """Return cached settings instance."""

    settings = MeminiSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    if settings.recipe_dir is not None:
        settings.recipe_dir = settings.recipe_dir.expanduser().resolve()
    return settings


__all__ = ["MeminiSettings", "get_settings"]
