"""Client for external MCP tool servers."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Mapping

from fastmcp import Client

logger = logging.getLogger(__name__)

TOOL_NAMESPACE_SEP = "__"
NO_TOOLS_SELECTOR = "none"
ALL_TOOLS_SELECTORS = frozenset({"all", "*"})


class ToolServiceError(RuntimeError):
    """Raised when a tool server cannot be reached or a tool call fails."""


def namespaced_tool_name(server_id: str, tool_name: str) -> str:
    return f"{server_id}{TOOL_NAMESPACE_SEP}{tool_name}"


def split_namespaced_tool_name(name: str) -> tuple[str, str] | None:
    server_id, sep, tool_name = name.partition(TOOL_NAMESPACE_SEP)
    if not sep or not server_id or not tool_name:
        return None
    return server_id, tool_name


def select_tools(names: Iterable[str], selectors: Iterable[str]) -> list[str]:
    """Filter namespaced tool names by a selector list.

    No selectors keeps every tool, ``none`` keeps nothing and ``all`` or ``*``
    keeps everything. Other selectors match a full ``server__tool`` name or a
    bare server id, case-insensitively.
    """

    wanted = {selector.strip().lower() for selector in selectors if selector.strip()}
    if not wanted:
        return list(names)
    if NO_TOOLS_SELECTOR in wanted:
        return []
    if wanted & ALL_TOOLS_SELECTORS:
        return list(names)

    selected = []
    for name in names:
        parsed = split_namespaced_tool_name(name)
        server_id = parsed[0].lower() if parsed else None
        if name.lower() in wanted or server_id in wanted:
            selected.append(name)
    return selected


def _render_tool_result(result: Any) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, (list, tuple)):
        parts = []
        for item in content:
            text = getattr(item, "text", None)
            parts.append(text if text is not None else str(item))
        return "\n".join(parts)
    data = getattr(result, "data", None)
    if data is not None:
        return json.dumps(data, default=str)
    return str(content)


class McpToolService:
    """Connects to configured MCP servers and invokes their tools by namespaced name.

    Connection and auth state belong to the servers; the orchestration core only
    asks whether any capability is available and routes calls.
    """

    def __init__(
        self,
        servers: Mapping[str, str],
        *,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._servers = dict(servers)
        self._client_factory = client_factory or Client
        self._catalog: dict[str, list[str]] = {}

    @property
    def available(self) -> bool:
        return bool(self._servers)

    @property
    def server_ids(self) -> list[str]:
        return sorted(self._servers)

    async def connect(self, server_id: str) -> list[str]:
        """Return the namespaced tool names exposed by ``server_id``."""

        if server_id in self._catalog:
            return list(self._catalog[server_id])
        try:
            url = self._servers[server_id]
        except KeyError as exc:
            raise ToolServiceError(f"Unknown tool server '{server_id}'") from exc

        try:
            async with self._client_factory(url) as client:
                tools = await client.list_tools()
        except Exception as exc:
            raise ToolServiceError(f"Failed to connect to tool server '{server_id}': {exc}") from exc

        names = [namespaced_tool_name(server_id, tool.name) for tool in tools]
        self._catalog[server_id] = names
        logger.info("Connected to tool server", extra={"server_id": server_id, "tools": len(names)})
        return list(names)

    async def capabilities(self) -> list[str]:
        names: list[str] = []
        for server_id in self.server_ids:
            try:
                names.extend(await self.connect(server_id))
            except ToolServiceError as exc:
                logger.warning(
                    "Tool server unavailable",
                    extra={"server_id": server_id, "error": str(exc)},
                )
        return names

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        parsed = split_namespaced_tool_name(name)
        if parsed is None:
            raise ToolServiceError(f"Unresolvable tool '{name}'")
        server_id, tool_name = parsed
        try:
            url = self._servers[server_id]
        except KeyError as exc:
            raise ToolServiceError(f"No tool server configured for '{server_id}'") from exc

        try:
            async with self._client_factory(url) as client:
                result = await client.call_tool(tool_name, arguments or {})
        except Exception as exc:
            raise ToolServiceError(f"Tool '{name}' failed: {exc}") from exc
        return _render_tool_result(result)


__all__ = [
    "McpToolService",
    "TOOL_NAMESPACE_SEP",
    "ToolServiceError",
    "namespaced_tool_name",
    "select_tools",
    "split_namespaced_tool_name",
]
