from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import pytest

from memini.capabilities import McpToolService, ToolServiceError, select_tools, split_namespaced_tool_name


@dataclass
class StubTool:
    name: str


@dataclass
class StubText:
    text: str


@dataclass
class StubResult:
    content: list[Any]


class StubClient:
    def __init__(self, url: str, registry: dict[str, dict[str, Any]]) -> None:
        self.url = url
        self.registry = registry
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __aenter__(self) -> "StubClient":
        if self.url not in self.registry:
            raise ConnectionError(f"cannot reach {self.url}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def list_tools(self) -> list[StubTool]:
        return [StubTool(name) for name in self.registry[self.url]]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> StubResult:
        handler = self.registry[self.url][name]
        return StubResult(content=[StubText(handler(**arguments))])


def _service(servers: dict[str, str]) -> McpToolService:
    registry = {
        "http://files": {"read": lambda path: f"contents of {path}"},
        "http://web": {"search": lambda query: f"results for {query}", "fetch": lambda url: url},
    }
    return McpToolService(servers, client_factory=lambda url: StubClient(url, registry))


def test_split_namespaced_tool_name() -> None:
    assert split_namespaced_tool_name("files__read") == ("files", "read")
    assert split_namespaced_tool_name("read") is None
    assert split_namespaced_tool_name("__read") is None


def test_capabilities_namespace_tools_and_skip_unreachable_servers() -> None:
    service = _service({"files": "http://files", "web": "http://web", "down": "http://down"})

    names = asyncio.run(service.capabilities())

    assert service.available
    assert names == ["files__read", "web__search", "web__fetch"]


def test_call_routes_to_server_and_renders_text() -> None:
    service = _service({"files": "http://files"})

    output = asyncio.run(service.call("files__read", {"path": "notes.txt"}))

    assert output == "contents of notes.txt"


def test_call_errors_become_tool_service_errors() -> None:
    service = _service({"files": "http://files", "down": "http://down"})

    with pytest.raises(ToolServiceError):
        asyncio.run(service.call("read", {}))
    with pytest.raises(ToolServiceError):
        asyncio.run(service.call("web__search", {"query": "x"}))
    with pytest.raises(ToolServiceError):
        asyncio.run(service.call("down__anything", {}))


def test_no_servers_means_unavailable() -> None:
    service = McpToolService({})

    assert not service.available
    assert asyncio.run(service.capabilities()) == []


def test_select_tools_by_server_or_full_name() -> None:
    names = ["files__read", "web__search", "web__fetch"]

    assert select_tools(names, []) == names
    assert select_tools(names, ["all"]) == names
    assert select_tools(names, ["*", "none"]) == []
    assert select_tools(names, ["WEB"]) == ["web__search", "web__fetch"]
    assert select_tools(names, ["files__read", "web__fetch"]) == ["files__read", "web__fetch"]
    assert select_tools(names, ["  "]) == names
    assert select_tools(names, ["mail"]) == []
