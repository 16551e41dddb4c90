from __future__ import annotations

from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from mcp.types import CallToolResult, TextContent, Tool

from flowsmith_ai.mcp.client import McpServerClient
from flowsmith_ai.mcp.transport import SseMCPTransport, StreamableHttpMCPTransport, transport_for
from flowsmith_ai.repos.domain import McpServer


class _Session:
    def __init__(self, tools: List[Any], result: Any) -> None:
        self._tools = tools
        self._result = result
        self.calls: List[Dict[str, Any]] = []

    async def list_tools(self):
        return SimpleNamespace(tools=self._tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]):
        self.calls.append({"name": name, "arguments": arguments})
        return self._result


class _Transport:
    def __init__(self, session: _Session) -> None:
        self.session_obj = session
        self.endpoints: List[str] = []

    def session(self, endpoint_url: str):
        @asynccontextmanager
        async def _cm():
            self.endpoints.append(endpoint_url)
            yield self.session_obj

        return _cm()


SERVER = McpServer(id="srv-1", workspace_id="ws-1", name="Docs", url="http://mock-mcp/mcp/")


def test_transport_for() -> None:
    assert isinstance(transport_for("sse"), SseMCPTransport)
    assert isinstance(transport_for("streamable-http"), StreamableHttpMCPTransport)


def test_server_without_url_is_rejected() -> None:
    with pytest.raises(ValueError):
        McpServerClient(McpServer(id="s", workspace_id="ws", name="n"))


@pytest.mark.asyncio
async def test_list_tools() -> None:
    tools = [
        Tool(name="search", description="Search docs", inputSchema={"type": "object", "properties": {}}),
        SimpleNamespace(name="", description=None, inputSchema=None),
    ]
    transport = _Transport(_Session(tools, None))

    result = await McpServerClient(SERVER, transport=transport).list_tools()

    assert transport.endpoints == ["http://mock-mcp/mcp"]
    assert [t.name for t in result] == ["search"]
    dumped = result[0].model_dump(by_alias=True)
    assert dumped == {
        "name": "search",
        "description": "Search docs",
        "inputSchema": {"type": "object", "properties": {}},
        "serverId": "srv-1",
        "serverName": "Docs",
    }


@pytest.mark.asyncio
async def test_call_tool_returns_payload() -> None:
    session = _Session([], CallToolResult(content=[TextContent(type="text", text="3 hits")], isError=False))

    output = await McpServerClient(SERVER, transport=_Transport(session)).call_tool("search", {"query": "x"})

    assert session.calls == [{"name": "search", "arguments": {"query": "x"}}]
    assert output["isError"] is False
    assert output["content"][0]["text"] == "3 hits"


@pytest.mark.asyncio
async def test_call_tool_error_raises() -> None:
    session = _Session([], CallToolResult(content=[TextContent(type="text", text="bad query")], isError=True))
    with pytest.raises(RuntimeError, match="bad query"):
        await McpServerClient(SERVER, transport=_Transport(session)).call_tool("search")
