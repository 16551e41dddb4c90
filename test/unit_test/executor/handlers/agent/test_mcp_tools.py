from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from flowsmith_ai.executor.errors import ToolDiscoveryError, ToolExecutionError
from flowsmith_ai.executor.handlers.agent.mcp_tools import McpToolResolver, is_retryable_error
from flowsmith_ai.executor.handlers.agent.types import ToolInput
from flowsmith_ai.executor.utils.http import InternalApiClient
from flowsmith_ai.repos.domain import McpServer

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {"query": {"type": "string"}, "limit": {"type": "integer"}},
    "required": ["query"],
}


def _mcp_tool(server_id: str = "srv-1", tool_name: str = "search", schema: Any = None, **params: Any) -> ToolInput:
    return ToolInput(
        type="mcp",
        title=tool_name,
        schema=schema,
        params={"serverId": server_id, "toolName": tool_name, "serverName": "Search Server", **params},
    )


def _api(handler) -> InternalApiClient:
    return InternalApiClient("http://mock-api", transport=httpx.MockTransport(handler))


def test_is_retryable_error() -> None:
    assert is_retryable_error("Session terminated")
    assert is_retryable_error("Failed to discover tools: 404 Not Found")
    assert not is_retryable_error("Failed to discover tools: 500 boom")


@pytest.mark.asyncio
async def test_filter_unavailable_keeps_connected_servers(fakes, chat_ctx) -> None:
    servers = fakes.McpServers(
        [
            McpServer(id="srv-1", workspace_id="ws-1", name="one", connection_status="connected"),
            McpServer(id="srv-2", workspace_id="ws-1", name="two", connection_status="error"),
        ]
    )
    resolver = McpToolResolver(api=_api(lambda r: httpx.Response(500)), servers=servers)
    tools = [_mcp_tool("srv-1"), _mcp_tool("srv-2"), ToolInput(type="api")]

    kept = await resolver.filter_unavailable(chat_ctx, tools)

    assert [t.params.get("serverId") for t in kept] == ["srv-1", None]


@pytest.mark.asyncio
async def test_filter_unavailable_keeps_all_on_lookup_failure(fakes, chat_ctx) -> None:
    resolver = McpToolResolver(servers=fakes.McpServers(error=RuntimeError("db down")))
    tools = [_mcp_tool("srv-1"), _mcp_tool("srv-2")]
    assert await resolver.filter_unavailable(chat_ctx, tools) == tools


@pytest.mark.asyncio
async def test_filter_unavailable_without_workspace_drops_mcp_tools(fakes, chat_ctx) -> None:
    ctx = chat_ctx.model_copy(update={"workspace_id": None})
    resolver = McpToolResolver(servers=fakes.McpServers())
    tools = [_mcp_tool("srv-1"), ToolInput(type="api")]
    assert [t.type for t in await resolver.filter_unavailable(ctx, tools)] == ["api"]


@pytest.mark.asyncio
async def test_cached_schema_tool_filters_user_params(chat_ctx) -> None:
    resolver = McpToolResolver(api=_api(lambda r: httpx.Response(500)))
    tools = await resolver.process_batched(chat_ctx, [_mcp_tool(schema=SEARCH_SCHEMA, limit=5)])

    assert len(tools) == 1
    tool = tools[0]
    assert tool.id == "mcp-srv-1-search"
    assert tool.name == "search"
    assert tool.params == {"limit": 5}
    assert list(tool.parameters["properties"]) == ["query"]
    assert "Search Server" in tool.description


@pytest.mark.asyncio
async def test_tool_without_server_or_name_is_skipped(chat_ctx) -> None:
    resolver = McpToolResolver()
    bad = ToolInput(type="mcp", title="bad", params={"serverId": "srv-1"})
    assert await resolver.process_batched(chat_ctx, [bad]) == []


@pytest.mark.asyncio
async def test_discovery_retries_session_errors_then_succeeds(chat_ctx) -> None:
    calls: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, json={"success": False, "error": "Session not found"})
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "tools": [
                        {"name": "search", "description": "Search docs", "inputSchema": SEARCH_SCHEMA},
                        {"name": "other", "inputSchema": {}},
                    ]
                },
            },
        )

    resolver = McpToolResolver(api=_api(handler), retry_delay=0)
    tools = await resolver.process_batched(chat_ctx, [_mcp_tool()])

    assert len(calls) == 2
    assert calls[0].url.path == "/api/mcp/tools/discover"
    assert calls[0].url.params["serverId"] == "srv-1"
    assert calls[0].url.params["workspaceId"] == "ws-1"
    assert [t.id for t in tools] == ["mcp-srv-1-search"]
    assert tools[0].description == "Search docs"


@pytest.mark.asyncio
async def test_discovery_gives_up_on_non_retryable_error(chat_ctx) -> None:
    calls: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, text="server exploded")

    resolver = McpToolResolver(api=_api(handler), retry_delay=0)
    with pytest.raises(ToolDiscoveryError):
        await resolver.discover_for_server(chat_ctx, "srv-1")
    assert len(calls) == 1

    assert await resolver.process_batched(chat_ctx, [_mcp_tool()]) == []


@pytest.mark.asyncio
async def test_discovery_requires_workspace(chat_ctx) -> None:
    resolver = McpToolResolver()
    with pytest.raises(ToolDiscoveryError):
        await resolver.discover_for_server(chat_ctx.model_copy(update={"workspace_id": None}), "srv-1")


@pytest.mark.asyncio
async def test_execute_function_posts_to_mcp_execute(chat_ctx) -> None:
    seen: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": {"output": {"hits": 3}}})

    resolver = McpToolResolver(api=_api(handler))
    (tool,) = await resolver.process_batched(chat_ctx, [_mcp_tool(schema=SEARCH_SCHEMA)])
    result = await tool.execute_function({"query": "flows"})

    assert seen["path"] == "/api/mcp/tools/execute"
    assert seen["body"]["serverId"] == "srv-1"
    assert seen["body"]["toolName"] == "search"
    assert seen["body"]["arguments"] == {"query": "flows"}
    assert result == {
        "success": True,
        "output": {"hits": 3},
        "metadata": {"source": "mcp", "serverId": "srv-1", "serverName": "Search Server", "toolName": "search"},
    }


@pytest.mark.asyncio
async def test_execute_function_raises_on_failure(chat_ctx) -> None:
    resolver = McpToolResolver(
        api=_api(lambda r: httpx.Response(200, json={"success": False, "error": "tool crashed"}))
    )
    (tool,) = await resolver.process_batched(chat_ctx, [_mcp_tool(schema=SEARCH_SCHEMA)])
    with pytest.raises(ToolExecutionError, match="tool crashed"):
        await tool.execute_function({"query": "x"})
