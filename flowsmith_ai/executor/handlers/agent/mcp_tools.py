"""Resolution of MCP tools attached to an Agent block.

MCP tools carry ``serverId``/``toolName`` (and optionally ``serverName``) in
their params. Tools saved with a cached input schema are turned into provider
tools directly. Older tools without one are grouped by server and resolved
through the discovery endpoint of the workflow application API, which is
retried once on session errors.

Every resolved tool executes through ``/api/mcp/tools/execute``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import httpx

from ....providers.executor import ProviderTool, ToolFunction
from ....repos.interfaces import McpServerRepository
from ....tools.params import filter_schema_for_llm
from ...constants import MCP, create_mcp_tool_id
from ...errors import ToolDiscoveryError, ToolExecutionError
from ...types import ExecutionContext
from ...utils.http import InternalApiClient
from .types import ToolInput

logger = logging.getLogger(__name__)

_ROUTING_PARAMS = ("serverId", "toolName", "serverName")
_EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


def is_retryable_error(message: str) -> bool:
    lower = message.lower()
    return "session" in lower or "400" in lower or "404" in lower


def _user_params(tool: ToolInput) -> Dict[str, Any]:
    return {k: v for k, v in tool.params.items() if k not in _ROUTING_PARAMS}


class McpToolResolver:
    def __init__(
        self,
        *,
        api: Optional[InternalApiClient] = None,
        servers: Optional[McpServerRepository] = None,
        retry_delay: float = MCP.DISCOVERY_RETRY_DELAY_SECONDS,
        max_attempts: int = MCP.DISCOVERY_MAX_ATTEMPTS,
    ) -> None:
        self._api = api or InternalApiClient()
        self._servers = servers
        self._retry_delay = retry_delay
        self._max_attempts = max_attempts

    async def filter_unavailable(self, ctx: ExecutionContext, tools: List[ToolInput]) -> List[ToolInput]:
        """Drop MCP tools whose server is not connected in this workspace.

        If the server lookup fails, every MCP tool with a server id is kept.
        """
        mcp_tools = [t for t in tools if t.type == "mcp"]
        if not mcp_tools:
            return tools
        server_ids = list(OrderedDict.fromkeys(t.params.get("serverId") for t in mcp_tools if t.params.get("serverId")))
        if not server_ids:
            return tools

        available: set = set()
        if ctx.workspace_id:
            try:
                if self._servers is None:
                    raise RuntimeError("MCP server repository is not configured")
                servers = await self._servers.list_active(ctx.workspace_id, server_ids)
                available = {s.id for s in servers if s.connection_status == "connected"}
            except Exception as e:
                logger.warning("Failed to check MCP server availability, including all tools: %s", e)
                available = set(server_ids)

        return [t for t in tools if t.type != "mcp" or (t.params.get("serverId") in available)]

    async def process_batched(self, ctx: ExecutionContext, tools: List[ToolInput]) -> List[ProviderTool]:
        results: List[ProviderTool] = []
        needing_discovery: List[ToolInput] = []
        for tool in tools:
            server_id = tool.params.get("serverId")
            tool_name = tool.params.get("toolName")
            if not server_id or not tool_name:
                logger.error("MCP tool missing serverId or toolName: %s", tool.title)
                continue
            if tool.schema_:
                try:
                    results.append(self.create_from_cached_schema(ctx, tool))
                except Exception:
                    logger.exception("Error creating MCP tool %s from cached schema", tool_name)
            else:
                logger.warning("MCP tool %s missing cached schema, will need discovery", tool_name)
                needing_discovery.append(tool)

        if needing_discovery:
            results.extend(await self.process_with_discovery(ctx, needing_discovery))
        return results

    def create_from_cached_schema(self, ctx: ExecutionContext, tool: ToolInput) -> ProviderTool:
        server_id = tool.params["serverId"]
        tool_name = tool.params["toolName"]
        server_name = tool.params.get("serverName")
        user_params = _user_params(tool)
        schema = tool.schema_ or _EMPTY_SCHEMA
        return ProviderTool(
            id=create_mcp_tool_id(server_id, tool_name),
            name=tool_name,
            description=schema.get("description") or f"MCP tool {tool_name} from {server_name or server_id}",
            parameters=filter_schema_for_llm(schema, user_params),
            params=user_params,
            usage_control=tool.usage_control,
            execute_function=self._executor(ctx, server_id, tool_name, server_name or server_id, tool.schema_),
        )

    async def process_with_discovery(self, ctx: ExecutionContext, tools: List[ToolInput]) -> List[ProviderTool]:
        by_server: Dict[str, List[ToolInput]] = OrderedDict()
        for tool in tools:
            by_server.setdefault(tool.params["serverId"], []).append(tool)

        async def _discover(server_id: str) -> Optional[List[Dict[str, Any]]]:
            try:
                return await self.discover_for_server(ctx, server_id)
            except Exception as e:
                logger.error("Failed to discover tools from server %s: %s", server_id, e)
                return None

        discovered = await asyncio.gather(*(_discover(sid) for sid in by_server))

        results: List[ProviderTool] = []
        for (server_id, server_tools), server_catalog in zip(by_server.items(), discovered):
            if server_catalog is None:
                continue
            for tool in server_tools:
                tool_name = tool.params.get("toolName")
                match = next((t for t in server_catalog if t.get("name") == tool_name), None)
                if match is None:
                    logger.error("MCP tool %s not found on server %s", tool_name, server_id)
                    continue
                try:
                    results.append(self.create_from_discovered(ctx, tool, match, server_id))
                except Exception:
                    logger.exception("Error creating MCP tool %s", tool_name)
        return results

    async def _discover_once(self, ctx: ExecutionContext, server_id: str) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "serverId": server_id,
            "workspaceId": ctx.workspace_id,
            "workflowId": ctx.workflow_id,
        }
        if ctx.user_id:
            params["userId"] = ctx.user_id
        try:
            data = await self._api.get_json("/api/mcp/tools/discover", params=params, user_id=ctx.user_id)
        except httpx.HTTPStatusError as e:
            raise ToolDiscoveryError(f"Failed to discover tools: {e.response.status_code} {e.response.text}") from e
        except httpx.HTTPError as e:
            raise ToolDiscoveryError(f"Failed to discover tools: {e}") from e
        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            raise ToolDiscoveryError(error or "Failed to discover MCP tools")
        return list((data.get("data") or {}).get("tools") or [])

    async def discover_for_server(self, ctx: ExecutionContext, server_id: str) -> List[Dict[str, Any]]:
        if not ctx.workspace_id:
            raise ToolDiscoveryError("workspaceId is required for MCP tool discovery")
        if not ctx.workflow_id:
            raise ToolDiscoveryError("workflowId is required for internal JWT authentication")

        for attempt in range(self._max_attempts):
            try:
                return await self._discover_once(ctx, server_id)
            except ToolDiscoveryError as e:
                if is_retryable_error(str(e)) and attempt < self._max_attempts - 1:
                    logger.warning(
                        "Retryable error discovering tools from %s (attempt %d): %s", server_id, attempt + 1, e
                    )
                    await asyncio.sleep(self._retry_delay)
                    continue
                raise
        raise ToolDiscoveryError(f"Failed to discover tools from server {server_id} after {self._max_attempts} attempts")

    def create_from_discovered(
        self, ctx: ExecutionContext, tool: ToolInput, mcp_tool: Dict[str, Any], server_id: str
    ) -> ProviderTool:
        tool_name = tool.params["toolName"]
        server_name = mcp_tool.get("serverName") or server_id
        user_params = _user_params(tool)
        input_schema = mcp_tool.get("inputSchema") or _EMPTY_SCHEMA
        return ProviderTool(
            id=create_mcp_tool_id(server_id, tool_name),
            name=tool_name,
            description=mcp_tool.get("description") or f"MCP tool {tool_name} from {server_name}",
            parameters=filter_schema_for_llm(input_schema, user_params),
            params=user_params,
            usage_control=tool.usage_control,
            execute_function=self._executor(ctx, server_id, tool_name, server_name, mcp_tool.get("inputSchema")),
        )

    def _executor(
        self,
        ctx: ExecutionContext,
        server_id: str,
        tool_name: str,
        server_name: str,
        tool_schema: Optional[Dict[str, Any]],
    ) -> ToolFunction:
        async def _execute(call_params: Dict[str, Any]) -> Dict[str, Any]:
            body = {
                "serverId": server_id,
                "toolName": tool_name,
                "arguments": call_params,
                "workspaceId": ctx.workspace_id,
                "workflowId": ctx.workflow_id,
                "toolSchema": tool_schema,
            }
            try:
                result = await self._api.post_json(
                    "/api/mcp/tools/execute",
                    json=body,
                    params={"userId": ctx.user_id} if ctx.user_id else None,
                    user_id=ctx.user_id,
                )
            except httpx.HTTPStatusError as e:
                raise ToolExecutionError(
                    f"MCP tool execution failed: {e.response.status_code} {e.response.reason_phrase}"
                ) from e
            if not isinstance(result, dict) or not result.get("success"):
                error = result.get("error") if isinstance(result, dict) else None
                raise ToolExecutionError(error or "MCP tool execution failed")
            return {
                "success": True,
                "output": (result.get("data") or {}).get("output") or {},
                "metadata": {
                    "source": "mcp",
                    "serverId": server_id,
                    "serverName": server_name,
                    "toolName": tool_name,
                },
            }

        return _execute
