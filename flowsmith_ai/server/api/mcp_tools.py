"""
MCP Tool Endpoints.

Discovery and execution of tools on workspace MCP servers. These are the
endpoints the agent handler calls for MCP tools without a cached schema and
for every MCP tool call.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import Field

from flowsmith_ai.core.logging_config import get_logger
from flowsmith_ai.core.schemas import BaseSchema
from flowsmith_ai.mcp.client import McpServerClient
from flowsmith_ai.repos.domain import McpServer
from flowsmith_ai.server.core.security import InternalTokenDep
from flowsmith_ai.server.services.deps import ReposDep

logger = get_logger(__name__)
router = APIRouter()


class McpToolExecuteRequest(BaseSchema):
    server_id: str
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    workspace_id: Optional[str] = None
    workflow_id: Optional[str] = None
    tool_schema: Optional[Dict[str, Any]] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _load_server(repos, server_id: str, workspace_id: Optional[str]) -> Optional[McpServer]:
    server = await repos.mcp_servers.get(server_id)
    if server is None or server.deleted_at is not None or not server.enabled:
        return None
    if workspace_id and server.workspace_id != workspace_id:
        return None
    return server


@router.get(
    "/discover",
    summary="Discover MCP Tools",
    description="List the tools exposed by one MCP server of a workspace.",
)
async def discover_tools(
    repos: ReposDep,
    _token: InternalTokenDep,
    server_id: str = Query(..., alias="serverId"),
    workspace_id: str = Query(..., alias="workspaceId"),
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
):
    server = await _load_server(repos, server_id, workspace_id)
    if server is None:
        return _error(404, f"MCP server not found: {server_id}")
    try:
        tools = await McpServerClient(server).list_tools()
    except Exception as e:
        logger.error(f"Failed to discover tools from MCP server {server_id}: {e}", exc_info=True)
        return _error(502, f"Failed to discover tools from server {server_id}: {e}")

    logger.debug(f"Discovered {len(tools)} tools from MCP server {server_id} (workflow={workflow_id})")
    return {"success": True, "data": {"tools": [t.model_dump(by_alias=True) for t in tools]}}


@router.post(
    "/execute",
    summary="Execute MCP Tool",
    description="Call one tool on a workspace MCP server.",
)
async def execute_tool(payload: McpToolExecuteRequest, repos: ReposDep, _token: InternalTokenDep):
    server = await _load_server(repos, payload.server_id, payload.workspace_id)
    if server is None:
        return _error(404, f"MCP server not found: {payload.server_id}")
    try:
        output = await McpServerClient(server).call_tool(payload.tool_name, payload.arguments)
    except Exception as e:
        logger.error(f"MCP tool {payload.tool_name} failed on server {payload.server_id}: {e}", exc_info=True)
        return _error(502, str(e))
    return {"success": True, "data": {"output": output}}
