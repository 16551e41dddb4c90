"""Short-lived MCP sessions against one configured server.

Typical usage:
    client = McpServerClient(server)
    tools = await client.list_tools()
    output = await client.call_tool("search", {"query": "hi"})
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from mcp import ClientSession
from pydantic import Field

from ..core.schemas import BaseSchema
from ..repos.domain import McpServer
from .transport import AsyncMCPTransport, transport_for

logger = logging.getLogger(__name__)


class McpToolInfo(BaseSchema):
    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    server_id: str
    server_name: str


class McpServerClient:
    """List and call tools on a single MCP server.

    A new ``ClientSession`` is opened per call; the client itself holds no
    connection state.
    """

    def __init__(self, server: McpServer, *, transport: Optional[AsyncMCPTransport] = None) -> None:
        if not server.url:
            raise ValueError(f"MCP server {server.id} has no URL configured")
        self._server = server
        self._transport: AsyncMCPTransport = transport or transport_for(server.transport)

    @asynccontextmanager
    async def _open_session(self) -> AsyncIterator[ClientSession]:
        async with self._transport.session(self._server.url.rstrip("/")) as session:  # type: ignore[union-attr]
            yield session

    async def list_tools(self) -> List[McpToolInfo]:
        tools: List[McpToolInfo] = []
        async with self._open_session() as session:
            logger.debug("McpServerClient.list_tools: server_id=%s", self._server.id)
            resp = await session.list_tools()
            for tool in getattr(resp, "tools", []) or []:
                name = getattr(tool, "name", None)
                if not isinstance(name, str) or not name:
                    continue
                description = getattr(tool, "description", None)
                input_schema = getattr(tool, "inputSchema", None) or {}
                tools.append(
                    McpToolInfo(
                        name=name,
                        description=description if isinstance(description, str) else None,
                        input_schema=input_schema if isinstance(input_schema, dict) else {},
                        server_id=self._server.id,
                        server_name=self._server.name,
                    )
                )
        return tools

    async def call_tool(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke ``tool_name`` and return the result payload.

        Raises:
            RuntimeError: If the server reports the call as an error.
        """
        async with self._open_session() as session:
            logger.debug(
                "McpServerClient.call_tool: server_id=%s tool=%s args_keys=%s",
                self._server.id,
                tool_name,
                list((arguments or {}).keys()),
            )
            res = await session.call_tool(name=tool_name, arguments=arguments or {})

        payload = res.model_dump(mode="json", by_alias=True) if hasattr(res, "model_dump") else res
        data: Dict[str, Any] = payload if isinstance(payload, dict) else {"result": payload}
        if data.get("isError"):
            texts = [c.get("text") for c in data.get("content") or [] if isinstance(c, dict) and c.get("text")]
            raise RuntimeError("; ".join(texts) or f"MCP tool {tool_name} returned an error")
        return data
