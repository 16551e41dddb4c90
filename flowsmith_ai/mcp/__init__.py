"""MCP server access used by the tool discovery and execution routes."""

from .client import McpServerClient, McpToolInfo
from .transport import AsyncMCPTransport, SseMCPTransport, StreamableHttpMCPTransport, transport_for

__all__ = [
    "AsyncMCPTransport",
    "McpServerClient",
    "McpToolInfo",
    "SseMCPTransport",
    "StreamableHttpMCPTransport",
    "transport_for",
]
