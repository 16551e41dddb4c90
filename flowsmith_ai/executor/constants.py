"""Constants shared by block handlers."""

from __future__ import annotations

from enum import Enum


class BlockType(str, Enum):
    AGENT = "agent"


class AGENT:
    DEFAULT_MODEL = "gpt-4o"
    CUSTOM_TOOL_PREFIX = "custom_"
    # milliseconds
    DEFAULT_FUNCTION_TIMEOUT = 5000
    LOAD_SKILL_TOOL_ID = "load_skill"


class MEMORY:
    MAX_CONVERSATION_ID_LENGTH = 255
    MAX_MESSAGE_CONTENT_BYTES = 100 * 1024
    CONTEXT_WINDOW_UTILIZATION = 0.9
    TOKEN_BUFFER_RATIO = 0.6
    DEFAULT_TOKEN_LIMIT = 32000
    DEFAULT_SLIDING_WINDOW_SIZE = 10
    DEFAULT_SLIDING_WINDOW_TOKENS = 4000


class DEFAULTS:
    EXECUTION_TIME = 0

    class TOKENS:
        PROMPT = 0
        COMPLETION = 0
        TOTAL = 0


class REFERENCE:
    START = "<"
    END = ">"


class MCP:
    TOOL_PREFIX = "mcp-"
    DISCOVERY_MAX_ATTEMPTS = 2
    DISCOVERY_RETRY_DELAY_SECONDS = 0.1


def strip_custom_tool_prefix(name: str) -> str:
    """Return ``name`` without the custom tool prefix, if present."""
    if name and name.startswith(AGENT.CUSTOM_TOOL_PREFIX):
        return name[len(AGENT.CUSTOM_TOOL_PREFIX) :]
    return name


def create_mcp_tool_id(server_id: str, tool_name: str) -> str:
    """Build the provider-facing id of an MCP tool: ``mcp-<server>-<tool>``."""
    return f"{MCP.TOOL_PREFIX}{server_id}-{tool_name}"
