"""Registry of block integrations that can be attached to an agent as tools.

A block type (``slack``, ``http`` ...) maps to one or more tool ids. When the
block offers several operations, the selected ``operation`` picks the tool.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..providers.executor import ProviderTool
from .params import filter_schema_for_llm

logger = logging.getLogger(__name__)

HIDDEN_VISIBILITIES = ("user-only", "hidden")


@dataclass(frozen=True)
class ToolParam:
    type: str = "string"
    description: str = ""
    required: bool = False
    visibility: str = "user-or-llm"


@dataclass(frozen=True)
class ToolConfig:
    id: str
    name: str
    description: str = ""
    params: Dict[str, ToolParam] = field(default_factory=dict)

    def llm_schema(self) -> Dict[str, object]:
        properties: Dict[str, object] = {}
        required: List[str] = []
        for name, param in self.params.items():
            if param.visibility in HIDDEN_VISIBILITIES:
                continue
            properties[name] = {"type": param.type, "description": param.description}
            if param.required:
                required.append(name)
        return {"type": "object", "properties": properties, "required": required}


@dataclass(frozen=True)
class BlockToolConfig:
    block_type: str
    access: List[str]
    select_tool: Optional[Callable[[Dict[str, object]], str]] = None


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, ToolConfig] = {}
        self._blocks: Dict[str, BlockToolConfig] = {}

    def register_tool(self, tool: ToolConfig) -> None:
        self._tools[tool.id] = tool

    def register_block(self, block: BlockToolConfig) -> None:
        self._blocks[block.block_type] = block

    def get_tool(self, tool_id: str) -> Optional[ToolConfig]:
        return self._tools.get(tool_id)

    def get_block(self, block_type: str) -> Optional[BlockToolConfig]:
        return self._blocks.get(block_type)

    def resolve_tool_id(self, block_type: str, operation: Optional[str], params: Dict[str, object]) -> Optional[str]:
        """Pick the tool id for ``block_type``.

        ``select_tool`` receives the user params plus ``operation``; without one
        the operation must name an accessible tool, otherwise the first tool is
        used.
        """
        block = self._blocks.get(block_type)
        if block is None or not block.access:
            return None
        if block.select_tool is not None:
            return block.select_tool({**params, "operation": operation})
        if operation and operation in block.access:
            return operation
        return block.access[0]


def transform_block_tool(
    tool_type: str,
    *,
    registry: ToolRegistry,
    operation: Optional[str] = None,
    params: Optional[Dict[str, object]] = None,
    usage_control: str = "auto",
) -> Optional[ProviderTool]:
    """Turn a block attached as a tool into a provider tool, or ``None`` if unknown."""
    params = dict(params or {})
    tool_id = registry.resolve_tool_id(tool_type, operation, params)
    if not tool_id:
        logger.warning("No tool registered for block type %s", tool_type)
        return None
    config = registry.get_tool(tool_id)
    if config is None:
        logger.warning("Tool %s for block type %s is not registered", tool_id, tool_type)
        return None

    return ProviderTool(
        id=config.id,
        name=config.name,
        description=config.description,
        parameters=filter_schema_for_llm(config.llm_schema(), params),
        params=params,
        usage_control=usage_control,
    )


default_registry = ToolRegistry()
default_registry.register_tool(
    ToolConfig(
        id="http_request",
        name="HTTP Request",
        description="Make an HTTP request to an external URL",
        params={
            "url": ToolParam(description="The URL to send the request to", required=True),
            "method": ToolParam(description="HTTP method (GET, POST, PUT, PATCH, DELETE)"),
            "headers": ToolParam(type="object", description="Request headers"),
            "body": ToolParam(type="object", description="Request body"),
        },
    )
)
default_registry.register_block(BlockToolConfig(block_type="api", access=["http_request"]))
