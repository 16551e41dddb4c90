"""Input and message models for the Agent block."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field

from ....core.schemas import BaseSchema

MessageRole = Literal["system", "user", "assistant"]
VALID_ROLES = ("system", "user", "assistant")


class Message(BaseSchema):
    role: MessageRole
    content: str
    execution_id: Optional[str] = None


class MemoryType(str, Enum):
    none = "none"
    conversation = "conversation"
    sliding_window = "sliding_window"
    sliding_window_tokens = "sliding_window_tokens"


class ToolInput(BaseSchema):
    """A tool attached to the Agent block in the builder UI.

    ``type`` is a block type for integration tools, ``custom-tool`` for user
    defined functions and ``mcp`` for tools hosted on an MCP server.
    """

    type: Optional[str] = None
    title: Optional[str] = None
    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    code: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    usage_control: Literal["auto", "force", "none"] = "auto"
    operation: Optional[str] = None
    custom_tool_id: Optional[str] = None
    timeout: Optional[int] = None


class SkillInput(BaseSchema):
    skill_id: Optional[str] = None
    name: Optional[str] = None


class AgentInputs(BaseSchema):
    model: Optional[str] = None
    system_prompt: Optional[Any] = None
    user_prompt: Optional[Union[str, Dict[str, Any]]] = None
    messages: Optional[List[Any]] = None
    memories: Optional[Any] = None

    memory_type: Optional[MemoryType] = None
    sliding_window_size: Optional[int] = None
    sliding_window_tokens: Optional[int] = None
    conversation_id: Optional[str] = None

    tools: List[ToolInput] = Field(default_factory=list)
    skills: List[SkillInput] = Field(default_factory=list)
    response_format: Optional[Union[str, Dict[str, Any]]] = None

    temperature: Optional[Union[float, str]] = None
    max_tokens: Optional[Union[int, str]] = None

    api_key: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_api_version: Optional[str] = None
    vertex_project: Optional[str] = None
    vertex_location: Optional[str] = None
    vertex_credential: Optional[str] = None
    bedrock_access_key_id: Optional[str] = None
    bedrock_secret_key: Optional[str] = None
    bedrock_region: Optional[str] = None

    reasoning_effort: Optional[str] = None
    verbosity: Optional[str] = None
    thinking_level: Optional[str] = None
    previous_interaction_id: Optional[str] = None

    @property
    def memory_enabled(self) -> bool:
        return self.memory_type is not None and self.memory_type != MemoryType.none


class StreamingConfig(BaseSchema):
    should_use_streaming: bool = False
    is_block_selected_for_output: bool = False
    has_outgoing_connections: bool = False


class SkillMetadata(BaseSchema):
    name: str
    description: str = ""
