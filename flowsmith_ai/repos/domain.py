"""Persistence-facing domain records used by the agent executor."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from ..core.schemas import BaseSchema


class McpServer(BaseSchema):
    id: str
    workspace_id: str
    name: str
    url: Optional[str] = None
    transport: str = "streamable-http"
    connection_status: str = "disconnected"
    enabled: bool = True
    deleted_at: Optional[datetime] = None


class ExecutionLog(BaseSchema):
    id: str
    workflow_id: str
    execution_id: Optional[str] = None
    conversation_id: Optional[str] = None
    status: str = "running"
    initial_input: Optional[str] = None
    final_chat_output: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None


class OAuthAccount(BaseSchema):
    """A stored OAuth credential (for example a Vertex AI service login)."""

    id: str
    user_id: str
    provider_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    scope: Optional[str] = None


class Skill(BaseSchema):
    id: str
    workspace_id: str
    name: str
    description: str = ""
    content: str = ""


class PermissionGroupConfig(BaseSchema):
    """Restrictions applied to members of a permission group.

    ``None`` for an allow-list means no restriction.
    """

    id: str
    name: str = ""
    allowed_model_providers: Optional[List[str]] = None
    allowed_integrations: Optional[List[str]] = None
    disable_mcp_tools: bool = False
    disable_custom_tools: bool = False
    disable_skills: bool = False
    member_user_ids: List[str] = Field(default_factory=list)
