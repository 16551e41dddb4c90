"""
Agent Handler Service.

Builds the Agent block handler wired against the SQL repositories and the
configured external services, and keeps it as a process-wide singleton.
"""

from typing import Optional

from flowsmith_ai.access_control.permissions import PermissionChecker
from flowsmith_ai.core.logging_config import get_logger
from flowsmith_ai.executor.handlers.agent.agent_handler import AgentBlockHandler
from flowsmith_ai.executor.handlers.agent.controller import ConversationController
from flowsmith_ai.executor.handlers.agent.mcp_tools import McpToolResolver
from flowsmith_ai.executor.handlers.agent.memory import MemoryService
from flowsmith_ai.executor.handlers.agent.skills import SkillResolver
from flowsmith_ai.executor.utils.http import InternalApiClient
from flowsmith_ai.memory_api.client import MemoryApiClient
from flowsmith_ai.repos.sql import SqlRepoBundle, build_sql_repos
from flowsmith_ai.server.core.config import settings
from flowsmith_ai.server.core.database import async_session_maker

logger = get_logger(__name__)


def build_agent_handler(repos: SqlRepoBundle, *, api: Optional[InternalApiClient] = None) -> AgentBlockHandler:
    api = api or InternalApiClient()
    controller = ConversationController(settings.controller.model) if settings.controller.enabled else None
    return AgentBlockHandler(
        memory=MemoryService(MemoryApiClient()),
        permissions=PermissionChecker(repos.permissions),
        mcp_tools=McpToolResolver(api=api, servers=repos.mcp_servers),
        skills=SkillResolver(repos.skills),
        controller=controller,
        execution_logs=repos.execution_logs,
        credentials=repos.credentials,
        api=api,
    )


_repos: Optional[SqlRepoBundle] = None
_handler: Optional[AgentBlockHandler] = None


def get_repos() -> SqlRepoBundle:
    global _repos
    if _repos is None:
        _repos = build_sql_repos(session_factory=async_session_maker)
    return _repos


def get_agent_handler() -> AgentBlockHandler:
    global _handler
    if _handler is None:
        logger.debug("Building agent block handler")
        _handler = build_agent_handler(get_repos())
    return _handler
