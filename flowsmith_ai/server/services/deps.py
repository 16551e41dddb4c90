"""
Service Dependencies.

Annotated dependencies giving API endpoints the agent handler and the SQL
repositories.
"""

from typing import Annotated

from fastapi import Depends

from flowsmith_ai.executor.handlers.agent.agent_handler import AgentBlockHandler
from flowsmith_ai.repos.sql import SqlRepoBundle
from flowsmith_ai.server.services.agent import get_agent_handler, get_repos

AgentHandlerDep = Annotated[AgentBlockHandler, Depends(get_agent_handler)]
ReposDep = Annotated[SqlRepoBundle, Depends(get_repos)]
