from __future__ import annotations

"""Repository interface contracts.

The agent executor depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions or transactions to
  callers.
- Lookups return ``None`` or an empty list when nothing matches; they do not
  raise for unknown ids.
"""

from datetime import datetime
from typing import Optional, Protocol, Sequence

from .domain import ExecutionLog, McpServer, OAuthAccount, PermissionGroupConfig, Skill


class McpServerRepository(Protocol):
    """Registered MCP servers per workspace."""

    async def upsert(self, server: McpServer) -> None: ...

    async def get(self, server_id: str) -> Optional[McpServer]: ...

    async def list_active(self, workspace_id: str, server_ids: Sequence[str]) -> list[McpServer]:
        """
        Return the non-deleted servers of ``workspace_id`` among ``server_ids``.

        Args:
            workspace_id: The owning workspace.
            server_ids: Candidate server ids.
        """
        ...


class ExecutionLogRepository(Protocol):
    """Workflow execution log, used to recover the previous chat turn."""

    async def add(self, log: ExecutionLog) -> None: ...

    async def latest_completed_for_conversation(self, conversation_id: str) -> Optional[ExecutionLog]:
        """
        Return the newest completed log of a conversation that has both an
        input and a chat output.

        Args:
            conversation_id: The conversation identifier.
        """
        ...


class CredentialRepository(Protocol):
    """OAuth accounts linked by users."""

    async def add(self, account: OAuthAccount) -> None: ...

    async def get(self, credential_id: str) -> Optional[OAuthAccount]: ...

    async def update_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        """
        Store refreshed tokens for a credential.

        A ``refresh_token`` of ``None`` keeps the stored one.
        """
        ...


class SkillRepository(Protocol):
    async def add(self, skill: Skill) -> None: ...

    async def list_for_workspace(
        self,
        workspace_id: str,
        *,
        ids: Optional[Sequence[str]] = None,
        names: Optional[Sequence[str]] = None,
    ) -> list[Skill]: ...


class PermissionConfigRepository(Protocol):
    async def upsert(self, config: PermissionGroupConfig) -> None: ...

    async def get_for_user(self, user_id: str) -> Optional[PermissionGroupConfig]:
        """Return the permission group of ``user_id``, or ``None`` when ungrouped."""
        ...
