from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides the SQL-backed implementations of the repository
interfaces defined in ``flowsmith_ai.repos.interfaces``.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (tests and local development).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits before returning.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .domain import ExecutionLog, McpServer, OAuthAccount, PermissionGroupConfig, Skill
from .interfaces import (
    CredentialRepository,
    ExecutionLogRepository,
    McpServerRepository,
    PermissionConfigRepository,
    SkillRepository,
)
from .models import (
    AccountRow,
    Base,
    ExecutionLogRow,
    McpServerRow,
    PermissionGroupRow,
    SkillRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are rewritten to use the asyncpg driver, for example
    ``postgresql://`` becomes ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("postgresql+asyncpg://"):
        return create_async_engine(url, pool_pre_ping=True)
    return create_async_engine(url)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _server_from_row(row: McpServerRow) -> McpServer:
    return McpServer(
        id=row.id,
        workspace_id=row.workspace_id,
        name=row.name,
        url=row.url,
        transport=row.transport,
        connection_status=row.connection_status,
        enabled=row.enabled,
        deleted_at=row.deleted_at,
    )


@dataclass(frozen=True)
class SqlMcpServerRepository(McpServerRepository):
    session_factory: async_sessionmaker[AsyncSession]

    async def upsert(self, server: McpServer) -> None:
        async with self.session_factory() as s:
            row = await s.get(McpServerRow, server.id)
            if row is None:
                row = McpServerRow(id=server.id)
                s.add(row)
            row.workspace_id = server.workspace_id
            row.name = server.name
            row.url = server.url
            row.transport = server.transport
            row.connection_status = server.connection_status
            row.enabled = server.enabled
            row.deleted_at = server.deleted_at
            await s.commit()

    async def get(self, server_id: str) -> Optional[McpServer]:
        async with self.session_factory() as s:
            row = await s.get(McpServerRow, server_id)
            return _server_from_row(row) if row is not None else None

    async def list_active(self, workspace_id: str, server_ids: Sequence[str]) -> list[McpServer]:
        if not server_ids:
            return []
        async with self.session_factory() as s:
            stmt = select(McpServerRow).where(
                McpServerRow.workspace_id == workspace_id,
                McpServerRow.id.in_(list(server_ids)),
                McpServerRow.deleted_at.is_(None),
            )
            result = await s.execute(stmt)
            return [_server_from_row(r) for r in result.scalars().all()]


@dataclass(frozen=True)
class SqlExecutionLogRepository(ExecutionLogRepository):
    session_factory: async_sessionmaker[AsyncSession]

    async def add(self, log: ExecutionLog) -> None:
        async with self.session_factory() as s:
            s.add(
                ExecutionLogRow(
                    id=log.id,
                    workflow_id=log.workflow_id,
                    execution_id=log.execution_id,
                    conversation_id=log.conversation_id,
                    status=log.status,
                    initial_input=log.initial_input,
                    final_chat_output=log.final_chat_output,
                    started_at=log.started_at,
                    ended_at=log.ended_at,
                )
            )
            await s.commit()

    async def latest_completed_for_conversation(self, conversation_id: str) -> Optional[ExecutionLog]:
        async with self.session_factory() as s:
            stmt = (
                select(ExecutionLogRow)
                .where(
                    ExecutionLogRow.conversation_id == conversation_id,
                    ExecutionLogRow.status == "completed",
                    ExecutionLogRow.initial_input.is_not(None),
                    ExecutionLogRow.final_chat_output.is_not(None),
                )
                .order_by(ExecutionLogRow.started_at.desc())
                .limit(1)
            )
            row = (await s.execute(stmt)).scalars().first()
            if row is None:
                return None
            return ExecutionLog(
                id=row.id,
                workflow_id=row.workflow_id,
                execution_id=row.execution_id,
                conversation_id=row.conversation_id,
                status=row.status,
                initial_input=row.initial_input,
                final_chat_output=row.final_chat_output,
                started_at=row.started_at,
                ended_at=row.ended_at,
            )


def _account_from_row(row: AccountRow) -> OAuthAccount:
    return OAuthAccount(
        id=row.id,
        user_id=row.user_id,
        provider_id=row.provider_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        access_token_expires_at=row.access_token_expires_at,
        scope=row.scope,
    )


@dataclass(frozen=True)
class SqlCredentialRepository(CredentialRepository):
    session_factory: async_sessionmaker[AsyncSession]

    async def add(self, account: OAuthAccount) -> None:
        async with self.session_factory() as s:
            s.add(
                AccountRow(
                    id=account.id,
                    user_id=account.user_id,
                    provider_id=account.provider_id,
                    access_token=account.access_token,
                    refresh_token=account.refresh_token,
                    access_token_expires_at=account.access_token_expires_at,
                    scope=account.scope,
                )
            )
            await s.commit()

    async def get(self, credential_id: str) -> Optional[OAuthAccount]:
        async with self.session_factory() as s:
            row = await s.get(AccountRow, credential_id)
            return _account_from_row(row) if row is not None else None

    async def update_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as s:
            row = await s.get(AccountRow, credential_id)
            if row is None:
                return
            row.access_token = access_token
            row.access_token_expires_at = expires_at
            if refresh_token:
                row.refresh_token = refresh_token
            await s.commit()


@dataclass(frozen=True)
class SqlSkillRepository(SkillRepository):
    session_factory: async_sessionmaker[AsyncSession]

    async def add(self, skill: Skill) -> None:
        async with self.session_factory() as s:
            s.add(
                SkillRow(
                    id=skill.id,
                    workspace_id=skill.workspace_id,
                    name=skill.name,
                    description=skill.description,
                    content=skill.content,
                )
            )
            await s.commit()

    async def list_for_workspace(
        self,
        workspace_id: str,
        *,
        ids: Optional[Sequence[str]] = None,
        names: Optional[Sequence[str]] = None,
    ) -> list[Skill]:
        async with self.session_factory() as s:
            stmt = select(SkillRow).where(SkillRow.workspace_id == workspace_id)
            if ids is not None:
                stmt = stmt.where(SkillRow.id.in_(list(ids)))
            if names is not None:
                stmt = stmt.where(SkillRow.name.in_(list(names)))
            rows = (await s.execute(stmt.order_by(SkillRow.name))).scalars().all()
            return [
                Skill(
                    id=r.id,
                    workspace_id=r.workspace_id,
                    name=r.name,
                    description=r.description,
                    content=r.content,
                )
                for r in rows
            ]


@dataclass(frozen=True)
class SqlPermissionConfigRepository(PermissionConfigRepository):
    session_factory: async_sessionmaker[AsyncSession]

    async def upsert(self, config: PermissionGroupConfig) -> None:
        async with self.session_factory() as s:
            row = await s.get(PermissionGroupRow, config.id)
            if row is None:
                row = PermissionGroupRow(id=config.id)
                s.add(row)
            row.name = config.name
            row.config = config.model_dump(
                include={
                    "allowed_model_providers",
                    "allowed_integrations",
                    "disable_mcp_tools",
                    "disable_custom_tools",
                    "disable_skills",
                }
            )
            row.member_user_ids = list(config.member_user_ids)
            await s.commit()

    async def get_for_user(self, user_id: str) -> Optional[PermissionGroupConfig]:
        # Membership lives in a JSON column; filtering happens in Python to stay
        # portable across Postgres and SQLite.
        async with self.session_factory() as s:
            rows = (await s.execute(select(PermissionGroupRow).order_by(PermissionGroupRow.id))).scalars().all()
            for row in rows:
                if user_id in (row.member_user_ids or []):
                    return PermissionGroupConfig(
                        id=row.id,
                        name=row.name,
                        member_user_ids=list(row.member_user_ids or []),
                        **(row.config or {}),
                    )
            return None


@dataclass(frozen=True)
class SqlRepoBundle:
    """Container of all SQL repository implementations."""

    mcp_servers: SqlMcpServerRepository
    execution_logs: SqlExecutionLogRepository
    credentials: SqlCredentialRepository
    skills: SqlSkillRepository
    permissions: SqlPermissionConfigRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build all SQL repository implementations sharing one session factory."""
    return SqlRepoBundle(
        mcp_servers=SqlMcpServerRepository(session_factory),
        execution_logs=SqlExecutionLogRepository(session_factory),
        credentials=SqlCredentialRepository(session_factory),
        skills=SqlSkillRepository(session_factory),
        permissions=SqlPermissionConfigRepository(session_factory),
    )
