from __future__ import annotations

"""SQLAlchemy ORM models for executor persistence.

These ORM models define the SQL schema used by ``flowsmith_ai.repos.sql``.
JSON columns use JSONB on PostgreSQL and plain JSON elsewhere so the same
metadata can be created on SQLite in tests.

Table names are prefixed with ``fs_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class McpServerRow(Base):
    """Row model for ``fs_mcp_servers``."""

    __tablename__ = "fs_mcp_servers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(256))
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transport: Mapped[str] = mapped_column(String(32), default="streamable-http")
    connection_status: Mapped[str] = mapped_column(String(32), default="disconnected")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ExecutionLogRow(Base):
    """Row model for ``fs_workflow_execution_logs``.

    ``initial_input`` and ``final_chat_output`` hold the user message and the
    streamed or buffered answer of a chat execution.
    """

    __tablename__ = "fs_workflow_execution_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workflow_id: Mapped[str] = mapped_column(String(64), index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    status: Mapped[str] = mapped_column(String(32))
    initial_input: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_chat_output: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AccountRow(Base):
    """Row model for ``fs_accounts`` (OAuth credentials)."""

    __tablename__ = "fs_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    provider_id: Mapped[str] = mapped_column(String(64))
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    access_token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SkillRow(Base):
    """Row model for ``fs_skills``."""

    __tablename__ = "fs_skills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(128))
    description: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[str] = mapped_column(Text, default="")


class PermissionGroupRow(Base):
    """Row model for ``fs_permission_groups``.

    ``config`` stores the allow-lists and feature switches; ``member_user_ids``
    lists the users the group applies to.
    """

    __tablename__ = "fs_permission_groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    config: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    member_user_ids: Mapped[List[str]] = mapped_column(JsonType, default=list)
