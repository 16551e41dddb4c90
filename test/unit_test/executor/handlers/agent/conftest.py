from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence

import pytest

from flowsmith_ai.executor.types import ExecutionContext, ExecutionMetadata
from flowsmith_ai.providers.executor import ProviderRequest, ProviderResponse
from flowsmith_ai.repos.domain import ExecutionLog, McpServer, OAuthAccount, PermissionGroupConfig, Skill


class FakeMemoryClient:
    """In-memory stand-in for ``MemoryApiClient``."""

    def __init__(self, search_results: Optional[Dict[str, Any]] = None) -> None:
        self.search_results = search_results or {}
        self.stored: List[Dict[str, Any]] = []
        self.searches: List[Dict[str, Any]] = []

    async def store(
        self,
        request_id: str,
        messages: List[Dict[str, str]],
        user_id: str,
        chat_id: str,
        conversation_id: Optional[str],
        infer: bool,
        memory_type: str,
        block_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.stored.append(
            {
                "messages": messages,
                "user_id": user_id,
                "chat_id": chat_id,
                "conversation_id": conversation_id,
                "infer": infer,
                "memory_type": memory_type,
                "block_id": block_id,
            }
        )

    async def search(
        self,
        request_id: str,
        query: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> Optional[Any]:
        self.searches.append({"query": query, "user_id": user_id, "filters": filters})
        return self.search_results.get((filters or {}).get("memory_type"))


class FakeExecutionLogs:
    def __init__(self, latest: Optional[ExecutionLog] = None) -> None:
        self.latest = latest

    async def add(self, log: ExecutionLog) -> None:
        self.latest = log

    async def latest_completed_for_conversation(self, conversation_id: str) -> Optional[ExecutionLog]:
        if self.latest is not None and self.latest.conversation_id == conversation_id:
            return self.latest
        return None


class FakeCredentials:
    def __init__(self, accounts: Sequence[OAuthAccount] = ()) -> None:
        self.accounts = {a.id: a for a in accounts}
        self.updates: List[Dict[str, Any]] = []

    async def add(self, account: OAuthAccount) -> None:
        self.accounts[account.id] = account

    async def get(self, credential_id: str) -> Optional[OAuthAccount]:
        return self.accounts.get(credential_id)

    async def update_tokens(self, credential_id: str, **kwargs: Any) -> None:
        self.updates.append({"credential_id": credential_id, **kwargs})


class FakeSkills:
    def __init__(self, skills: Sequence[Skill] = ()) -> None:
        self.skills = list(skills)

    async def add(self, skill: Skill) -> None:
        self.skills.append(skill)

    async def list_for_workspace(
        self,
        workspace_id: str,
        *,
        ids: Optional[Sequence[str]] = None,
        names: Optional[Sequence[str]] = None,
    ) -> List[Skill]:
        return [
            s
            for s in self.skills
            if s.workspace_id == workspace_id
            and (ids is None or s.id in ids)
            and (names is None or s.name in names)
        ]


class FakePermissions:
    def __init__(self, config: Optional[PermissionGroupConfig] = None) -> None:
        self.config = config

    async def upsert(self, config: PermissionGroupConfig) -> None:
        self.config = config

    async def get_for_user(self, user_id: str) -> Optional[PermissionGroupConfig]:
        if self.config is not None and user_id in self.config.member_user_ids:
            return self.config
        return None


class FakeMcpServers:
    def __init__(self, servers: Sequence[McpServer] = (), error: Optional[Exception] = None) -> None:
        self.servers = list(servers)
        self.error = error

    async def upsert(self, server: McpServer) -> None:
        self.servers.append(server)

    async def get(self, server_id: str) -> Optional[McpServer]:
        return next((s for s in self.servers if s.id == server_id), None)

    async def list_active(self, workspace_id: str, server_ids: Sequence[str]) -> List[McpServer]:
        if self.error is not None:
            raise self.error
        return [s for s in self.servers if s.workspace_id == workspace_id and s.id in server_ids]


class RecordingExecutor:
    """Provider executor double returning a canned response."""

    def __init__(self, response: Any = None, error: Optional[BaseException] = None) -> None:
        self.response = response or ProviderResponse(content="Hello there", model="gpt-4o")
        self.error = error
        self.calls: List[tuple] = []

    async def execute(self, provider_id: str, request: ProviderRequest) -> Any:
        self.calls.append((provider_id, request))
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def last_request(self) -> ProviderRequest:
        return self.calls[-1][1]


@pytest.fixture
def chat_ctx() -> ExecutionContext:
    return ExecutionContext(
        workflow_id="wf-1",
        workspace_id="ws-1",
        user_id="user-1",
        execution_id="exec-1",
        metadata=ExecutionMetadata(trigger_type="chat"),
    )


@pytest.fixture
def api_ctx() -> ExecutionContext:
    return ExecutionContext(
        workflow_id="wf-1",
        workspace_id="ws-1",
        user_id="user-1",
        execution_id="exec-1",
        metadata=ExecutionMetadata(trigger_type="api"),
    )


@pytest.fixture
def fakes() -> SimpleNamespace:
    return SimpleNamespace(
        MemoryClient=FakeMemoryClient,
        ExecutionLogs=FakeExecutionLogs,
        Credentials=FakeCredentials,
        Skills=FakeSkills,
        Permissions=FakePermissions,
        McpServers=FakeMcpServers,
        Executor=RecordingExecutor,
    )
