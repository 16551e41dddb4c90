from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from flowsmith_ai.executor.utils.http import create_internal_token
from flowsmith_ai.repos.sql import build_sql_repos, create_all, create_sessionmaker

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class StubAgentHandler:
    """Agent handler double returning a canned result or raising ``error``."""

    def __init__(self) -> None:
        self.result: Any = {"content": "Hello there", "model": "gpt-4o"}
        self.error: Optional[BaseException] = None
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, ctx, block, inputs):
        self.calls.append({"ctx": ctx, "block": block, "inputs": inputs})
        if self.error is not None:
            raise self.error
        return self.result


@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repos(test_engine):
    return build_sql_repos(session_factory=create_sessionmaker(test_engine))


@pytest.fixture
def agent_handler() -> StubAgentHandler:
    return StubAgentHandler()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_internal_token('user-1')}"}


@pytest_asyncio.fixture(name="client")
async def client_fixture(repos, agent_handler) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with overridden repository and handler dependencies."""
    from flowsmith_ai.server.main import app
    from flowsmith_ai.server.services.agent import get_agent_handler, get_repos

    app.dependency_overrides[get_repos] = lambda: repos
    app.dependency_overrides[get_agent_handler] = lambda: agent_handler

    # Unhandled errors are answered by the global handler, then re-raised by Starlette.
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://localhost") as client:
        yield client

    app.dependency_overrides.clear()
