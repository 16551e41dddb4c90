from types import SimpleNamespace

from flowsmith_ai.executor.handlers.agent.agent_handler import AgentBlockHandler
from flowsmith_ai.executor.handlers.agent.controller import ConversationController
from flowsmith_ai.server.core.config import ControllerConfig
from flowsmith_ai.server.services import agent as agent_service


def test_build_agent_handler_wires_repositories(repos):
    handler = agent_service.build_agent_handler(repos)

    assert isinstance(handler, AgentBlockHandler)
    assert handler._permissions._repository is repos.permissions
    assert handler._skills._repository is repos.skills
    assert handler._mcp._servers is repos.mcp_servers
    assert handler._execution_logs is repos.execution_logs
    assert handler._credentials is repos.credentials
    # CONTROLLER_ENABLED=false in the test environment
    assert handler._controller is None


def test_build_agent_handler_with_controller(monkeypatch, repos):
    config = ControllerConfig(CONTROLLER_MODEL="test", CONTROLLER_ENABLED=True)
    monkeypatch.setattr(agent_service, "settings", SimpleNamespace(controller=config))
    handler = agent_service.build_agent_handler(repos)
    assert isinstance(handler._controller, ConversationController)


def test_get_agent_handler_is_singleton(monkeypatch, repos):
    monkeypatch.setattr(agent_service, "_handler", None)
    monkeypatch.setattr(agent_service, "_repos", repos)

    first = agent_service.get_agent_handler()
    assert agent_service.get_agent_handler() is first
    assert agent_service.get_repos() is repos
