from __future__ import annotations

from typing import List

import pytest
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from flowsmith_ai.executor.handlers.agent.controller import ConversationController, build_history_context


def _answering(text: str, seen: List[str]) -> FunctionModel:
    def respond(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        for message in messages:
            for part in message.parts:
                if part.part_kind == "user-prompt":
                    seen.append(str(part.content))
        return ModelResponse(parts=[TextPart(text)])

    return FunctionModel(respond)


def test_build_history_context() -> None:
    history = build_history_context("What is MCP?", "A protocol.")
    assert history == (
        "\n\nLast Conversation Data(this should be used for answernig FOLLOW-UP QUESTIONS)- "
        "\nUser: What is MCP?\nAssistant: A protocol."
    )


@pytest.mark.asyncio
async def test_skip_decision() -> None:
    seen: List[str] = []
    controller = ConversationController(_answering(" skip\n", seen))

    assert await controller.should_run("history", "make it shorter") is False
    assert "Current User Input: make it shorter" in seen[0]


@pytest.mark.asyncio
async def test_run_decision() -> None:
    controller = ConversationController(_answering("RUN", []))
    assert await controller.should_run("history", "now tell me about databases") is True


@pytest.mark.asyncio
async def test_unexpected_answer_means_run() -> None:
    controller = ConversationController(_answering("maybe", []))
    assert await controller.should_run("", "hi") is True


@pytest.mark.asyncio
async def test_model_failure_means_run() -> None:
    def boom(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise RuntimeError("model unavailable")

    controller = ConversationController(FunctionModel(boom))
    assert await controller.should_run("", "hi") is True
