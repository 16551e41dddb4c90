from __future__ import annotations

from typing import Any, Dict, List

import pytest
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from flowsmith_ai.executor.types import StreamingExecution
from flowsmith_ai.providers.executor import (
    ProviderExecutor,
    ProviderRequest,
    ProviderResponse,
    ProviderTool,
    build_model_settings,
    default_model_factory,
    to_model_messages,
)


def _executor(model: FunctionModel, **kwargs: Any) -> ProviderExecutor:
    return ProviderExecutor(model_factory=lambda provider_id, request: model, **kwargs)


def _has_tool_return(messages: List[ModelMessage]) -> bool:
    return any(isinstance(p, ToolReturnPart) for p in messages[-1].parts)


def test_to_model_messages_splits_prompt_and_history() -> None:
    history, prompt = to_model_messages(
        [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "how are you?"},
        ]
    )

    assert prompt == "how are you?"
    assert len(history) == 2
    assert isinstance(history[0], ModelRequest)
    assert isinstance(history[0].parts[0], SystemPromptPart)
    assert isinstance(history[0].parts[1], UserPromptPart)
    assert isinstance(history[1], ModelResponse)
    assert history[1].parts[0].content == "hello"


def test_to_model_messages_without_trailing_user() -> None:
    history, prompt = to_model_messages([{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}])
    assert prompt is None
    assert len(history) == 2


def test_default_model_factory_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError):
        default_model_factory("bedrock", ProviderRequest(model="anthropic.claude"))


@pytest.mark.asyncio
async def test_execute_returns_content_and_usage() -> None:
    seen: Dict[str, Any] = {}

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen["parts"] = [p for m in messages for p in m.parts]
        seen["settings"] = info.model_settings
        return ModelResponse(parts=[TextPart("Paris")])

    request = ProviderRequest(
        model="gpt-4o",
        messages=[{"role": "system", "content": "geo bot"}, {"role": "user", "content": "Capital of France?"}],
        temperature=0.2,
        max_tokens=50,
    )
    response = await _executor(FunctionModel(model_fn)).execute("openai", request)

    assert isinstance(response, ProviderResponse)
    assert response.content == "Paris"
    assert response.model == "gpt-4o"
    assert set(response.tokens) == {"input", "output", "total"}
    assert response.tokens["total"] >= response.tokens["output"]
    assert {"startTime", "endTime", "duration"} <= set(response.timing)
    assert any(isinstance(p, SystemPromptPart) and p.content == "geo bot" for p in seen["parts"])
    assert any(isinstance(p, UserPromptPart) and p.content == "Capital of France?" for p in seen["parts"])
    assert seen["settings"]["temperature"] == 0.2
    assert seen["settings"]["max_tokens"] == 50


@pytest.mark.asyncio
async def test_execute_with_context_and_system_prompt_when_no_messages() -> None:
    seen: Dict[str, Any] = {}

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen["parts"] = [p for m in messages for p in m.parts]
        return ModelResponse(parts=[TextPart("ok")])

    request = ProviderRequest(model="gpt-4o", system_prompt="sys", context="raw context")
    await _executor(FunctionModel(model_fn)).execute("openai", request)

    assert any(isinstance(p, SystemPromptPart) and p.content == "sys" for p in seen["parts"])
    assert any(isinstance(p, UserPromptPart) and p.content == "raw context" for p in seen["parts"])


@pytest.mark.asyncio
async def test_tool_calls_merge_user_params_and_are_recorded() -> None:
    received: List[Dict[str, Any]] = []

    async def add(params: Dict[str, Any]) -> Dict[str, Any]:
        received.append(params)
        return {"sum": params["a"] + params["b"]}

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        if _has_tool_return(messages):
            return ModelResponse(parts=[TextPart("done")])
        assert [t.name for t in info.function_tools] == ["custom_adder"]
        return ModelResponse(parts=[ToolCallPart(tool_name="custom_adder", args={"a": 2})])

    tool = ProviderTool(
        id="custom_adder",
        name="adder",
        parameters={"type": "object", "properties": {"a": {"type": "integer"}}, "required": ["a"]},
        params={"b": 40},
        execute_function=add,
    )
    request = ProviderRequest(model="gpt-4o", messages=[{"role": "user", "content": "add"}], tools=[tool])
    response = await _executor(FunctionModel(model_fn)).execute("openai", request)

    assert response.content == "done"
    assert received == [{"a": 2, "b": 40}]
    assert len(response.tool_calls) == 1
    call = response.tool_calls[0]
    assert call["name"] == "custom_adder"
    assert call["arguments"] == {"a": 2}
    assert call["result"] == {"sum": 42}
    assert {"startTime", "endTime", "duration"} <= set(call)


@pytest.mark.asyncio
async def test_failing_tool_is_reported_to_model_not_raised() -> None:
    async def broken(params: Dict[str, Any]) -> Any:
        raise RuntimeError("tool exploded")

    returned: List[Any] = []

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        if _has_tool_return(messages):
            returned.extend(p.content for p in messages[-1].parts if isinstance(p, ToolReturnPart))
            return ModelResponse(parts=[TextPart("sorry")])
        return ModelResponse(parts=[ToolCallPart(tool_name="custom_broken", args={})])

    tool = ProviderTool(id="custom_broken", name="broken", execute_function=broken)
    request = ProviderRequest(model="gpt-4o", messages=[{"role": "user", "content": "go"}], tools=[tool])
    response = await _executor(FunctionModel(model_fn)).execute("openai", request)

    assert response.content == "sorry"
    assert returned == [{"success": False, "error": "tool exploded"}]
    assert response.tool_calls[0]["error"] == "tool exploded"


@pytest.mark.asyncio
async def test_tools_without_function_use_tool_runner() -> None:
    runner_calls: List[Any] = []

    async def runner(tool_id: str, params: Dict[str, Any], request: ProviderRequest) -> Any:
        runner_calls.append((tool_id, params, request.workflow_id))
        return {"status": 200}

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        if _has_tool_return(messages):
            return ModelResponse(parts=[TextPart("fetched")])
        return ModelResponse(parts=[ToolCallPart(tool_name="http_request", args={"url": "http://x"})])

    tool = ProviderTool(id="http_request", name="HTTP", params={"method": "GET"})
    request = ProviderRequest(
        model="gpt-4o", messages=[{"role": "user", "content": "go"}], tools=[tool], workflow_id="wf-1"
    )
    await _executor(FunctionModel(model_fn), tool_runner=runner).execute("openai", request)

    assert runner_calls == [("http_request", {"url": "http://x", "method": "GET"}, "wf-1")]


@pytest.mark.asyncio
async def test_tools_with_usage_control_none_are_not_offered() -> None:
    offered: List[str] = []

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        offered.extend(t.name for t in info.function_tools)
        return ModelResponse(parts=[TextPart("ok")])

    tools = [
        ProviderTool(id="a", name="a", usage_control="none"),
        ProviderTool(id="b", name="b"),
    ]
    request = ProviderRequest(model="gpt-4o", messages=[{"role": "user", "content": "go"}], tools=tools)
    await _executor(FunctionModel(model_fn)).execute("openai", request)
    assert offered == ["b"]


@pytest.mark.asyncio
async def test_stream_yields_chunks_and_fills_execution() -> None:
    async def stream_fn(messages: List[ModelMessage], info: AgentInfo):
        yield "Hel"
        yield "lo"

    request = ProviderRequest(model="gpt-4o", messages=[{"role": "user", "content": "hi"}], stream=True)
    result = await _executor(FunctionModel(stream_function=stream_fn)).execute("openai", request)

    assert isinstance(result, StreamingExecution)
    chunks = [chunk async for chunk in result.stream]
    assert b"".join(chunks) == b"Hello"
    output = result.execution["output"]
    assert output["content"] == "Hello"
    assert output["model"] == "gpt-4o"
    assert output["toolCalls"] == {"list": [], "count": 0}
    assert "endTime" in result.execution["metadata"]


@pytest.mark.asyncio
async def test_reasoning_options_reach_openai_model_settings() -> None:
    seen: Dict[str, Any] = {}

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen["settings"] = info.model_settings
        return ModelResponse(parts=[TextPart("ok")])

    request = ProviderRequest(
        model="gpt-5",
        messages=[{"role": "user", "content": "think"}],
        temperature=0.2,
        reasoning_effort="high",
        verbosity="low",
    )
    response = await _executor(FunctionModel(model_fn)).execute("openai", request)

    assert response.content == "ok"
    assert response.tokens["total"] >= 0
    assert seen["settings"]["temperature"] == 0.2
    assert seen["settings"]["openai_reasoning_effort"] == "high"
    assert seen["settings"]["openai_text_verbosity"] == "low"


def test_reasoning_options_are_not_sent_to_other_providers() -> None:
    request = ProviderRequest(
        model="claude-sonnet-4-5",
        reasoning_effort="high",
        verbosity="low",
        thinking_level="high",
        previous_interaction_id="resp-1",
    )
    assert build_model_settings("anthropic", request) == {}


def test_azure_openai_gets_openai_settings() -> None:
    request = ProviderRequest(model="azure/gpt-4o", max_tokens=64, reasoning_effort="low")
    assert build_model_settings("azure-openai", request) == {"max_tokens": 64, "openai_reasoning_effort": "low"}


@pytest.mark.asyncio
async def test_buffered_response_carries_provider_response_id() -> None:
    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        return ModelResponse(parts=[TextPart("ok")], provider_response_id="resp-42")

    request = ProviderRequest(model="gpt-4o", messages=[{"role": "user", "content": "hi"}])
    response = await _executor(FunctionModel(model_fn)).execute("openai", request)

    assert response.interaction_id == "resp-42"
