"""Provider request execution on top of pydantic-ai.

``execute_provider_request`` is the single entry point block handlers use to
call an LLM. It:

- converts the handler's role/content messages into pydantic-ai message
  history,
- bridges provider tools (custom, MCP, block and skill tools) into
  ``pydantic_ai.Tool`` objects and records every call,
- returns a buffered ``ProviderResponse`` or, when ``stream`` is set, a
  ``StreamingExecution`` whose output is completed when the stream finishes.

Typical usage:
    request = ProviderRequest(model="gpt-4o", messages=[{"role": "user", "content": "hi"}])
    response = await execute_provider_request("openai", request)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic_ai import Agent, Tool
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from ..executor.constants import DEFAULTS
from ..executor.types import StreamingExecution
from ..tools.params import merge_tool_parameters
from .models import strip_provider_prefix

logger = logging.getLogger(__name__)

ToolFunction = Callable[[Dict[str, Any]], Awaitable[Any]]
ToolRunner = Callable[[str, Dict[str, Any], "ProviderRequest"], Awaitable[Any]]
ModelFactory = Callable[[str, "ProviderRequest"], Model]

OPENAI_PROVIDERS = ("openai", "azure-openai")


@dataclass
class ProviderTool:
    """A tool definition exposed to the model.

    ``params`` holds values the user fixed in the builder; they are merged into
    every call. ``execute_function`` runs the tool locally; tools without one
    are executed through the tool runner by ``id``.
    """

    id: str
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    params: Dict[str, Any] = field(default_factory=dict)
    usage_control: str = "auto"
    execute_function: Optional[ToolFunction] = None


@dataclass
class ProviderRequest:
    model: str
    system_prompt: Optional[str] = None
    context: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None
    tools: List[ProviderTool] = field(default_factory=list)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    api_key: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_api_version: Optional[str] = None
    vertex_project: Optional[str] = None
    vertex_location: Optional[str] = None
    response_format: Optional[Dict[str, Any]] = None
    workflow_id: Optional[str] = None
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    stream: bool = False
    environment_variables: Dict[str, str] = field(default_factory=dict)
    workflow_variables: Dict[str, Any] = field(default_factory=dict)
    block_data: Dict[str, Any] = field(default_factory=dict)
    block_name_mapping: Dict[str, str] = field(default_factory=dict)
    is_deployed_context: bool = False
    reasoning_effort: Optional[str] = None
    verbosity: Optional[str] = None
    thinking_level: Optional[str] = None
    previous_interaction_id: Optional[str] = None


@dataclass
class ProviderResponse:
    content: str
    model: str
    tokens: Dict[str, int] = field(default_factory=dict)
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    timing: Dict[str, Any] = field(default_factory=dict)
    cost: Optional[Dict[str, Any]] = None
    interaction_id: Optional[str] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_model_factory(provider_id: str, request: ProviderRequest) -> Model:
    """Build the pydantic-ai model for ``provider_id``.

    Provider SDK modules are imported lazily so that only the providers that
    are actually used need their client libraries configured.
    """
    from ..server.core.config import settings

    model_name = strip_provider_prefix(request.model)

    if provider_id == "openai":
        from pydantic_ai.models.openai import OpenAIResponsesModel
        from pydantic_ai.providers.openai import OpenAIProvider

        provider = OpenAIProvider(
            api_key=request.api_key or settings.openai.api_key,
            base_url=settings.openai.base_url,
        )
        return OpenAIResponsesModel(model_name, provider=provider)

    if provider_id == "azure-openai":
        from pydantic_ai.models.openai import OpenAIResponsesModel
        from pydantic_ai.providers.azure import AzureProvider

        provider = AzureProvider(
            azure_endpoint=request.azure_endpoint,
            api_version=request.azure_api_version,
            api_key=request.api_key,
        )
        return OpenAIResponsesModel(model_name, provider=provider)

    if provider_id == "anthropic":
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=request.api_key or settings.anthropic.api_key))

    if provider_id == "google":
        from pydantic_ai.models.google import GoogleModel
        from pydantic_ai.providers.google import GoogleProvider

        return GoogleModel(model_name, provider=GoogleProvider(api_key=request.api_key or settings.google.api_key))

    if provider_id == "vertex":
        from google.oauth2.credentials import Credentials
        from pydantic_ai.models.google import GoogleModel
        from pydantic_ai.providers.google import GoogleProvider

        provider = GoogleProvider(
            credentials=Credentials(token=request.api_key),
            project=request.vertex_project,
            location=request.vertex_location,
        )
        return GoogleModel(model_name, provider=provider)

    raise ValueError(f"Unsupported provider: {provider_id}")


def to_model_messages(messages: List[Dict[str, Any]]) -> Tuple[List[ModelMessage], Optional[str]]:
    """Split role/content messages into pydantic-ai history and the prompt.

    The trailing user message becomes the prompt. Consecutive system/user
    messages share one ``ModelRequest``; assistant messages become
    ``ModelResponse`` entries.
    """
    items = list(messages)
    prompt: Optional[str] = None
    if items and items[-1].get("role") == "user":
        prompt = str(items.pop().get("content") or "")

    history: List[ModelMessage] = []
    pending: List[Any] = []
    for msg in items:
        role = msg.get("role")
        content = str(msg.get("content") or "")
        if role == "system":
            pending.append(SystemPromptPart(content=content))
        elif role == "user":
            pending.append(UserPromptPart(content=content))
        elif role == "assistant":
            if pending:
                history.append(ModelRequest(parts=pending))
                pending = []
            history.append(ModelResponse(parts=[TextPart(content=content)]))
    if pending:
        history.append(ModelRequest(parts=pending))
    return history, prompt


def _usage_tokens(usage: Any) -> Dict[str, int]:
    if usage is None:
        return {
            "input": DEFAULTS.TOKENS.PROMPT,
            "output": DEFAULTS.TOKENS.COMPLETION,
            "total": DEFAULTS.TOKENS.TOTAL,
        }
    prompt_tokens = getattr(usage, "input_tokens", None)
    if prompt_tokens is None:
        prompt_tokens = getattr(usage, "request_tokens", None)
    completion_tokens = getattr(usage, "output_tokens", None)
    if completion_tokens is None:
        completion_tokens = getattr(usage, "response_tokens", None)
    prompt_tokens = int(prompt_tokens or 0)
    completion_tokens = int(completion_tokens or 0)
    total = getattr(usage, "total_tokens", None)
    return {
        "input": prompt_tokens,
        "output": completion_tokens,
        "total": int(total) if total else prompt_tokens + completion_tokens,
    }


def _run_usage(result: Any) -> Any:
    # ``usage`` is a method on pydantic-ai 1.x run results and a property on later releases.
    usage = getattr(result, "usage", None)
    return usage() if callable(usage) else usage


def _last_response(result: Any) -> Optional[ModelResponse]:
    for message in reversed(result.all_messages()):
        if isinstance(message, ModelResponse):
            return message
    return None


def _response_cost(response: Optional[ModelResponse]) -> Optional[Dict[str, float]]:
    if response is None or not response.model_name:
        return None
    try:
        price = response.cost()
    except LookupError as e:
        logger.debug("No price available for model %s: %s", response.model_name, e)
        return None
    return {
        "input": float(price.input_price),
        "output": float(price.output_price),
        "total": float(price.total_price),
    }


def build_model_settings(provider_id: str, request: ProviderRequest) -> Dict[str, Any]:
    """Translate request options into pydantic-ai model settings for ``provider_id``."""
    model_settings: Dict[str, Any] = {}
    if request.temperature is not None:
        model_settings["temperature"] = request.temperature
    if request.max_tokens is not None:
        model_settings["max_tokens"] = request.max_tokens

    if provider_id in OPENAI_PROVIDERS:
        if request.reasoning_effort:
            model_settings["openai_reasoning_effort"] = request.reasoning_effort
        if request.verbosity:
            model_settings["openai_text_verbosity"] = request.verbosity
    elif request.reasoning_effort or request.verbosity:
        logger.info(
            "Ignoring reasoning_effort=%s verbosity=%s for provider %s",
            request.reasoning_effort,
            request.verbosity,
            provider_id,
        )

    if request.thinking_level:
        logger.info("Ignoring thinking_level=%s for provider %s", request.thinking_level, provider_id)
    if request.previous_interaction_id:
        logger.info(
            "Ignoring previous_interaction_id=%s; the full message history is sent instead",
            request.previous_interaction_id,
        )
    return model_settings


async def _run_remote_tool(tool_id: str, params: Dict[str, Any], request: ProviderRequest) -> Any:
    from ..tools.execute import execute_tool

    result = await execute_tool(
        tool_id,
        {
            **params,
            "_context": {
                "workflowId": request.workflow_id,
                "workspaceId": request.workspace_id,
                "userId": request.user_id,
                "isDeployedContext": request.is_deployed_context,
            },
        },
    )
    if not result.success:
        return {"success": False, "error": result.error}
    return result.output


class ProviderExecutor:
    """Run provider requests through pydantic-ai agents."""

    def __init__(
        self,
        *,
        model_factory: Optional[ModelFactory] = None,
        tool_runner: Optional[ToolRunner] = None,
    ) -> None:
        self._model_factory = model_factory or default_model_factory
        self._tool_runner = tool_runner or _run_remote_tool

    def _bridge_tool(
        self, tool: ProviderTool, request: ProviderRequest, calls: List[Dict[str, Any]]
    ) -> Tool:
        async def _call(**kwargs: Any) -> Any:
            started = time.time()
            start_iso = _now_iso()
            merged = merge_tool_parameters(tool.params, kwargs)
            record: Dict[str, Any] = {"name": tool.id, "arguments": kwargs, "startTime": start_iso}
            try:
                if tool.execute_function is not None:
                    result = await tool.execute_function(merged)
                else:
                    result = await self._tool_runner(tool.id, merged, request)
                record["result"] = result
                return result
            except Exception as e:
                logger.warning("Tool %s failed: %s", tool.id, e)
                record["error"] = str(e)
                return {"success": False, "error": str(e)}
            finally:
                record["endTime"] = _now_iso()
                record["duration"] = int((time.time() - started) * 1000)
                calls.append(record)

        parameters = dict(tool.parameters or {})
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return Tool.from_schema(
            _call,
            name=tool.id,
            description=tool.description or tool.name,
            json_schema=parameters,
        )

    def _build_agent(
        self, provider_id: str, request: ProviderRequest, calls: List[Dict[str, Any]]
    ) -> Tuple[Agent, List[ModelMessage], Optional[str], Dict[str, Any]]:
        model = self._model_factory(provider_id, request)

        if request.messages:
            history, prompt = to_model_messages(request.messages)
            system_prompt: Tuple[str, ...] = ()
        else:
            history, prompt = [], request.context
            system_prompt = (request.system_prompt,) if request.system_prompt else ()

        instructions = None
        if request.response_format:
            schema = request.response_format.get("schema", request.response_format)
            instructions = "Respond only with a JSON object that matches this JSON schema:\n" + json.dumps(schema)

        tools = [self._bridge_tool(t, request, calls) for t in request.tools if t.usage_control != "none"]
        for t in request.tools:
            if t.usage_control == "force":
                logger.debug("Tool %s marked as forced; pydantic-ai decides tool choice per step", t.id)

        model_settings = build_model_settings(provider_id, request)
        agent = Agent(model, system_prompt=system_prompt, instructions=instructions, tools=tools)
        return agent, history, prompt, model_settings

    async def execute(
        self, provider_id: str, request: ProviderRequest
    ) -> Union[ProviderResponse, StreamingExecution]:
        calls: List[Dict[str, Any]] = []
        agent, history, prompt, model_settings = self._build_agent(provider_id, request, calls)
        logger.debug(
            "Executing provider request provider=%s model=%s history=%d tools=%d stream=%s",
            provider_id,
            request.model,
            len(history),
            len(request.tools),
            request.stream,
        )

        if request.stream:
            return self._stream(agent, history, prompt, model_settings, request, calls)

        started = time.time()
        start_iso = _now_iso()
        result = await agent.run(prompt, message_history=history or None, model_settings=model_settings or None)
        end_iso = _now_iso()
        output = result.output
        response = _last_response(result)
        return ProviderResponse(
            content=output if isinstance(output, str) else json.dumps(output),
            model=request.model,
            tokens=_usage_tokens(_run_usage(result)),
            tool_calls=calls,
            timing={"startTime": start_iso, "endTime": end_iso, "duration": int((time.time() - started) * 1000)},
            cost=_response_cost(response),
            interaction_id=response.provider_response_id if response is not None else None,
        )

    def _stream(
        self,
        agent: Agent,
        history: List[ModelMessage],
        prompt: Optional[str],
        model_settings: Dict[str, Any],
        request: ProviderRequest,
        calls: List[Dict[str, Any]],
    ) -> StreamingExecution:
        start_iso = _now_iso()
        execution: Dict[str, Any] = {
            "success": True,
            "output": {},
            "logs": [],
            "metadata": {"duration": DEFAULTS.EXECUTION_TIME, "startTime": start_iso},
        }

        async def _gen() -> AsyncIterator[bytes]:
            started = time.time()
            parts: List[str] = []
            async with agent.run_stream(
                prompt, message_history=history or None, model_settings=model_settings or None
            ) as result:
                async for delta in result.stream_text(delta=True):
                    parts.append(delta)
                    yield delta.encode("utf-8")
                usage = _run_usage(result)
            duration = int((time.time() - started) * 1000)
            end_iso = _now_iso()
            execution["output"].update(
                {
                    "content": "".join(parts),
                    "model": request.model,
                    "tokens": _usage_tokens(usage),
                    "toolCalls": {"list": calls, "count": len(calls)},
                    "providerTiming": {"startTime": start_iso, "endTime": end_iso, "duration": duration},
                }
            )
            execution["metadata"].update({"duration": duration, "endTime": end_iso})

        return StreamingExecution(stream=_gen(), execution=execution)


_default_executor: Optional[ProviderExecutor] = None


def get_provider_executor() -> ProviderExecutor:
    global _default_executor
    if _default_executor is None:
        _default_executor = ProviderExecutor()
    return _default_executor


async def execute_provider_request(
    provider_id: str, request: ProviderRequest
) -> Union[ProviderResponse, StreamingExecution]:
    """Execute ``request`` against ``provider_id`` with the default executor."""
    return await get_provider_executor().execute(provider_id, request)
