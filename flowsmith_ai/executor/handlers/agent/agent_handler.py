"""Agent block handler.

Turns resolved Agent block inputs into a provider request and shapes the
result into block output.

Design
------

- Collaborators (memory service, permission checker, MCP resolver, skill
  resolver, RUN/SKIP controller, repositories, provider executor) are injected
  so the handler can be wired against SQL repositories in the server and
  against in-memory fakes in tests.
- Inputs are copied once at the start of ``execute``; prompt augmentation
  (fact memories, conversation memory, previous exchange) mutates the copy and
  never the caller's object.
- Memory is an add-on. Search and storage failures degrade to "no memory";
  only size/length validation errors abort the block.

Usage
-----

    handler = AgentBlockHandler(memory=MemoryService(), permissions=PermissionChecker(repo))
    output = await handler.execute(ctx, block, {"model": "gpt-4o", "userPrompt": "hi"})
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import httpx

from ....access_control.errors import AccessDeniedError
from ....access_control.permissions import PermissionChecker
from ....auth.oauth import refresh_token_if_needed
from ....providers.executor import (
    ProviderExecutor,
    ProviderRequest,
    ProviderResponse,
    ProviderTool,
    get_provider_executor,
)
from ....providers.models import get_provider_from_model
from ....repos.interfaces import CredentialRepository, ExecutionLogRepository
from ....tokenization.estimators import get_accurate_token_count
from ....tools.registry import ToolRegistry, default_registry, transform_block_tool
from ...constants import AGENT, BlockType
from ...errors import (
    AgentExecutionError,
    CredentialResolutionError,
    NoMessagesError,
    ProviderConnectionError,
    ProviderTimeoutError,
)
from ...types import BlockOutput, ExecutionContext, SerializedBlock, StreamingExecution
from ...utils.block_data import collect_block_data
from ...utils.http import InternalApiClient
from .controller import ConversationController, build_history_context
from .custom_tools import create_custom_tool
from .mcp_tools import McpToolResolver
from .memory import MemoryService
from .memory_utils import get_memory_token_limit
from .response import parse_response_format, process_provider_response
from .skills import SkillResolver, build_skills_system_prompt_section
from .types import VALID_ROLES, AgentInputs, Message, SkillMetadata, StreamingConfig, ToolInput

logger = logging.getLogger(__name__)

_CONNECTION_MARKERS = ("ENOTFOUND", "ECONNREFUSED", "Name or service not known", "Connection refused")


def _error_chain(error: BaseException) -> List[BaseException]:
    chain: List[BaseException] = []
    current: Optional[BaseException] = error
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def translate_provider_error(error: Exception) -> Exception:
    """Map transport failures of a provider call onto block errors.

    Errors that are not recognised are returned unchanged.
    """
    chain = _error_chain(error)
    if any(isinstance(e, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)) for e in chain):
        return ProviderTimeoutError()
    if any(marker in str(e) for e in chain for marker in _CONNECTION_MARKERS):
        return ProviderConnectionError("Unable to connect to server - DNS or connection issue")
    if any(isinstance(e, httpx.ConnectError) for e in chain):
        return ProviderConnectionError(
            "Network error - unable to connect to provider API. Please check your internet connection."
        )
    return error


async def _translate_stream_errors(
    stream: AsyncIterator[bytes], provider_id: str, model: str, block_id: str
) -> AsyncIterator[bytes]:
    """Re-raise transport failures met while streaming as block errors."""
    try:
        async for chunk in stream:
            yield chunk
    except (AgentExecutionError, AccessDeniedError):
        raise
    except Exception as e:
        logger.error("Streaming failed provider=%s model=%s block=%s: %s", provider_id, model, block_id, e)
        translated = translate_provider_error(e)
        if translated is e:
            raise
        raise translated from e


def extract_valid_messages(messages: Optional[List[Any]]) -> List[Message]:
    if not messages:
        return []
    valid: List[Message] = []
    for msg in messages:
        if isinstance(msg, Message):
            valid.append(msg.model_copy())
            continue
        if isinstance(msg, dict) and msg.get("role") in VALID_ROLES and "content" in msg:
            content = msg.get("content")
            valid.append(
                Message(
                    role=msg["role"],
                    content="" if content is None else str(content),
                    execution_id=msg.get("executionId") or msg.get("execution_id"),
                )
            )
    return valid


def process_memories(memories: Any) -> List[Message]:
    """Convert Memory block output into messages."""
    if not memories:
        return []
    items: List[Any] = []
    if isinstance(memories, dict) and isinstance(memories.get("memories"), list):
        items = memories["memories"]
    elif isinstance(memories, list):
        items = memories

    messages: List[Message] = []
    for memory in items:
        if not isinstance(memory, dict):
            continue
        if isinstance(memory.get("data"), list):
            for msg in memory["data"]:
                if isinstance(msg, dict) and msg.get("role") in VALID_ROLES and msg.get("content"):
                    messages.append(Message(role=msg["role"], content=str(msg["content"])))
        elif memory.get("role") in VALID_ROLES and memory.get("content"):
            messages.append(Message(role=memory["role"], content=str(memory["content"])))
    return messages


def _stringify(value: Any, *, indent: Optional[int] = None) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=indent)
    except (TypeError, ValueError):
        return str(value)


def add_system_prompt(messages: List[Message], system_prompt: Any) -> None:
    """Place ``system_prompt`` at index 0 and drop any later system messages."""
    content = _stringify(system_prompt, indent=2)
    first = next((i for i, m in enumerate(messages) if m.role == "system"), -1)
    if first == 0:
        messages[0] = Message(role="system", content=content)
    else:
        if first > 0:
            del messages[first]
        messages.insert(0, Message(role="system", content=content))

    for i in range(len(messages) - 1, 0, -1):
        if messages[i].role == "system":
            del messages[i]
            logger.warning("Removed duplicate system message from conversation history at position %d", i)


def format_user_prompt(user_prompt: Any) -> str:
    if isinstance(user_prompt, dict) and user_prompt.get("input"):
        return str(user_prompt["input"])
    if isinstance(user_prompt, dict):
        return json.dumps(user_prompt)
    return str(user_prompt)


def derive_user_prompt(inputs: AgentInputs) -> Optional[str]:
    """Return the text used as memory search query for this turn."""
    if inputs.user_prompt:
        return _stringify(inputs.user_prompt)
    for msg in extract_valid_messages(inputs.messages):
        if msg.role == "user":
            return msg.content
    return None


def _blank(value: Any) -> bool:
    return value is None or value == ""


def _parse_number(value: Any, name: str) -> Optional[float]:
    if _blank(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        logger.warning("Ignoring non-numeric %s: %r", name, value)
        return None
    return number


class AgentBlockHandler:
    def __init__(
        self,
        *,
        memory: Optional[MemoryService] = None,
        permissions: Optional[PermissionChecker] = None,
        mcp_tools: Optional[McpToolResolver] = None,
        skills: Optional[SkillResolver] = None,
        controller: Optional[ConversationController] = None,
        execution_logs: Optional[ExecutionLogRepository] = None,
        credentials: Optional[CredentialRepository] = None,
        tool_registry: Optional[ToolRegistry] = None,
        api: Optional[InternalApiClient] = None,
        provider_executor: Optional[ProviderExecutor] = None,
    ) -> None:
        self._api = api or InternalApiClient()
        self._memory = memory or MemoryService()
        self._permissions = permissions or PermissionChecker()
        self._mcp = mcp_tools or McpToolResolver(api=self._api)
        self._skills = skills or SkillResolver()
        self._controller = controller
        self._execution_logs = execution_logs
        self._credentials = credentials
        self._registry = tool_registry or default_registry
        self._provider_executor = provider_executor

    @property
    def memory(self) -> MemoryService:
        return self._memory

    def can_handle(self, block: SerializedBlock) -> bool:
        return block.metadata is not None and block.metadata.id == BlockType.AGENT.value

    async def execute(
        self,
        ctx: ExecutionContext,
        block: SerializedBlock,
        inputs: Union[AgentInputs, Dict[str, Any]],
    ) -> Union[BlockOutput, StreamingExecution]:
        inputs = (
            inputs.model_copy(deep=True) if isinstance(inputs, AgentInputs) else AgentInputs.model_validate(inputs)
        )
        inputs.tools = await self._mcp.filter_unavailable(ctx, inputs.tools)
        await self.validate_tool_permissions(ctx, inputs.tools)

        response_format = parse_response_format(inputs.response_format)
        model = inputs.model or AGENT.DEFAULT_MODEL
        inputs.model = model

        await self._permissions.validate_model_provider(ctx.user_id, model)
        provider_id = get_provider_from_model(model)
        formatted_tools = await self.format_tools(ctx, inputs.tools)

        skill_metadata: List[SkillMetadata] = []
        if inputs.skills and ctx.workspace_id:
            await self._permissions.validate_skills_allowed(ctx.user_id)
            skill_metadata = await self._skills.resolve_skill_metadata(inputs.skills, ctx.workspace_id)
            if skill_metadata:
                formatted_tools.append(
                    self._skills.build_load_skill_tool([s.name for s in skill_metadata], ctx.workspace_id)
                )

        streaming = self.get_streaming_config(ctx, block)
        logger.debug("Agent block %s execution started (provider=%s, model=%s)", block.id, provider_id, model)

        if inputs.memory_enabled:
            await self._add_fact_memories(ctx, inputs, block.id)

        messages, last_user_message = await self.build_messages(ctx, inputs, skill_metadata, block.id)

        request = self.build_provider_request(
            ctx,
            model=model,
            messages=messages,
            inputs=inputs,
            tools=formatted_tools,
            response_format=response_format if isinstance(response_format, dict) else None,
            stream=streaming.should_use_streaming,
        )
        result = await self.execute_provider_request(
            ctx, provider_id, request, block, response_format, vertex_credential=inputs.vertex_credential
        )

        if isinstance(result, StreamingExecution):
            if inputs.memory_enabled:
                return StreamingExecution(
                    stream=self._memory.wrap_stream_for_persistence(
                        result.stream, ctx, inputs, block.id, last_user_message
                    ),
                    execution=result.execution,
                )
            return result

        if inputs.memory_enabled:
            await self._persist_response(ctx, inputs, result, block.id, last_user_message)
        return result

    async def validate_tool_permissions(self, ctx: ExecutionContext, tools: List[ToolInput]) -> None:
        if any(t.type == "mcp" for t in tools):
            await self._permissions.validate_mcp_tools_allowed(ctx.user_id)
        if any(t.type == "custom-tool" for t in tools):
            await self._permissions.validate_custom_tools_allowed(ctx.user_id)

    async def format_tools(self, ctx: ExecutionContext, tools: List[ToolInput]) -> List[ProviderTool]:
        active = [t for t in tools if t.usage_control != "none"]
        mcp_tools = [t for t in active if t.type == "mcp"]
        other_tools = [t for t in active if t.type != "mcp"]

        async def _create(tool: ToolInput) -> Optional[ProviderTool]:
            try:
                if tool.type and tool.type not in ("custom-tool", "mcp"):
                    await self._permissions.validate_block_type(ctx.user_id, tool.type)
                if tool.type == "custom-tool" and (tool.schema_ or tool.custom_tool_id):
                    return await create_custom_tool(ctx, tool, api=self._api)
                if not tool.type:
                    return None
                return transform_block_tool(
                    tool.type,
                    registry=self._registry,
                    operation=tool.operation,
                    params=tool.params,
                    usage_control=tool.usage_control,
                )
            except Exception:
                logger.exception("Error creating tool %s (%s)", tool.title, tool.type)
                return None

        created = await asyncio.gather(*(_create(t) for t in other_tools))
        mcp_created = await self._mcp.process_batched(ctx, mcp_tools)
        return [t for t in [*created, *mcp_created] if t is not None]

    @staticmethod
    def get_streaming_config(ctx: ExecutionContext, block: SerializedBlock) -> StreamingConfig:
        def _selected(output_id: str) -> bool:
            if output_id == block.id:
                return True
            prefix, sep, _ = output_id.partition("_")
            return bool(sep) and prefix == block.id

        is_selected = any(_selected(o) for o in ctx.selected_outputs)
        return StreamingConfig(
            should_use_streaming=bool(ctx.stream) and is_selected,
            is_block_selected_for_output=is_selected,
            has_outgoing_connections=any(e.source == block.id for e in ctx.edges),
        )

    async def _add_fact_memories(self, ctx: ExecutionContext, inputs: AgentInputs, block_id: str) -> None:
        facts = await self._memory.search_memories(ctx, inputs, block_id, derive_user_prompt(inputs), False)
        if not facts:
            return
        facts_text = "\n".join(f"- {m.content}" for m in facts)
        prompt = f"Consider these user preferences when you are giving user response -\n{facts_text}"
        if inputs.system_prompt:
            inputs.system_prompt = f"{_stringify(inputs.system_prompt)}\n\n{prompt}"
        else:
            inputs.system_prompt = prompt
        logger.debug("Added %d fact memories to system prompt for block %s", len(facts), block_id)

    async def _consult_controller(self, conversation_id: str, user_prompt: str) -> Tuple[bool, str]:
        """Return ``(should_run, history_context)``; history is set only on SKIP."""
        if self._controller is None or self._execution_logs is None:
            return True, ""
        try:
            last = await self._execution_logs.latest_completed_for_conversation(conversation_id)
        except Exception as e:
            logger.warning("Failed to fetch execution logs for controller, defaulting to RUN: %s", e)
            return True, ""
        if last is None:
            return True, ""
        history = build_history_context(last.initial_input or "", last.final_chat_output or "")
        if await self._controller.should_run(history, user_prompt):
            return True, ""
        logger.debug("Controller decided to SKIP semantic search for conversation %s", conversation_id)
        return False, history

    @staticmethod
    def _append_to_user_input(inputs: AgentInputs, conversation: List[Message], extra: str) -> None:
        if inputs.user_prompt:
            inputs.user_prompt = f"{_stringify(inputs.user_prompt)}{extra}"
            return
        for msg in conversation:
            if msg.role == "user":
                msg.content += extra
                return

    @staticmethod
    def _build_memory_context(results: List[Message], user_prompt: str, model: Optional[str], block_id: str) -> str:
        token_limit = get_memory_token_limit(model)
        current = get_accurate_token_count(user_prompt, model)
        parts: List[str] = []
        for memory in results:
            speaker = "User" if memory.role == "user" else "Assistant"
            text = f"\nPrevious conversation:\n{speaker}: {memory.content}"
            tokens = get_accurate_token_count(text, model)
            if current + tokens > token_limit:
                logger.debug(
                    "Stopped adding memories for block %s at %d/%d tokens (%d of %d added)",
                    block_id,
                    current,
                    token_limit,
                    len(parts),
                    len(results),
                )
                break
            parts.append(text)
            current += tokens
        return "".join(parts)

    async def build_messages(
        self,
        ctx: ExecutionContext,
        inputs: AgentInputs,
        skill_metadata: List[SkillMetadata],
        block_id: str,
    ) -> Tuple[List[Message], Optional[Message]]:
        """Build the message list sent to the provider.

        Returns the messages and the un-augmented user message of this turn
        (``None`` when memory is disabled), which is stored with the
        assistant's answer.
        """
        messages: List[Message] = []
        input_messages = extract_valid_messages(inputs.messages)
        system_messages = [m for m in input_messages if m.role == "system"]
        conversation = [m for m in input_messages if m.role != "system"]

        raw_user_message: Optional[Message] = None
        if inputs.memory_enabled:
            if inputs.user_prompt:
                raw_user_message = Message(role="user", content=format_user_prompt(inputs.user_prompt))
            else:
                user_turns = [m for m in conversation if m.role == "user"]
                if user_turns:
                    raw_user_message = Message(role="user", content=user_turns[-1].content)

            user_prompt = derive_user_prompt(inputs)
            should_run, history_context = True, ""
            if inputs.conversation_id and user_prompt:
                should_run, history_context = await self._consult_controller(inputs.conversation_id, user_prompt)

            search_results: List[Message] = []
            if should_run:
                search_results = await self._memory.search_memories(ctx, inputs, block_id, user_prompt, True)
                search_results = self._memory.apply_sliding_window(search_results, inputs)
                search_results = self._memory.apply_context_window_limit(search_results, inputs.model)
            elif history_context:
                self._append_to_user_input(inputs, conversation, history_context)

            if should_run and search_results and user_prompt:
                memory_context = self._build_memory_context(search_results, user_prompt, inputs.model, block_id)
                if memory_context:
                    self._append_to_user_input(inputs, conversation, memory_context)
            elif search_results:
                messages.extend(search_results)

        if inputs.memories:
            messages.extend(process_memories(inputs.memories))

        messages.extend(conversation)

        if inputs.system_prompt and not system_messages and not any(m.role == "system" for m in messages):
            add_system_prompt(messages, inputs.system_prompt)

        if inputs.user_prompt:
            messages.append(Message(role="user", content=format_user_prompt(inputs.user_prompt)))

        last_user_message: Optional[Message] = None
        if raw_user_message is not None:
            await self._memory.append_to_memory(ctx, inputs, raw_user_message, block_id)
            last_user_message = raw_user_message

        messages[0:0] = system_messages

        if not messages:
            logger.error("No messages built for agent block %s", block_id)
            raise NoMessagesError()

        if skill_metadata:
            section = build_skills_system_prompt_section(skill_metadata)
            idx = next((i for i, m in enumerate(messages) if m.role == "system"), -1)
            if idx >= 0:
                messages[idx] = Message(role="system", content=messages[idx].content + section)
            else:
                messages.insert(0, Message(role="system", content=section.strip()))

        logger.debug(
            "Built %d messages for block %s (system=%d, user=%d, assistant=%d)",
            len(messages),
            block_id,
            sum(m.role == "system" for m in messages),
            sum(m.role == "user" for m in messages),
            sum(m.role == "assistant" for m in messages),
        )
        return messages, last_user_message

    def build_provider_request(
        self,
        ctx: ExecutionContext,
        *,
        model: str,
        messages: List[Message],
        inputs: AgentInputs,
        tools: List[ProviderTool],
        response_format: Optional[Dict[str, Any]],
        stream: bool,
    ) -> ProviderRequest:
        valid = bool(messages) and all(m.role in VALID_ROLES for m in messages)
        payload = [{"role": m.role, "content": m.content} for m in messages]
        block_data, name_mapping, _ = collect_block_data(ctx)
        max_tokens = _parse_number(inputs.max_tokens, "maxTokens")
        if inputs.bedrock_access_key_id or inputs.bedrock_secret_key or inputs.bedrock_region:
            logger.warning("Ignoring Bedrock settings for model %s: no Bedrock provider is configured", model)

        return ProviderRequest(
            model=model,
            system_prompt=None if valid else (_stringify(inputs.system_prompt) if inputs.system_prompt else None),
            context=None if valid else json.dumps(payload),
            messages=payload,
            tools=tools,
            temperature=_parse_number(inputs.temperature, "temperature"),
            max_tokens=None if max_tokens is None else int(max_tokens),
            api_key=inputs.api_key,
            azure_endpoint=inputs.azure_endpoint,
            azure_api_version=inputs.azure_api_version,
            vertex_project=inputs.vertex_project,
            vertex_location=inputs.vertex_location,
            response_format=response_format,
            workflow_id=ctx.workflow_id,
            workspace_id=ctx.workspace_id,
            user_id=ctx.user_id,
            stream=stream,
            environment_variables=dict(ctx.environment_variables),
            workflow_variables=dict(ctx.workflow_variables),
            block_data=block_data,
            block_name_mapping=name_mapping,
            is_deployed_context=ctx.is_deployed_context,
            reasoning_effort=inputs.reasoning_effort or None,
            verbosity=inputs.verbosity or None,
            thinking_level=inputs.thinking_level,
            previous_interaction_id=inputs.previous_interaction_id,
        )

    async def resolve_vertex_credential(self, credential_id: str) -> str:
        request_id = f"vertex-{int(time.time() * 1000)}"
        logger.info("[%s] Resolving Vertex AI credential: %s", request_id, credential_id)
        if self._credentials is None:
            raise CredentialResolutionError("Credential repository is not configured")
        credential = await self._credentials.get(credential_id)
        if credential is None:
            raise CredentialResolutionError(f"Vertex AI credential not found: {credential_id}")
        result = await refresh_token_if_needed(request_id, credential, credential_id, self._credentials)
        if not result.access_token:
            raise CredentialResolutionError("Failed to get Vertex AI access token")
        return result.access_token

    async def execute_provider_request(
        self,
        ctx: ExecutionContext,
        provider_id: str,
        request: ProviderRequest,
        block: SerializedBlock,
        response_format: Optional[Any],
        *,
        vertex_credential: Optional[str] = None,
    ) -> Union[BlockOutput, StreamingExecution]:
        started = time.time()
        try:
            if provider_id == "vertex" and vertex_credential:
                request.api_key = await self.resolve_vertex_credential(vertex_credential)
            executor = self._provider_executor or get_provider_executor()
            response: Union[ProviderResponse, StreamingExecution] = await executor.execute(provider_id, request)
        except (AgentExecutionError, AccessDeniedError):
            raise
        except Exception as e:
            logger.error(
                "Error executing provider request provider=%s model=%s workflow=%s block=%s after %dms: %s",
                provider_id,
                request.model,
                ctx.workflow_id,
                block.id,
                int((time.time() - started) * 1000),
                e,
            )
            translated = translate_provider_error(e)
            if translated is e:
                raise
            raise translated from e

        if isinstance(response, StreamingExecution):
            response.stream = _translate_stream_errors(response.stream, provider_id, request.model, block.id)
        return process_provider_response(
            response, block, response_format if isinstance(response_format, dict) else None
        )

    async def _persist_response(
        self,
        ctx: ExecutionContext,
        inputs: AgentInputs,
        result: BlockOutput,
        block_id: str,
        last_user_message: Optional[Message],
    ) -> None:
        content = result.get("content")
        if not isinstance(content, str) or not content:
            return
        try:
            await self._memory.append_to_memory(
                ctx, inputs, Message(role="assistant", content=content), block_id, last_user_message
            )
        except Exception as e:
            logger.error("Failed to persist response to memory: %s", e)
