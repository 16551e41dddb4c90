"""Conversation memory for the Agent block.

Memory lives in the external memory service (see ``flowsmith_ai.memory_api``).
Only executions triggered from chat with a known user take part:

- user turns are stored as ``conversation`` memories as soon as they arrive,
- a completed ``[user, assistant]`` turn is stored twice, as an inferred
  ``fact`` memory and as a verbatim ``conversation`` memory, in the
  background,
- semantic search returns either kind, converted back into messages.

Storage failures are logged and never fail the block. Oversized content and
conversation ids are rejected with ``MemoryValidationError``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from ....memory_api.client import MemoryApiClient
from ....providers.models import get_model_context_window
from ....tokenization.estimators import get_accurate_token_count
from ...constants import MEMORY
from ...errors import MemoryValidationError
from ...types import ExecutionContext
from .types import VALID_ROLES, AgentInputs, MemoryType, Message

logger = logging.getLogger(__name__)

CHAT_TRIGGER = "chat"


def _request_id() -> str:
    return uuid.uuid4().hex[:8]


def _to_message(role: Any, content: Any) -> Optional[Message]:
    if role in VALID_ROLES and isinstance(content, str) and content:
        return Message(role=role, content=content)
    return None


def convert_search_results(search_results: Any) -> List[Message]:
    """Normalise the shapes returned by the search endpoint into messages."""
    results: List[Any] = []
    if isinstance(search_results, list):
        results = search_results
    elif isinstance(search_results, dict):
        for key in ("results", "memories", "data"):
            if isinstance(search_results.get(key), list):
                results = search_results[key]
                break

    messages: List[Message] = []
    for result in results:
        if not isinstance(result, dict):
            continue
        memory = result.get("memory")
        if isinstance(memory, str) and memory and result.get("role"):
            candidates = [_to_message(result.get("role"), memory)]
        elif result.get("content") and result.get("role"):
            candidates = [_to_message(result.get("role"), result.get("content"))]
        elif isinstance(result.get("messages"), list):
            candidates = [_to_message(m.get("role"), m.get("content")) for m in result["messages"] if isinstance(m, dict)]
        elif isinstance(memory, dict):
            if isinstance(memory.get("messages"), list):
                candidates = [_to_message(m.get("role"), m.get("content")) for m in memory["messages"] if isinstance(m, dict)]
            else:
                candidates = [_to_message(memory.get("role"), memory.get("content"))]
        else:
            candidates = []
        messages.extend(m for m in candidates if m is not None)

    logger.debug("Converted %d search results to %d messages", len(results), len(messages))
    return messages


class MemoryService:
    def __init__(self, client: Optional[MemoryApiClient] = None) -> None:
        self._client = client
        self._pending: Set["asyncio.Task[None]"] = set()

    @property
    def client(self) -> MemoryApiClient:
        if self._client is None:
            self._client = MemoryApiClient()
        return self._client

    @staticmethod
    def _is_chat(ctx: ExecutionContext) -> bool:
        return ctx.metadata.trigger_type == CHAT_TRIGGER

    @staticmethod
    def _chat_id(ctx: ExecutionContext) -> str:
        return ctx.execution_id or ctx.workflow_id

    async def search_memories(
        self,
        ctx: ExecutionContext,
        inputs: AgentInputs,
        block_id: str,
        user_prompt: Optional[str] = None,
        is_conversation: bool = False,
        include_conversation_id: bool = False,
    ) -> List[Message]:
        if not self._is_chat(ctx):
            logger.debug("Skipping memory search: trigger type is %s", ctx.metadata.trigger_type)
            return []
        if not ctx.user_id:
            logger.warning("Cannot search memories without user id in execution context")
            return []

        filters: Dict[str, Any] = {"memory_type": "conversation" if is_conversation else "fact"}
        if include_conversation_id and inputs.conversation_id:
            filters["conversation_id"] = inputs.conversation_id

        try:
            results = await self.client.search(_request_id(), user_prompt or "", ctx.user_id, filters)
        except Exception:
            logger.exception("Failed to search memories for block %s", block_id)
            return []
        if not results:
            logger.debug("No search results returned from memory API")
            return []
        return convert_search_results(results)

    @staticmethod
    def validate_content(content: str) -> None:
        size = len(content.encode("utf-8"))
        if size > MEMORY.MAX_MESSAGE_CONTENT_BYTES:
            raise MemoryValidationError(
                f"Message content too large ({size} bytes, max {MEMORY.MAX_MESSAGE_CONTENT_BYTES})"
            )

    @staticmethod
    def validate_conversation_id(conversation_id: Optional[str]) -> None:
        if conversation_id and len(conversation_id) > MEMORY.MAX_CONVERSATION_ID_LENGTH:
            raise MemoryValidationError(
                f"Conversation ID too long (max {MEMORY.MAX_CONVERSATION_ID_LENGTH} characters)"
            )

    async def _store(
        self,
        ctx: ExecutionContext,
        inputs: AgentInputs,
        messages: List[Message],
        *,
        infer: bool,
        memory_type: str,
        block_id: Optional[str],
        request_id: Optional[str] = None,
    ) -> None:
        await self.client.store(
            request_id or _request_id(),
            [{"role": m.role, "content": m.content} for m in messages],
            ctx.user_id or "",
            self._chat_id(ctx),
            inputs.conversation_id,
            infer,
            memory_type,  # type: ignore[arg-type]
            block_id,
            workflow_id=ctx.workflow_id,
            workspace_id=ctx.workspace_id,
            is_deployed=ctx.is_deployed_context,
        )

    async def append_to_memory(
        self,
        ctx: ExecutionContext,
        inputs: AgentInputs,
        message: Message,
        block_id: Optional[str] = None,
        last_user_message: Optional[Message] = None,
    ) -> None:
        if not inputs.memory_enabled:
            return
        if not ctx.user_id:
            logger.debug("Skipping memory storage: user id not available")
            return

        self.validate_content(message.content)
        self.validate_conversation_id(inputs.conversation_id)

        if not self._is_chat(ctx):
            logger.debug("Skipping memory storage: trigger type is %s", ctx.metadata.trigger_type)
            return

        if message.role == "user":
            try:
                await self._store(ctx, inputs, [message], infer=False, memory_type="conversation", block_id=block_id)
            except Exception as e:
                logger.warning("Failed to store user message to memory: %s", e)
            return

        if message.role == "assistant":
            if last_user_message is None:
                logger.debug("Skipping turn storage: no user message for this turn")
                return
            task = asyncio.create_task(
                self._store_turn(ctx, inputs, last_user_message, message, block_id or inputs.conversation_id or "unknown")
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _store_turn(
        self,
        ctx: ExecutionContext,
        inputs: AgentInputs,
        user_message: Message,
        assistant_message: Message,
        block_id: str,
    ) -> None:
        turn = [user_message, assistant_message]
        request_id = _request_id()
        for infer, memory_type in ((True, "fact"), (False, "conversation")):
            try:
                await self._store(
                    ctx, inputs, turn, infer=infer, memory_type=memory_type, block_id=block_id, request_id=request_id
                )
            except Exception as e:
                logger.warning("Failed to store %s memory for workflow %s: %s", memory_type, ctx.workflow_id, e)

    async def seed_memory(self, ctx: ExecutionContext, inputs: AgentInputs, messages: List[Message]) -> None:
        if not inputs.memory_enabled or not self._is_chat(ctx) or not ctx.user_id:
            return
        conversation = [m for m in messages if m.role != "system"]
        if not conversation:
            return
        try:
            await self._store(ctx, inputs, conversation, infer=False, memory_type="conversation", block_id=None)
            logger.debug("Seeded %d messages to memory", len(conversation))
        except Exception as e:
            logger.warning("Failed to seed memory: %s", e)

    async def wrap_stream_for_persistence(
        self,
        stream: AsyncIterator[bytes],
        ctx: ExecutionContext,
        inputs: AgentInputs,
        block_id: Optional[str] = None,
        last_user_message: Optional[Message] = None,
    ) -> AsyncIterator[bytes]:
        """Yield ``stream`` unchanged and persist the full text when it ends."""
        chunks: List[bytes] = []
        async for chunk in stream:
            chunks.append(chunk)
            yield chunk

        content = b"".join(chunks).decode("utf-8", errors="replace")
        if content.strip():
            try:
                await self.append_to_memory(
                    ctx, inputs, Message(role="assistant", content=content), block_id, last_user_message
                )
            except Exception:
                logger.exception("Failed to persist streaming response")

    def apply_sliding_window(self, messages: List[Message], inputs: AgentInputs) -> List[Message]:
        """Trim ``messages`` according to the configured memory type."""
        if inputs.memory_type == MemoryType.sliding_window:
            size = inputs.sliding_window_size
            if size is None:
                size = MEMORY.DEFAULT_SLIDING_WINDOW_SIZE
            return messages[-size:] if size > 0 else []
        if inputs.memory_type == MemoryType.sliding_window_tokens:
            max_tokens = inputs.sliding_window_tokens or MEMORY.DEFAULT_SLIDING_WINDOW_TOKENS
            return self.apply_token_window(messages, max_tokens, inputs.model)
        return messages

    @staticmethod
    def apply_token_window(messages: List[Message], max_tokens: int, model: Optional[str] = None) -> List[Message]:
        """Keep the newest messages that fit in ``max_tokens``; at least one is kept."""
        kept: List[Message] = []
        total = 0
        for msg in reversed(messages):
            tokens = get_accurate_token_count(msg.content, model)
            if total + tokens <= max_tokens:
                kept.insert(0, msg)
                total += tokens
            else:
                if not kept:
                    kept.insert(0, msg)
                break
        return kept

    def apply_context_window_limit(self, messages: List[Message], model: Optional[str] = None) -> List[Message]:
        context_window = get_model_context_window(model)
        if not context_window:
            return messages
        max_tokens = math.floor(context_window * MEMORY.CONTEXT_WINDOW_UTILIZATION)
        return self.apply_token_window(messages, max_tokens, model)

    async def wait_for_pending(self) -> None:
        """Wait for background turn storage started by ``append_to_memory``."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
