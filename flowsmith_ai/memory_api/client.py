"""Async client for the conversation memory service.

The memory service is an add-on: ``store`` never raises and ``search`` /
``get_memories`` return ``None`` on failure so that the calling block keeps
working when the service is unavailable. The only error surfaced to callers is
a ``ValueError`` from ``get_memories`` when no identifier is given.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

import httpx

from ..server.core.config import settings

logger = logging.getLogger(__name__)

MemoryType = Literal["fact", "conversation"]

FALLBACK_FACT_CONVERSATION_ID = "conv_123"

_HEADERS = {"accept": "application/json", "Content-Type": "application/json"}


class MemoryApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        search_limit: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = settings.memory_api
        self.base_url = (base_url or cfg.base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else cfg.timeout_seconds
        self.search_limit = search_limit if search_limit is not None else cfg.search_limit
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def store(
        self,
        request_id: str,
        messages: List[Dict[str, str]],
        user_id: str,
        chat_id: str,
        conversation_id: Optional[str],
        infer: bool,
        memory_type: MemoryType,
        block_id: Optional[str] = None,
        *,
        workflow_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        is_deployed: Optional[bool] = None,
    ) -> None:
        """Persist ``messages`` for ``user_id``.

        Fact memories (``infer=True``) are extracted by the service; conversation
        memories are stored verbatim and tagged with a fresh ``executionId``.
        """
        memory_conversation_id = conversation_id or (FALLBACK_FACT_CONVERSATION_ID if infer else chat_id)
        metadata: Dict[str, Any] = {
            "memory_type": memory_type,
            "conversation_id": memory_conversation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if block_id:
            metadata["block_id"] = block_id
        if workflow_id:
            metadata["workflow_id"] = workflow_id
        if workspace_id:
            metadata["workspace_id"] = workspace_id
        if is_deployed is not None:
            metadata["is_deployed"] = is_deployed
        if not infer:
            metadata["executionId"] = str(uuid.uuid4())

        payload = {"messages": messages, "user_id": user_id, "infer": infer, "metadata": metadata}
        logger.info("[%s] Calling memory API memory_type=%s infer=%s", request_id, memory_type, infer)
        try:
            async with self._client() as client:
                r = await client.post(f"{self.base_url}/memories", json=payload, headers=_HEADERS)
        except httpx.HTTPError as e:
            logger.error("[%s] Error calling memory API: %s", request_id, e)
            return
        if r.is_error:
            logger.error(
                "[%s] Memory API request failed status=%s error=%s infer=%s memory_type=%s",
                request_id,
                r.status_code,
                r.text,
                infer,
                memory_type,
            )
            return
        logger.info(
            "[%s] Memory API call successful memory_type=%s conversation_id=%s",
            request_id,
            memory_type,
            memory_conversation_id,
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
        payload: Dict[str, Any] = {"query": query, "user_id": user_id}
        if run_id:
            payload["run_id"] = run_id
        if agent_id:
            payload["agent_id"] = agent_id
        if filters:
            payload["filters"] = filters
        payload["limit"] = self.search_limit

        logger.debug("[%s] Calling memory search API filters=%s", request_id, filters)
        try:
            async with self._client() as client:
                r = await client.post(f"{self.base_url}/search", json=payload, headers=_HEADERS)
            if r.is_error:
                logger.error("[%s] Memory search API request failed status=%s error=%s", request_id, r.status_code, r.text)
                return None
            return r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[%s] Error calling memory search API: %s", request_id, e)
            return None

    async def get_memories(
        self,
        request_id: str,
        user_id: Optional[str] = None,
        run_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> Optional[Any]:
        if not (user_id or run_id or agent_id):
            logger.error("[%s] At least one of user_id, run_id, or agent_id must be provided", request_id)
            raise ValueError("At least one of user_id, run_id, or agent_id must be provided")

        params = {k: v for k, v in (("user_id", user_id), ("run_id", run_id), ("agent_id", agent_id)) if v}
        try:
            async with self._client() as client:
                r = await client.get(f"{self.base_url}/memories", params=params, headers={"accept": "application/json"})
            if r.is_error:
                logger.error("[%s] Get memories API request failed status=%s error=%s", request_id, r.status_code, r.text)
                return None
            return r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[%s] Error calling get memories API: %s", request_id, e)
            return None
