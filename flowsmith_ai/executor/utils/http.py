"""HTTP helpers for calls to the workflow application API.

Requests are authenticated with a short-lived HS256 JWT signed with the
shared ``INTERNAL_API_SECRET``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import jwt

from ...server.core.config import settings

logger = logging.getLogger(__name__)


def create_internal_token(user_id: Optional[str] = None) -> str:
    now = int(time.time())
    cfg = settings.internal_api
    payload: Dict[str, Any] = {"type": "internal", "iat": now, "exp": now + cfg.token_ttl_seconds}
    if user_id:
        payload["userId"] = user_id
    return jwt.encode(payload, cfg.secret, algorithm="HS256")


def build_api_url(path: str, params: Optional[Dict[str, Any]] = None, *, base_url: Optional[str] = None) -> str:
    """Join ``path`` onto the API base URL and append the non-empty ``params``."""
    base = (base_url or settings.internal_api.base_url).rstrip("/")
    url = f"{base}/{path.lstrip('/')}"
    query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def build_auth_headers(user_id: Optional[str] = None) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {create_internal_token(user_id)}",
    }


class InternalApiClient:
    """Thin async JSON client for the workflow application API.

    Non-2xx responses raise ``httpx.HTTPStatusError``; callers decide whether a
    failure is fatal.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.internal_api.base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.internal_api.timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def get_json(
        self, path: str, *, params: Optional[Dict[str, Any]] = None, user_id: Optional[str] = None
    ) -> Any:
        url = build_api_url(path, params, base_url=self.base_url)
        logger.debug("InternalApiClient GET %s", url)
        async with self._client() as client:
            r = await client.get(url, headers=build_auth_headers(user_id))
            r.raise_for_status()
            return r.json()

    async def post_json(
        self,
        path: str,
        *,
        json: Any,
        params: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Any:
        url = build_api_url(path, params, base_url=self.base_url)
        logger.debug("InternalApiClient POST %s", url)
        async with self._client() as client:
            r = await client.post(url, json=json, headers=build_auth_headers(user_id))
            r.raise_for_status()
            return r.json()
