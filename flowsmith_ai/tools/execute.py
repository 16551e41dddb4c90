"""Remote execution of registered tools through the workflow application API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from ..executor.utils.http import InternalApiClient

logger = logging.getLogger(__name__)


class ToolResponse(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None


async def execute_tool(
    tool_id: str,
    params: Dict[str, Any],
    *,
    client: Optional[InternalApiClient] = None,
) -> ToolResponse:
    """Run ``tool_id`` remotely and normalise the result.

    HTTP and transport failures are reported as an unsuccessful response
    rather than raised, so a failing tool never aborts the calling model turn.
    """
    api = client or InternalApiClient()
    context = params.get("_context") or {}
    try:
        data = await api.post_json(
            f"/api/tools/{tool_id}/execute",
            json=params,
            user_id=context.get("userId"),
        )
    except httpx.HTTPStatusError as e:
        logger.warning("Tool %s failed with status %s", tool_id, e.response.status_code)
        return ToolResponse(success=False, error=f"Tool {tool_id} failed with status {e.response.status_code}")
    except httpx.HTTPError as e:
        logger.warning("Tool %s request error: %s", tool_id, e)
        return ToolResponse(success=False, error=str(e))

    if not isinstance(data, dict):
        return ToolResponse(success=True, output=data)
    return ToolResponse(
        success=bool(data.get("success", True)),
        output=data.get("output"),
        error=data.get("error"),
    )
