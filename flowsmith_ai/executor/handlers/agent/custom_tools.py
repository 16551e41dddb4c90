"""User defined function tools.

A custom tool is an OpenAI style function schema plus optional code. The code
runs remotely through the ``function_execute`` tool with the workflow's
environment, variables and upstream block outputs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ....providers.executor import ProviderTool
from ....tools.execute import execute_tool
from ....tools.params import filter_schema_for_llm, merge_tool_parameters
from ...constants import AGENT
from ...errors import ToolExecutionError
from ...types import ExecutionContext
from ...utils.block_data import collect_block_data
from ...utils.http import InternalApiClient
from .types import ToolInput

logger = logging.getLogger(__name__)


async def fetch_custom_tool_by_id(
    ctx: ExecutionContext, custom_tool_id: str, *, api: Optional[InternalApiClient] = None
) -> Optional[Dict[str, Any]]:
    """Return ``{schema, code, title}`` of a stored custom tool, or ``None``."""
    api = api or InternalApiClient()
    params = {"workspaceId": ctx.workspace_id, "workflowId": ctx.workflow_id, "userId": ctx.user_id}
    try:
        data = await api.get_json("/api/tools/custom", params=params, user_id=ctx.user_id)
    except httpx.HTTPError as e:
        logger.error("Failed to fetch custom tools: %s", e)
        return None

    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list):
        logger.error("Invalid custom tools API response")
        return None
    match = next((t for t in items if isinstance(t, dict) and t.get("id") == custom_tool_id), None)
    if match is None:
        logger.warning("Custom tool not found by ID: %s", custom_tool_id)
        return None
    return {"schema": match.get("schema"), "code": match.get("code") or "", "title": match.get("title")}


async def create_custom_tool(
    ctx: ExecutionContext, tool: ToolInput, *, api: Optional[InternalApiClient] = None
) -> Optional[ProviderTool]:
    user_params = dict(tool.params)
    schema, code, title = tool.schema_, tool.code, tool.title

    if tool.custom_tool_id and not schema:
        resolved = await fetch_custom_tool_by_id(ctx, tool.custom_tool_id, api=api)
        if resolved is None:
            logger.error("Custom tool not found: %s", tool.custom_tool_id)
            return None
        schema, code, title = resolved["schema"], resolved["code"], resolved["title"]

    function = (schema or {}).get("function")
    if not function:
        logger.error("Custom tool missing schema: id=%s title=%s", tool.custom_tool_id, title)
        return None

    parameters = function.get("parameters") or {"type": "object", "properties": {}}
    filtered = filter_schema_for_llm(parameters, user_params)
    filtered["type"] = parameters.get("type", "object")

    provider_tool = ProviderTool(
        id=f"{AGENT.CUSTOM_TOOL_PREFIX}{title}",
        name=function.get("name") or str(title),
        description=function.get("description") or "",
        parameters=filtered,
        params=user_params,
        usage_control=tool.usage_control,
    )

    if code:
        timeout = tool.timeout if tool.timeout is not None else AGENT.DEFAULT_FUNCTION_TIMEOUT

        async def _execute(call_params: Dict[str, Any]) -> Any:
            merged = merge_tool_parameters(user_params, call_params)
            block_data, name_mapping, output_schemas = collect_block_data(ctx)
            result = await execute_tool(
                "function_execute",
                {
                    "code": code,
                    **merged,
                    "timeout": timeout,
                    "envVars": ctx.environment_variables,
                    "workflowVariables": ctx.workflow_variables,
                    "blockData": block_data,
                    "blockNameMapping": name_mapping,
                    "blockOutputSchemas": output_schemas,
                    "isCustomTool": True,
                    "_context": {
                        "workflowId": ctx.workflow_id,
                        "workspaceId": ctx.workspace_id,
                        "userId": ctx.user_id,
                        "isDeployedContext": ctx.is_deployed_context,
                    },
                },
                client=api,
            )
            if not result.success:
                raise ToolExecutionError(result.error or "Function execution failed")
            return result.output

        provider_tool.execute_function = _execute

    return provider_tool
