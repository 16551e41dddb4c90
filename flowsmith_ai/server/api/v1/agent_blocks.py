"""
Agent Block Execution Endpoints.

Executes a single Agent block for the workflow executor. Buffered results are
returned as JSON; when the block streams to the client the response body is
the raw model text.
"""

from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from pydantic import Field

from flowsmith_ai.core.logging_config import get_logger
from flowsmith_ai.core.schemas import BaseSchema
from flowsmith_ai.executor.types import ExecutionContext, SerializedBlock, StreamingExecution
from flowsmith_ai.server.core.security import InternalTokenDep
from flowsmith_ai.server.services.deps import AgentHandlerDep

logger = get_logger(__name__)
router = APIRouter()


class AgentBlockExecuteRequest(BaseSchema):
    context: ExecutionContext
    block: SerializedBlock
    inputs: Dict[str, Any] = Field(default_factory=dict)


@router.post(
    "/execute",
    summary="Execute Agent Block",
    description="Run one Agent block with already-resolved inputs.",
    response_description="Block output, or a text stream when streaming is selected.",
)
async def execute_agent_block(payload: AgentBlockExecuteRequest, handler: AgentHandlerDep, _token: InternalTokenDep):
    logger.info(f"Executing agent block {payload.block.id} for workflow {payload.context.workflow_id}")
    result = await handler.execute(payload.context, payload.block, payload.inputs)
    if isinstance(result, StreamingExecution):
        return StreamingResponse(result.stream, media_type="text/plain; charset=utf-8")
    return result
