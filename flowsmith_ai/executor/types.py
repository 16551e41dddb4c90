from __future__ import annotations

"""Execution context and block types shared by block handlers.

A workflow execution walks the block graph and hands each block to the handler
whose ``can_handle`` accepts it. Handlers receive:

- ``ExecutionContext``: per-execution state (ids, variables, outputs of blocks
  that already ran, streaming selection).
- ``SerializedBlock``: the block being executed.
- resolved inputs: block-specific, already free of ``<reference>`` tags where
  resolution succeeded.

A handler returns either a plain ``BlockOutput`` mapping or a
``StreamingExecution`` whose stream is forwarded to the client while the
execution record is completed in place.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from pydantic import Field

from ..core.schemas import BaseSchema

BlockOutput = Dict[str, Any]


class Edge(BaseSchema):
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class ExecutionMetadata(BaseSchema):
    trigger_type: Optional[str] = None
    start_time: Optional[str] = None


class BlockState(BaseSchema):
    output: Dict[str, Any] = Field(default_factory=dict)
    executed: bool = True


class ExecutionContext(BaseSchema):
    """State of one workflow execution as seen by block handlers."""

    workflow_id: str
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    execution_id: Optional[str] = None
    is_deployed_context: bool = False

    stream: bool = False
    selected_outputs: List[str] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    environment_variables: Dict[str, str] = Field(default_factory=dict)
    workflow_variables: Dict[str, Any] = Field(default_factory=dict)

    block_states: Dict[str, BlockState] = Field(default_factory=dict)
    block_names: Dict[str, str] = Field(default_factory=dict)
    block_output_schemas: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)


class BlockMetadata(BaseSchema):
    id: str
    name: Optional[str] = None


class SerializedBlock(BaseSchema):
    id: str
    metadata: Optional[BlockMetadata] = None
    config: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class StreamingExecution:
    """A streamed block result.

    ``stream`` yields UTF-8 encoded chunks. ``execution`` is the execution
    record (``success``, ``output``, ``logs``, ``metadata``) and may be
    completed by the producer once the stream is exhausted.
    """

    stream: AsyncIterator[bytes]
    execution: Dict[str, Any] = field(default_factory=dict)


def is_streaming_execution(value: Any) -> bool:
    return isinstance(value, StreamingExecution)


class BlockHandler(Protocol):
    """Protocol implemented by every block handler."""

    def can_handle(self, block: SerializedBlock) -> bool: ...

    async def execute(
        self, ctx: ExecutionContext, block: SerializedBlock, inputs: Any
    ) -> Union[BlockOutput, StreamingExecution]: ...
