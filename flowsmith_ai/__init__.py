"""FlowSmith-AI.

Agent block execution service for a visual workflow builder.

High-level architecture
-----------------------

A workflow is a graph of blocks. This package implements the execution side of
the **Agent** block: the block that turns configured prompts, tools and memory
settings into one LLM provider call and returns either a buffered output or a
stream.

Core subpackages
----------------

- ``flowsmith_ai.executor``:

  - Execution context and block types shared by block handlers.
  - ``executor.handlers.agent``: the agent handler, conversation memory, MCP
    and custom tool resolution, skills and the RUN/SKIP controller.

- ``flowsmith_ai.providers``: model catalog and the pydantic-ai backed provider
  executor.
- ``flowsmith_ai.tools``: schema filtering, block tool registry and remote tool
  execution.
- ``flowsmith_ai.memory_api``: HTTP client for the external memory service.
- ``flowsmith_ai.repos``: repository protocols and SQLAlchemy implementations.
- ``flowsmith_ai.server``: FastAPI surface.

Typical workflow
----------------

1. Build an ``ExecutionContext`` for the workflow run.
2. Pass the serialized block and its resolved ``AgentInputs`` to
   ``AgentBlockHandler.execute``.
3. Return the ``BlockOutput`` or forward the ``StreamingExecution`` stream to
   the client.
"""
