"""Error types raised while executing blocks.

Only failures that must abort the block are modelled here. Add-on integrations
(memory service, tool discovery for a single server) log and degrade instead of
raising.
"""

from __future__ import annotations


class AgentExecutionError(Exception):
    """Base error for agent block execution."""


class NoMessagesError(AgentExecutionError):
    def __init__(self) -> None:
        super().__init__(
            "No messages to send to LLM. Please provide either userPrompt or messages with at least one user message."
        )


class ProviderTimeoutError(AgentExecutionError):
    def __init__(self) -> None:
        super().__init__("Provider request timed out - the API took too long to respond")


class ProviderConnectionError(AgentExecutionError):
    """Raised when the provider API cannot be reached."""


class ToolDiscoveryError(AgentExecutionError):
    """Raised when tools cannot be discovered from an MCP server."""


class ToolExecutionError(AgentExecutionError):
    """Raised when a remote tool or function execution reports failure."""


class MemoryValidationError(AgentExecutionError):
    """Raised when a message or conversation id exceeds memory limits."""


class CredentialResolutionError(AgentExecutionError):
    """Raised when an OAuth credential cannot be turned into an access token."""
