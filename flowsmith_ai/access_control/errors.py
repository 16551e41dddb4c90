from __future__ import annotations


class AccessDeniedError(Exception):
    """Base error for actions blocked by a user's permission group."""


class ProviderNotAllowedError(AccessDeniedError):
    def __init__(self, provider_id: str, model: str) -> None:
        super().__init__(
            f'Provider "{provider_id}" is not allowed for model "{model}" based on your permission group settings'
        )
        self.provider_id = provider_id
        self.model = model


class IntegrationNotAllowedError(AccessDeniedError):
    def __init__(self, block_type: str) -> None:
        super().__init__(f'Integration "{block_type}" is not allowed based on your permission group settings')
        self.block_type = block_type


class McpToolsNotAllowedError(AccessDeniedError):
    def __init__(self) -> None:
        super().__init__("MCP tools are not allowed based on your permission group settings")


class CustomToolsNotAllowedError(AccessDeniedError):
    def __init__(self) -> None:
        super().__init__("Custom tools are not allowed based on your permission group settings")


class SkillsNotAllowedError(AccessDeniedError):
    def __init__(self) -> None:
        super().__init__("Skills are not allowed based on your permission group settings")
