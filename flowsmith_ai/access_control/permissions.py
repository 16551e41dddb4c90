"""Checks run before an agent block touches a provider, integration or tool kind.

A user without a permission group is unrestricted. Each ``validate_*`` method
returns ``None`` when the action is allowed and raises an
``AccessDeniedError`` subclass otherwise.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..providers.models import get_provider_from_model
from ..repos.domain import PermissionGroupConfig
from ..repos.interfaces import PermissionConfigRepository
from .errors import (
    CustomToolsNotAllowedError,
    IntegrationNotAllowedError,
    McpToolsNotAllowedError,
    ProviderNotAllowedError,
    SkillsNotAllowedError,
)

logger = logging.getLogger(__name__)


class PermissionChecker:
    def __init__(self, repository: Optional[PermissionConfigRepository] = None) -> None:
        self._repository = repository

    async def get_config(self, user_id: Optional[str]) -> Optional[PermissionGroupConfig]:
        if not user_id or self._repository is None:
            return None
        return await self._repository.get_for_user(user_id)

    async def validate_model_provider(self, user_id: Optional[str], model: str) -> None:
        config = await self.get_config(user_id)
        if config is None or config.allowed_model_providers is None:
            return
        provider_id = get_provider_from_model(model)
        if provider_id not in config.allowed_model_providers:
            logger.warning("Model provider %s blocked for user %s", provider_id, user_id)
            raise ProviderNotAllowedError(provider_id, model)

    async def validate_block_type(self, user_id: Optional[str], block_type: str) -> None:
        config = await self.get_config(user_id)
        if config is None or config.allowed_integrations is None:
            return
        if block_type not in config.allowed_integrations:
            logger.warning("Integration %s blocked for user %s", block_type, user_id)
            raise IntegrationNotAllowedError(block_type)

    async def validate_mcp_tools_allowed(self, user_id: Optional[str]) -> None:
        config = await self.get_config(user_id)
        if config is not None and config.disable_mcp_tools:
            raise McpToolsNotAllowedError()

    async def validate_custom_tools_allowed(self, user_id: Optional[str]) -> None:
        config = await self.get_config(user_id)
        if config is not None and config.disable_custom_tools:
            raise CustomToolsNotAllowedError()

    async def validate_skills_allowed(self, user_id: Optional[str]) -> None:
        config = await self.get_config(user_id)
        if config is not None and config.disable_skills:
            raise SkillsNotAllowedError()
