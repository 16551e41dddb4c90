"""Skills: reusable instruction sets loaded on demand.

Only skill names and descriptions go into the system prompt. The model pulls
the full instructions of a skill through the ``load_skill`` tool when it needs
them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ....providers.executor import ProviderTool
from ....repos.interfaces import SkillRepository
from ...constants import AGENT
from .types import SkillInput, SkillMetadata

logger = logging.getLogger(__name__)


class SkillResolver:
    def __init__(self, repository: Optional[SkillRepository] = None) -> None:
        self._repository = repository

    async def resolve_skill_metadata(self, skills: List[SkillInput], workspace_id: str) -> List[SkillMetadata]:
        if not skills or self._repository is None:
            return []
        ids = [s.skill_id for s in skills if s.skill_id]
        names = [s.name for s in skills if s.name and not s.skill_id]
        found: Dict[str, SkillMetadata] = {}
        try:
            if ids:
                for skill in await self._repository.list_for_workspace(workspace_id, ids=ids):
                    found[skill.name] = SkillMetadata(name=skill.name, description=skill.description)
            if names:
                for skill in await self._repository.list_for_workspace(workspace_id, names=names):
                    found[skill.name] = SkillMetadata(name=skill.name, description=skill.description)
        except Exception as e:
            logger.error("Failed to resolve skills for workspace %s: %s", workspace_id, e)
            return []
        return list(found.values())

    def build_load_skill_tool(self, names: List[str], workspace_id: str) -> ProviderTool:
        async def _load(params: Dict[str, Any]) -> Dict[str, Any]:
            name = params.get("skill_name")
            if name not in names or self._repository is None:
                return {"success": False, "error": f"Unknown skill: {name}"}
            matches = await self._repository.list_for_workspace(workspace_id, names=[name])
            if not matches:
                return {"success": False, "error": f"Skill not found: {name}"}
            return {"success": True, "name": name, "content": matches[0].content}

        return build_load_skill_tool(names, execute_function=_load)


def build_load_skill_tool(names: List[str], execute_function=None) -> ProviderTool:
    return ProviderTool(
        id=AGENT.LOAD_SKILL_TOOL_ID,
        name=AGENT.LOAD_SKILL_TOOL_ID,
        description=(
            "Load the full instructions of a skill. Call this before performing a task that matches "
            "one of the available skills."
        ),
        parameters={
            "type": "object",
            "properties": {
                "skill_name": {
                    "type": "string",
                    "enum": list(names),
                    "description": "Name of the skill to load",
                }
            },
            "required": ["skill_name"],
        },
        execute_function=execute_function,
    )


def build_skills_system_prompt_section(metadata: List[SkillMetadata]) -> str:
    lines = "\n".join(f"- {m.name}: {m.description}" if m.description else f"- {m.name}" for m in metadata)
    return (
        "\n\n## Available Skills\n"
        f"Use the {AGENT.LOAD_SKILL_TOOL_ID} tool to load a skill's instructions before using it.\n"
        f"{lines}"
    )
