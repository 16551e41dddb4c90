"""Parameter helpers shared by every tool that is exposed to an LLM.

Values the user fixed in the builder are removed from the schema the model
sees, then merged back in when the model calls the tool.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional


def is_empty_value(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def filter_schema_for_llm(schema: Optional[Dict[str, Any]], user_params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of ``schema`` without the properties the user already set."""
    if not schema:
        return {"type": "object", "properties": {}, "required": []}

    filtered = copy.deepcopy(schema)
    filtered.setdefault("type", "object")
    properties: Dict[str, Any] = filtered.setdefault("properties", {})
    if not user_params:
        return filtered

    provided = {k for k, v in user_params.items() if not is_empty_value(v)}
    for key in provided:
        properties.pop(key, None)
    if "required" in filtered:
        filtered["required"] = [r for r in filtered["required"] if r not in provided]
    return filtered


def merge_tool_parameters(user_params: Optional[Dict[str, Any]], llm_params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge LLM supplied arguments with user fixed ones; non-empty user values win."""
    merged: Dict[str, Any] = dict(llm_params or {})
    for key, value in (user_params or {}).items():
        if is_empty_value(value):
            continue
        merged[key] = value
    return merged
