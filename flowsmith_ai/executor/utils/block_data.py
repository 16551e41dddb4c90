"""Collect outputs of already executed blocks for code execution."""

from __future__ import annotations

from typing import Any, Dict, Tuple

from ..types import ExecutionContext


def normalize_block_name(name: str) -> str:
    return name.replace(" ", "").lower()


def collect_block_data(
    ctx: ExecutionContext,
) -> Tuple[Dict[str, Any], Dict[str, str], Dict[str, Dict[str, Any]]]:
    """Return ``(block_data, block_name_mapping, block_output_schemas)``.

    ``block_data`` maps block id to output for every executed block.
    ``block_name_mapping`` maps the normalised block name to its id so that
    code can reference blocks by name.
    """
    block_data: Dict[str, Any] = {}
    name_mapping: Dict[str, str] = {}
    output_schemas: Dict[str, Dict[str, Any]] = {}

    for block_id, state in ctx.block_states.items():
        if not state.executed:
            continue
        block_data[block_id] = state.output
        name = ctx.block_names.get(block_id)
        if name:
            name_mapping[normalize_block_name(name)] = block_id
        schema = ctx.block_output_schemas.get(block_id)
        if schema:
            output_schemas[block_id] = schema

    return block_data, name_mapping, output_schemas
