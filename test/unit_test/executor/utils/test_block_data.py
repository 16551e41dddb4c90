from __future__ import annotations

from flowsmith_ai.executor.types import BlockState, ExecutionContext
from flowsmith_ai.executor.utils.block_data import collect_block_data, normalize_block_name


def test_normalize_block_name() -> None:
    assert normalize_block_name("My Agent 1") == "myagent1"


def test_collect_block_data_skips_unexecuted_blocks() -> None:
    ctx = ExecutionContext(
        workflow_id="wf",
        block_states={
            "b1": BlockState(output={"content": "x"}),
            "b2": BlockState(output={"content": "y"}, executed=False),
        },
        block_names={"b1": "Start Block", "b2": "Later"},
        block_output_schemas={"b1": {"content": {"type": "string"}}},
    )

    data, names, schemas = collect_block_data(ctx)

    assert data == {"b1": {"content": "x"}}
    assert names == {"startblock": "b1"}
    assert schemas == {"b1": {"content": {"type": "string"}}}
