from __future__ import annotations

import json

import pytest

from flowsmith_ai.executor.handlers.agent.response import (
    RESPONSE_FORMAT_WARNING,
    parse_response_format,
    process_provider_response,
    validate_and_filter_structured_response,
)
from flowsmith_ai.executor.types import BlockMetadata, SerializedBlock, StreamingExecution
from flowsmith_ai.providers.executor import ProviderResponse

PERSON_SCHEMA = {
    "type": "object",
    "properties": {"name": {"type": "string"}, "age": {"type": "integer"}},
    "required": ["name"],
    "additionalProperties": False,
}


def _block() -> SerializedBlock:
    return SerializedBlock(id="b1", metadata=BlockMetadata(id="agent", name="Agent 1"))


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        ("", None),
        ("<start.schema>", None),
        ("{not json", None),
        (json.dumps(PERSON_SCHEMA), {"name": "response_schema", "schema": PERSON_SCHEMA, "strict": True}),
        ({"name": "person", "schema": PERSON_SCHEMA}, {"name": "person", "schema": PERSON_SCHEMA}),
    ],
)
def test_parse_response_format(value, expected) -> None:
    assert parse_response_format(value) == expected


def test_validate_and_filter_drops_undeclared_keys() -> None:
    data = {"name": "Ada", "age": 36, "extra": True}
    assert validate_and_filter_structured_response(data, PERSON_SCHEMA, True) == {"name": "Ada", "age": 36}


def test_validate_and_filter_recurses_into_arrays() -> None:
    schema = {"type": "array", "items": PERSON_SCHEMA}
    data = [{"name": "a", "x": 1}, {"name": "b"}]
    assert validate_and_filter_structured_response(data, schema, True) == [{"name": "a"}, {"name": "b"}]


def test_standard_response_output() -> None:
    response = ProviderResponse(
        content="hi",
        model="gpt-4o",
        tokens={"input": 3, "output": 1, "total": 4},
        tool_calls=[{"name": "custom_weather", "input": {"city": "Paris"}, "output": "sunny"}],
        interaction_id="int-1",
    )
    output = process_provider_response(response, _block(), None)

    assert output["content"] == "hi"
    assert output["model"] == "gpt-4o"
    assert output["tokens"] == {"input": 3, "output": 1, "total": 4}
    assert output["interactionId"] == "int-1"
    assert output["toolCalls"]["count"] == 1
    call = output["toolCalls"]["list"][0]
    assert call["name"] == "weather"
    assert call["arguments"] == {"city": "Paris"}
    assert call["result"] == "sunny"


def test_standard_response_defaults_tokens() -> None:
    output = process_provider_response(ProviderResponse(content="hi", model="m"), _block(), None)
    assert output["tokens"] == {"input": 0, "output": 0, "total": 0}
    assert "interactionId" not in output


def test_structured_response_is_merged_into_output() -> None:
    response = ProviderResponse(content='{"name": "Ada", "age": 36, "spy": 1}', model="gpt-4o")
    fmt = {"name": "person", "schema": PERSON_SCHEMA, "strict": True}

    output = process_provider_response(response, _block(), fmt)

    assert output["name"] == "Ada"
    assert output["age"] == 36
    assert "spy" not in output
    assert "content" not in output
    assert output["toolCalls"] == {"list": [], "count": 0}


def test_structured_response_non_object_is_wrapped() -> None:
    fmt = {"name": "list", "schema": {"type": "array", "items": {"type": "string"}}}
    output = process_provider_response(ProviderResponse(content='["a", "b"]', model="m"), _block(), fmt)
    assert output["result"] == ["a", "b"]


def test_structured_response_falls_back_on_malformed_json() -> None:
    fmt = {"name": "person", "schema": PERSON_SCHEMA}
    output = process_provider_response(ProviderResponse(content="Sure! Ada is 36.", model="m"), _block(), fmt)
    assert output["content"] == "Sure! Ada is 36."
    assert output["_responseFormatWarning"] == RESPONSE_FORMAT_WARNING


def test_streaming_execution_is_tagged_with_block() -> None:
    async def _stream():
        yield b"x"

    execution = StreamingExecution(stream=_stream(), execution={"success": True, "output": {}})
    result = process_provider_response(execution, _block(), None)

    assert result is execution
    assert execution.execution["blockId"] == "b1"
    assert execution.execution["blockName"] == "Agent 1"
    assert execution.execution["blockType"] == "agent"
    assert execution.execution["isStreaming"] is True
