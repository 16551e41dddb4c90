"""Shaping provider responses into Agent block output."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Union

from ....providers.executor import ProviderResponse
from ...constants import DEFAULTS, REFERENCE, strip_custom_tool_prefix
from ...types import BlockOutput, SerializedBlock, StreamingExecution

logger = logging.getLogger(__name__)

RESPONSE_FORMAT_WARNING = (
    "LLM did not adhere to the specified structured response format. Expected valid JSON but received "
    "malformed content. Falling back to standard format."
)


def _wrap_schema(value: Any) -> Any:
    if isinstance(value, dict) and "schema" not in value and "name" not in value:
        return {"name": "response_schema", "schema": value, "strict": True}
    return value


def parse_response_format(response_format: Union[str, Dict[str, Any], None]) -> Optional[Any]:
    """Normalise a builder response format into ``{name, schema, strict}``.

    Unresolved ``<block.reference>`` strings and invalid JSON disable
    structured output.
    """
    if not response_format:
        return None
    if isinstance(response_format, dict):
        return _wrap_schema(response_format)
    if isinstance(response_format, str):
        value = response_format.strip()
        if value.startswith(REFERENCE.START) and REFERENCE.END in value:
            return None
        try:
            parsed = json.loads(value)
        except ValueError as e:
            logger.warning("Failed to parse response format as JSON, using default behavior: %s", e)
            return None
        return _wrap_schema(parsed)
    logger.warning("Unexpected response format type %s, using default behavior", type(response_format).__name__)
    return None


def validate_and_filter_structured_response(data: Any, schema: Any, is_strict: bool) -> Any:
    """Keep the parts of ``data`` described by ``schema``.

    Undeclared keys are dropped. A warning is logged for each one when the
    schema is strict with ``additionalProperties: false``.
    """
    if not isinstance(schema, dict):
        return data

    filter_strictly = is_strict and schema.get("additionalProperties") is False

    if schema.get("type") == "object" and isinstance(schema.get("properties"), dict) and isinstance(data, dict):
        properties = schema["properties"]
        filtered: Dict[str, Any] = {}
        for key, value in data.items():
            if key in properties:
                prop_schema = properties[key]
                filtered[key] = (
                    validate_and_filter_structured_response(value, prop_schema, is_strict)
                    if isinstance(prop_schema, dict)
                    else value
                )
            elif filter_strictly:
                logger.warning("Filtering out property not in schema: %s", key)
        for required in schema.get("required") or []:
            if required not in filtered:
                logger.warning("Missing required property in structured response: %s", required)
        return filtered

    if schema.get("type") == "array" and isinstance(schema.get("items"), dict) and isinstance(data, list):
        return [validate_and_filter_structured_response(item, schema["items"], is_strict) for item in data]

    return data


def format_tool_call(tc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **tc,
        "name": strip_custom_tool_prefix(tc.get("name", "")),
        "startTime": tc.get("startTime"),
        "endTime": tc.get("endTime"),
        "duration": tc.get("duration"),
        "arguments": tc.get("arguments") or tc.get("input") or {},
        "result": tc.get("result") if tc.get("result") is not None else tc.get("output"),
    }


def create_response_metadata(result: ProviderResponse) -> Dict[str, Any]:
    return {
        "tokens": result.tokens
        or {"input": DEFAULTS.TOKENS.PROMPT, "output": DEFAULTS.TOKENS.COMPLETION, "total": DEFAULTS.TOKENS.TOTAL},
        "toolCalls": {
            "list": [format_tool_call(tc) for tc in result.tool_calls],
            "count": len(result.tool_calls),
        },
        "providerTiming": result.timing,
        "cost": result.cost,
    }


def process_standard_response(result: ProviderResponse) -> BlockOutput:
    output: BlockOutput = {"content": result.content, "model": result.model, **create_response_metadata(result)}
    if result.interaction_id:
        output["interactionId"] = result.interaction_id
    return output


def process_structured_response(result: ProviderResponse, response_format: Dict[str, Any]) -> BlockOutput:
    try:
        extracted = json.loads(result.content.strip())
    except ValueError as e:
        logger.error("LLM did not adhere to structured response format: %s (content=%.200s)", e, result.content)
        output = process_standard_response(result)
        output["_responseFormatWarning"] = RESPONSE_FORMAT_WARNING
        return output

    schema = response_format.get("schema", response_format)
    is_strict = response_format.get("strict") is not False
    validated = validate_and_filter_structured_response(extracted, schema, is_strict)
    if not isinstance(validated, dict):
        validated = {"result": validated}
    return {**validated, **create_response_metadata(result)}


def process_streaming_execution(execution: StreamingExecution, block: SerializedBlock) -> StreamingExecution:
    record = execution.execution
    if "output" in record:
        if block.metadata and block.metadata.name:
            record["blockName"] = block.metadata.name
        if block.metadata and block.metadata.id:
            record["blockType"] = block.metadata.id
        record["blockId"] = block.id
        record["isStreaming"] = True
    return execution


def process_provider_response(
    response: Union[ProviderResponse, StreamingExecution],
    block: SerializedBlock,
    response_format: Optional[Dict[str, Any]],
) -> Union[BlockOutput, StreamingExecution]:
    if isinstance(response, StreamingExecution):
        return process_streaming_execution(response, block)
    if response_format:
        return process_structured_response(response, response_format)
    return process_standard_response(response)
