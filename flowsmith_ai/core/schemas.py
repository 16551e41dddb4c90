"""Pydantic base schema utilities."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """
    Base Pydantic model for workflow payloads.

    Configures common Pydantic behaviors:
    - ``alias_generator=to_camel``: payloads produced by the workflow builder use camelCase keys.
    - ``populate_by_name=True``: Allow initialization by alias or field name.
    - ``extra="ignore"``: resolved block inputs carry UI-only fields that the executor does not use.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )
