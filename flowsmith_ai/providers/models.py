from __future__ import annotations

"""Model catalog.

Each provider definition lists known models with their context windows and a
set of regex patterns used to route unknown model ids (for example dated
snapshots) to the right provider.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern


@dataclass(frozen=True)
class ModelDefinition:
    id: str
    context_window: Optional[int] = None


@dataclass(frozen=True)
class ProviderDefinition:
    id: str
    name: str
    models: List[ModelDefinition]
    model_patterns: List[Pattern[str]] = field(default_factory=list)
    context_information_available: bool = True

    def matches(self, model: str) -> bool:
        return any(p.search(model) for p in self.model_patterns) or any(m.id == model for m in self.models)

    def find_model(self, model: str) -> Optional[ModelDefinition]:
        for m in self.models:
            if m.id == model:
                return m
        return None


PROVIDER_DEFINITIONS: Dict[str, ProviderDefinition] = {
    "openai": ProviderDefinition(
        id="openai",
        name="OpenAI",
        models=[
            ModelDefinition("gpt-4o", 128000),
            ModelDefinition("gpt-4o-mini", 128000),
            ModelDefinition("gpt-4.1", 1047576),
            ModelDefinition("gpt-4.1-mini", 1047576),
            ModelDefinition("gpt-5", 400000),
            ModelDefinition("gpt-5-mini", 400000),
            ModelDefinition("o3", 200000),
            ModelDefinition("o4-mini", 200000),
        ],
        model_patterns=[re.compile(r"^gpt"), re.compile(r"^o\d")],
    ),
    "azure-openai": ProviderDefinition(
        id="azure-openai",
        name="Azure OpenAI",
        models=[
            ModelDefinition("azure/gpt-4o", 128000),
            ModelDefinition("azure/gpt-4.1", 1047576),
        ],
        model_patterns=[re.compile(r"^azure/")],
    ),
    "anthropic": ProviderDefinition(
        id="anthropic",
        name="Anthropic",
        models=[
            ModelDefinition("claude-sonnet-4-5", 200000),
            ModelDefinition("claude-opus-4-1", 200000),
            ModelDefinition("claude-3-7-sonnet-latest", 200000),
            ModelDefinition("claude-3-5-haiku-latest", 200000),
        ],
        model_patterns=[re.compile(r"^claude")],
    ),
    "google": ProviderDefinition(
        id="google",
        name="Google",
        models=[
            ModelDefinition("gemini-2.5-pro", 1048576),
            ModelDefinition("gemini-2.5-flash", 1048576),
            ModelDefinition("gemini-2.0-flash", 1048576),
        ],
        model_patterns=[re.compile(r"^gemini")],
    ),
    "vertex": ProviderDefinition(
        id="vertex",
        name="Vertex AI",
        models=[
            ModelDefinition("vertex/gemini-2.5-pro", 1048576),
            ModelDefinition("vertex/gemini-2.5-flash", 1048576),
        ],
        model_patterns=[re.compile(r"^vertex/")],
    ),
}

DEFAULT_PROVIDER = "openai"


def get_provider_from_model(model: str) -> str:
    """Return the provider id that serves ``model``.

    Exact catalog matches win over pattern matches; unknown models fall back
    to ``openai``.
    """
    normalized = model.strip().lower()
    for provider in PROVIDER_DEFINITIONS.values():
        if provider.find_model(normalized) is not None:
            return provider.id
    for provider in PROVIDER_DEFINITIONS.values():
        if any(p.search(normalized) for p in provider.model_patterns):
            return provider.id
    return DEFAULT_PROVIDER


def get_model_context_window(model: Optional[str]) -> Optional[int]:
    """Return the context window of ``model`` when the catalog knows it."""
    if not model:
        return None
    for provider in PROVIDER_DEFINITIONS.values():
        if not provider.context_information_available:
            continue
        if provider.matches(model):
            model_def = provider.find_model(model)
            if model_def is not None and model_def.context_window:
                return model_def.context_window
    return None


def strip_provider_prefix(model: str) -> str:
    """Drop a routing prefix such as ``azure/`` or ``vertex/`` from a model id."""
    for prefix in ("azure/", "vertex/"):
        if model.startswith(prefix):
            return model[len(prefix) :]
    return model
