"""Model registry.

Loads provider and model definitions from models.yaml and answers the
questions the rest of the app asks about a model: which provider serves it,
which API key it needs, and whether it streams a reasoning trace.
"""

from __future__ import annotations

import importlib.resources
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import yaml

from branchchat.config.secrets import fetch_secret

THINKING = "thinking"


@dataclass
class ModelConfig:
    """Configuration for a single model."""

    id: str
    name: str
    description: str
    context_length: int
    provider: str
    capabilities: list[str] = field(default_factory=list)  # chat, thinking, image_input
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_reasoning(self) -> bool:
        return THINKING in self.capabilities


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    name: str
    env_var: str
    default_model: str | None = None
    models: list[ModelConfig] = field(default_factory=list)


@lru_cache(maxsize=1)
def _load_models_yaml() -> dict[str, Any]:
    """Load models.yaml from package resources."""
    files = importlib.resources.files("branchchat.core.llm")
    return yaml.safe_load(files.joinpath("models.yaml").read_text(encoding="utf-8")) or {}


def _build_provider_configs() -> dict[str, ProviderConfig]:
    data = _load_models_yaml()
    configs: dict[str, ProviderConfig] = {}

    for provider_name, provider_data in data.get("providers", {}).items():
        models = [
            ModelConfig(
                id=m["id"],
                name=m["name"],
                description=m.get("description", ""),
                context_length=m.get("context_length", 0),
                provider=provider_name,
                capabilities=m.get("capabilities", []),
                params=m.get("params", {}),
            )
            for m in provider_data.get("models", [])
        ]
        configs[provider_name] = ProviderConfig(
            name=provider_name,
            env_var=provider_data["env_var"],
            default_model=provider_data.get("default_model"),
            models=models,
        )

    return configs


PROVIDER_CONFIGS: dict[str, ProviderConfig] = _build_provider_configs()
MODEL_CONFIGS: dict[str, ModelConfig] = {
    model.id: model for provider in PROVIDER_CONFIGS.values() for model in provider.models
}
DEFAULT_MODEL: str = _load_models_yaml().get("default_model", "")


def get_model_config(model_id: str) -> ModelConfig | None:
    return MODEL_CONFIGS.get(model_id)


def is_reasoning_model(model_id: str) -> bool:
    """True if the model streams a reasoning trace worth keeping."""
    model = MODEL_CONFIGS.get(model_id)
    return model is not None and model.is_reasoning


def get_api_key(model_id: str) -> str | None:
    """API key for the provider serving ``model_id`` (None if unknown or unset)."""
    model = MODEL_CONFIGS.get(model_id)
    if model is None:
        return None
    return fetch_secret(PROVIDER_CONFIGS[model.provider].env_var)


def get_available_providers() -> list[str]:
    """Return providers with API keys configured."""
    return [name for name, config in PROVIDER_CONFIGS.items() if fetch_secret(config.env_var)]


def get_available_models() -> list[ModelConfig]:
    """Return models for all providers with API keys configured."""
    available = set(get_available_providers())
    return [model for model in MODEL_CONFIGS.values() if model.provider in available]


def get_default_model(configured: str | None = None) -> str:
    """Pick the model to use.

    Priority: explicitly configured model, then the default model of the
    first provider with an API key, then the registry default.
    """
    if configured:
        return configured
    for provider in get_available_providers():
        default = PROVIDER_CONFIGS[provider].default_model
        if default:
            return default
    return DEFAULT_MODEL
