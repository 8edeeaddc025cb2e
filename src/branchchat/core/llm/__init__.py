"""LLM provider abstraction layer."""

from branchchat.core.llm.errors import ErrorType, LLMError, classify_error
from branchchat.core.llm.litellm_provider import LiteLLMProvider
from branchchat.core.llm.models import (
    DEFAULT_MODEL,
    MODEL_CONFIGS,
    PROVIDER_CONFIGS,
    ModelConfig,
    ProviderConfig,
    get_available_models,
    get_available_providers,
    get_default_model,
    get_model_config,
    is_reasoning_model,
)
from branchchat.core.llm.provider import (
    CompletionResult,
    LLMProvider,
    Message,
    StreamChunk,
    to_messages,
)

__all__ = [
    # Protocol and types
    "LLMProvider",
    "Message",
    "StreamChunk",
    "CompletionResult",
    "to_messages",
    # Errors
    "ErrorType",
    "LLMError",
    "classify_error",
    # Implementation
    "LiteLLMProvider",
    # Model registry
    "DEFAULT_MODEL",
    "MODEL_CONFIGS",
    "PROVIDER_CONFIGS",
    "ModelConfig",
    "ProviderConfig",
    "get_available_models",
    "get_available_providers",
    "get_default_model",
    "get_model_config",
    "is_reasoning_model",
]
