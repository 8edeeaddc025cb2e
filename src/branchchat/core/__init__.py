"""Core runtime modules."""

from branchchat.core.llm import (
    ErrorType,
    LiteLLMProvider,
    LLMError,
    LLMProvider,
    Message,
    StreamChunk,
    is_reasoning_model,
)

__all__ = [
    "ErrorType",
    "LLMError",
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "StreamChunk",
    "is_reasoning_model",
]
