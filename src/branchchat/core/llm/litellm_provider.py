"""LiteLLM provider implementation.

Model ids follow litellm conventions:
- OpenRouter: "openrouter/anthropic/claude-3.7-sonnet"
- OpenAI: "gpt-4.1", "o4-mini"
- Local: "ollama/llama3"

See https://docs.litellm.ai/docs/providers for full list.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import litellm

from branchchat.core.llm.models import get_api_key, get_model_config
from branchchat.core.llm.provider import (
    CompletionResult,
    Message,
    StreamChunk,
)
from branchchat.logging import get_logger
from branchchat.tree.types import Role

log = get_logger("llm")


def _format_content(message: Message) -> str | list[dict[str, Any]]:
    """Plain string, or OpenAI-style content parts when images are attached."""
    if not message.images:
        return message.content
    parts: list[dict[str, Any]] = []
    if message.content:
        parts.append({"type": "text", "text": message.content})
    for image in message.images:
        parts.append({"type": "image_url", "image_url": {"url": image.url}})
    return parts


class LiteLLMProvider:
    """LLM provider using litellm for multi-provider support.

    Usage:
        provider = LiteLLMProvider("openrouter/x-ai/grok-3-mini-beta")

        # With a system prompt and custom base URL
        provider = LiteLLMProvider(
            "gpt-4.1",
            system_prompt="You are a helpful assistant.",
            api_base="http://localhost:8000/v1",
        )
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the provider.

        Args:
            model: litellm model identifier
            api_key: API key (looked up from the model registry if not provided)
            api_base: Custom API base URL
            temperature: Sampling temperature (None = provider default)
            system_prompt: Prepended to every request as a system message
            **kwargs: Additional litellm options
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._temperature = temperature
        self._system_prompt = system_prompt
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def build_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Wire-format messages: system prompt first, empty messages dropped."""
        payload: list[dict[str, Any]] = []
        if self._system_prompt:
            payload.append({"role": Role.SYSTEM.value, "content": self._system_prompt})
        for message in messages:
            if not message.content.strip() and not message.images:
                continue
            payload.append({"role": message.role.value, "content": _format_content(message)})
        return payload

    def _build_kwargs(
        self,
        messages: list[Message],
        *,
        max_tokens: int,
        stop: list[str] | None,
        stream: bool,
    ) -> dict[str, Any]:
        """Build kwargs for litellm call."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self.build_messages(messages),
            "max_tokens": max_tokens,
            "stream": stream,
        }

        model_config = get_model_config(self._model)
        if model_config is not None:
            kwargs.update(model_config.params)
        kwargs.update(self._kwargs)

        if self._temperature is not None:
            kwargs["temperature"] = self._temperature
        api_key = self._api_key or get_api_key(self._model)
        if api_key:
            kwargs["api_key"] = api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        if stop:
            kwargs["stop"] = stop

        return kwargs

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Generate a completion (non-streaming)."""
        kwargs = self._build_kwargs(messages, max_tokens=max_tokens, stop=stop, stream=False)

        response = await litellm.acompletion(**kwargs)

        content = response.choices[0].message.content or ""
        finish_reason = response.choices[0].finish_reason

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(
            content=content,
            finish_reason=finish_reason,
            usage=usage,
        )

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
        stop: list[str] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Generate a streaming completion.

        Reasoning models report their trace in ``delta.reasoning_content``;
        that text is yielded as ``StreamChunk.thinking``.
        """
        kwargs = self._build_kwargs(messages, max_tokens=max_tokens, stop=stop, stream=True)
        log.debug("Streaming %d message(s) to %s", len(kwargs["messages"]), self._model)

        response = await litellm.acompletion(**kwargs)
        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            text = (delta.content or "") if delta else ""
            thinking = getattr(delta, "reasoning_content", None) if delta else None
            if not isinstance(thinking, str):
                thinking = ""
            finish_reason = choice.finish_reason

            if not text and not thinking and finish_reason is None:
                continue
            yield StreamChunk(
                text=text,
                thinking=thinking,
                is_final=finish_reason is not None,
                finish_reason=finish_reason,
            )
