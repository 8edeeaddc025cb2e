"""Tests for the model registry and LiteLLM integration.

Tests coverage for:
- src/branchchat/core/llm/models.py
- src/branchchat/core/llm/litellm_provider.py
- src/branchchat/core/llm/provider.py
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from branchchat.core.llm.litellm_provider import LiteLLMProvider
from branchchat.core.llm.models import (
    DEFAULT_MODEL,
    PROVIDER_CONFIGS,
    get_api_key,
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
from branchchat.tree.types import ImageAttachment, Role
from tests.utils import (
    ScriptedProvider,
    build_linear_store,
    create_mock_llm_response,
    create_mock_llm_stream_chunk,
)


@pytest.fixture
def no_api_keys(monkeypatch: pytest.MonkeyPatch, tmp_path) -> pytest.MonkeyPatch:
    """Clear every provider key and hide any .env.secrets files."""
    for config in PROVIDER_CONFIGS.values():
        monkeypatch.delenv(config.env_var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    return monkeypatch


async def collect(provider: LiteLLMProvider, chunks: list) -> list[StreamChunk]:
    async def async_chunks():
        for chunk in chunks:
            yield chunk

    with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
        mock_acompletion.return_value = async_chunks()
        messages = [Message(role=Role.USER, content="Test")]
        return [chunk async for chunk in provider.stream(messages)]


# =============================================================================
# Model Registry Tests
# =============================================================================


class TestModelRegistry:
    """Tests for models.yaml lookups."""

    def test_reasoning_models(self) -> None:
        assert is_reasoning_model("openrouter/x-ai/grok-3-mini-beta")
        assert is_reasoning_model("openrouter/anthropic/claude-3.7-sonnet:thinking")
        assert not is_reasoning_model("openrouter/anthropic/claude-3.7-sonnet")
        assert not is_reasoning_model("unknown/model")

    def test_model_config(self) -> None:
        config = get_model_config("openrouter/x-ai/grok-3-mini-beta")
        assert config is not None
        assert config.provider == "openrouter"
        assert config.params == {"reasoning_effort": "high"}
        assert config.context_length > 0
        assert get_model_config("unknown/model") is None

    def test_default_model_is_registered(self) -> None:
        assert get_model_config(DEFAULT_MODEL) is not None

    def test_no_api_keys(self, no_api_keys: pytest.MonkeyPatch) -> None:
        """Test discovery with no API keys set."""
        assert get_available_providers() == []
        assert get_available_models() == []
        assert get_default_model() == DEFAULT_MODEL

    def test_openai_only(self, no_api_keys: pytest.MonkeyPatch) -> None:
        """Test discovery with only an OpenAI key."""
        no_api_keys.setenv("OPENAI_API_KEY", "sk-test-456")

        assert get_available_providers() == ["openai"]
        models = get_available_models()
        assert models
        assert all(m.provider == "openai" for m in models)
        assert get_default_model() == "gpt-4.1"

    def test_provider_order(self, no_api_keys: pytest.MonkeyPatch) -> None:
        no_api_keys.setenv("ANTHROPIC_API_KEY", "sk-ant")
        no_api_keys.setenv("OPENROUTER_API_KEY", "sk-or")
        assert get_available_providers() == ["openrouter", "anthropic"]
        assert get_default_model() == "openrouter/anthropic/claude-3.7-sonnet"

    def test_configured_model_wins(self, no_api_keys: pytest.MonkeyPatch) -> None:
        no_api_keys.setenv("OPENAI_API_KEY", "sk-test")
        assert get_default_model("ollama/llama3") == "ollama/llama3"

    def test_api_key_lookup(self, no_api_keys: pytest.MonkeyPatch) -> None:
        no_api_keys.setenv("OPENROUTER_API_KEY", "sk-or-123")
        assert get_api_key("openrouter/openai/gpt-4.1") == "sk-or-123"
        assert get_api_key("gpt-4.1") is None
        assert get_api_key("ollama/llama3") is None


# =============================================================================
# LiteLLM Provider Tests
# =============================================================================


class TestLiteLLMProvider:
    """Tests for LiteLLM provider implementation."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(LiteLLMProvider("gpt-4.1"), LLMProvider)
        assert isinstance(ScriptedProvider(), LLMProvider)

    def test_build_messages(self) -> None:
        """System prompt first, empty messages dropped, images as content parts."""
        provider = LiteLLMProvider("gpt-4.1", system_prompt="Be brief.")
        image = ImageAttachment(url="https://example.com/cat.png")
        messages = [
            Message(role=Role.SYSTEM, content=""),
            Message(role=Role.USER, content="Hello!"),
            Message(role=Role.ASSISTANT, content="   "),
            Message(role=Role.USER, content="What is this?", images=(image,)),
        ]

        payload = provider.build_messages(messages)

        assert payload == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello!"},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "What is this?"},
                    {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
                ],
            },
        ]

    def test_build_kwargs(self, no_api_keys: pytest.MonkeyPatch) -> None:
        """Test _build_kwargs constructs correct arguments."""
        provider = LiteLLMProvider(
            "gpt-4.1",
            api_key="sk-test",
            api_base="http://localhost:8000",
            temperature=0.5,
            timeout=120,
        )
        kwargs = provider._build_kwargs(
            [Message(role=Role.USER, content="Hello!")],
            max_tokens=1000,
            stop=["STOP"],
            stream=True,
        )

        assert kwargs["model"] == "gpt-4.1"
        assert kwargs["max_tokens"] == 1000
        assert kwargs["temperature"] == 0.5
        assert kwargs["stop"] == ["STOP"]
        assert kwargs["stream"] is True
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["api_base"] == "http://localhost:8000"
        assert kwargs["timeout"] == 120

    def test_build_kwargs_model_params_and_registry_key(
        self, no_api_keys: pytest.MonkeyPatch
    ) -> None:
        no_api_keys.setenv("OPENROUTER_API_KEY", "sk-or-abc")
        provider = LiteLLMProvider("openrouter/x-ai/grok-3-mini-beta")
        kwargs = provider._build_kwargs([], max_tokens=10, stop=None, stream=False)

        assert kwargs["reasoning_effort"] == "high"
        assert kwargs["api_key"] == "sk-or-abc"
        assert "temperature" not in kwargs
        assert "stop" not in kwargs
        assert "api_base" not in kwargs

    def test_explicit_kwargs_override_model_params(self, no_api_keys: pytest.MonkeyPatch) -> None:
        provider = LiteLLMProvider("openrouter/x-ai/grok-3-mini-beta", reasoning_effort="low")
        kwargs = provider._build_kwargs([], max_tokens=10, stop=None, stream=False)
        assert kwargs["reasoning_effort"] == "low"

    async def test_complete_success(self, no_api_keys: pytest.MonkeyPatch) -> None:
        """Test successful non-streaming completion."""
        provider = LiteLLMProvider("gpt-4.1")

        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = create_mock_llm_response("This is the response!")
            result = await provider.complete([Message(role=Role.USER, content="Test")], stop=["END"])

        assert isinstance(result, CompletionResult)
        assert result.content == "This is the response!"
        assert result.finish_reason == "stop"
        assert result.usage["total_tokens"] == 30
        call_kwargs = mock_acompletion.call_args.kwargs
        assert call_kwargs["stream"] is False
        assert call_kwargs["stop"] == ["END"]

    async def test_complete_errors_propagate(self, no_api_keys: pytest.MonkeyPatch) -> None:
        provider = LiteLLMProvider("invalid-model")
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.side_effect = Exception("API Error: Invalid model")
            with pytest.raises(Exception, match="Invalid model"):
                await provider.complete([Message(role=Role.USER, content="Test")])

    async def test_stream_success(self, no_api_keys: pytest.MonkeyPatch) -> None:
        """Test successful streaming completion."""
        provider = LiteLLMProvider("gpt-4.1")
        collected = await collect(
            provider,
            [
                create_mock_llm_stream_chunk("Hello", False),
                create_mock_llm_stream_chunk(" world", False),
                create_mock_llm_stream_chunk("!", True),
            ],
        )

        assert [c.text for c in collected] == ["Hello", " world", "!"]
        assert collected[0].is_final is False
        assert collected[2].is_final is True
        assert collected[2].finish_reason == "stop"

    async def test_stream_skips_empty_deltas(self, no_api_keys: pytest.MonkeyPatch) -> None:
        provider = LiteLLMProvider("gpt-4.1")
        collected = await collect(
            provider,
            [
                create_mock_llm_stream_chunk("Text", False),
                create_mock_llm_stream_chunk("", False),
                create_mock_llm_stream_chunk(None, False),
                create_mock_llm_stream_chunk(None, True),
            ],
        )
        assert [c.text for c in collected] == ["Text", ""]
        assert collected[-1].is_final

    async def test_stream_reasoning_content(self, no_api_keys: pytest.MonkeyPatch) -> None:
        provider = LiteLLMProvider("openrouter/x-ai/grok-3-mini-beta")
        collected = await collect(
            provider,
            [
                create_mock_llm_stream_chunk(None, reasoning="Thinking "),
                create_mock_llm_stream_chunk(None, reasoning="hard"),
                create_mock_llm_stream_chunk("Answer", is_final=True),
            ],
        )
        assert [c.thinking for c in collected] == ["Thinking ", "hard", ""]
        assert collected[-1].text == "Answer"


# =============================================================================
# Data Types Tests
# =============================================================================


class TestProviderTypes:
    """Tests for request and response types."""

    def test_to_messages(self) -> None:
        store = build_linear_store(("user", "Hi"), ("assistant", "Hello"))
        messages = to_messages(store.current_path)
        assert [(m.role, m.content) for m in messages] == [
            (Role.SYSTEM, ""),
            (Role.USER, "Hi"),
            (Role.ASSISTANT, "Hello"),
        ]
        assert all(m.images == () for m in messages)

    def test_stream_chunk_defaults(self) -> None:
        chunk = StreamChunk()
        assert chunk.text == ""
        assert chunk.thinking == ""
        assert chunk.is_final is False
        assert chunk.finish_reason is None

    def test_message_equality(self) -> None:
        assert Message(role=Role.USER, content="x") == Message(role=Role.USER, content="x")
