"""
Tests for LLM provider selection and request shaping.

SDK clients are replaced with mocks; nothing reaches the network.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from feed_pipeline.providers import (
    AnthropicProvider,
    ModelTier,
    OpenAIProvider,
    ProviderType,
    create_provider,
    get_provider_from_env,
)


class TestFactory:

    def test_no_keys_means_no_provider(self):
        assert get_provider_from_env() is None

    def test_anthropic_wins_by_default(self):
        provider = get_provider_from_env(anthropic_key="a-key", openai_key="o-key")
        assert isinstance(provider, AnthropicProvider)

    def test_preferred_provider(self):
        provider = get_provider_from_env(anthropic_key="a-key", openai_key="o-key", preferred_provider="OpenAI")
        assert isinstance(provider, OpenAIProvider)

    def test_preferred_provider_without_key_falls_back(self):
        provider = get_provider_from_env(anthropic_key="a-key", preferred_provider="openai")
        assert isinstance(provider, AnthropicProvider)

    def test_unknown_preferred_provider_is_ignored(self):
        provider = get_provider_from_env(openai_key="o-key", preferred_provider="gemini")
        assert isinstance(provider, OpenAIProvider)

    def test_default_model_override(self):
        provider = get_provider_from_env(openai_key="o-key", default_model="standard")
        assert provider.default_model == "gpt-4o"

    def test_create_provider_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("gemini", "key")

    def test_create_provider_by_enum(self):
        provider = create_provider(ProviderType.ANTHROPIC, "key")
        assert provider.default_model == "claude-haiku-4-5"
        assert provider.get_model_for_tier(ModelTier.STANDARD) == "claude-sonnet-4-5"


class TestAnthropicProvider:

    def _reply(self, text):
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=text)],
            usage=SimpleNamespace(input_tokens=120, output_tokens=40),
            stop_reason="end_turn",
        )

    def test_json_mode_adds_system_instruction(self):
        provider = AnthropicProvider(api_key="key")
        provider.client = MagicMock()
        provider.client.messages.create.return_value = self._reply('{"summary": "x"}')

        response = provider.complete("Summarize", system_prompt="Be brief", model="sonnet", json_mode=True)

        kwargs = provider.client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-sonnet-4-5"
        assert kwargs["system"].startswith("Be brief")
        assert "JSON" in kwargs["system"]
        assert response.text == '{"summary": "x"}'
        assert response.total_tokens == 160

    @pytest.mark.asyncio
    async def test_async_client(self):
        provider = AnthropicProvider(api_key="key")
        provider.async_client = MagicMock()
        provider.async_client.messages.create = AsyncMock(return_value=self._reply("ok"))

        response = await provider.complete_async("Summarize")

        assert response.model == "claude-haiku-4-5"
        assert "system" not in provider.async_client.messages.create.call_args.kwargs


class TestOpenAIProvider:

    def test_json_mode_uses_response_format(self):
        provider = OpenAIProvider(api_key="key")
        provider.client = MagicMock()
        provider.client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="{}"), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=3),
        )

        response = provider.complete("Summarize", system_prompt="Be brief", json_mode=True)

        kwargs = provider.client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief"}
        assert response.input_tokens == 10
        assert response.output_tokens == 3
        assert response.metadata["finish_reason"] == "stop"
