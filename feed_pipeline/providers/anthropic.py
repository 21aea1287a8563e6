"""
Anthropic Claude provider implementation.
"""

import anthropic

from .base import LLMProvider, LLMResponse, ModelTier, ProviderCapabilities

JSON_INSTRUCTION = "Respond with a single JSON object and nothing else."


class AnthropicProvider(LLMProvider):
    """Claude provider. JSON mode is emulated with a system instruction."""

    TIER_MODELS = {
        ModelTier.FAST: "claude-haiku-4-5",
        ModelTier.STANDARD: "claude-sonnet-4-5",
    }

    MODEL_ALIASES = {
        "haiku": "claude-haiku-4-5",
        "sonnet": "claude-sonnet-4-5",
    }

    def __init__(self, api_key: str, default_model: str = "claude-haiku-4-5"):
        self.client = anthropic.Anthropic(api_key=api_key)
        self.async_client = anthropic.AsyncAnthropic(api_key=api_key)
        self._default_model = self._resolve_model(default_model)

    def _resolve_model(self, model: str) -> str:
        return self.MODEL_ALIASES.get(model, model)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(supports_json_mode=False, max_context_tokens=200000)

    @property
    def default_model(self) -> str:
        return self._default_model

    def get_model_for_tier(self, tier: ModelTier) -> str:
        return self.TIER_MODELS[tier]

    def _request(self, user_prompt, system_prompt, model, max_tokens, temperature, json_mode) -> dict:
        system = system_prompt or ""
        if json_mode:
            system = f"{system}\n\n{JSON_INSTRUCTION}".strip()

        kwargs = {
            "model": self._resolve_model(model) if model else self._default_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    def _to_response(self, response, model: str) -> LLMResponse:
        text = "".join(block.text for block in response.content if block.type == "text")
        return LLMResponse(
            text=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            metadata={"stop_reason": response.stop_reason, "provider": "anthropic"},
        )

    def complete(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> LLMResponse:
        kwargs = self._request(user_prompt, system_prompt, model, max_tokens, temperature, json_mode)
        response = self.client.messages.create(**kwargs)
        return self._to_response(response, kwargs["model"])

    async def complete_async(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> LLMResponse:
        kwargs = self._request(user_prompt, system_prompt, model, max_tokens, temperature, json_mode)
        response = await self.async_client.messages.create(**kwargs)
        return self._to_response(response, kwargs["model"])
