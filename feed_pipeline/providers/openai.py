"""
OpenAI provider implementation.

Uses JSON mode so summary replies parse without prompt tricks.
"""

from openai import AsyncOpenAI, OpenAI

from .base import LLMProvider, LLMResponse, ModelTier, ProviderCapabilities


class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider with JSON mode support."""

    TIER_MODELS = {
        ModelTier.FAST: "gpt-4o-mini",
        ModelTier.STANDARD: "gpt-4o",
    }

    MODEL_ALIASES = {
        "gpt4": "gpt-4o",
        "gpt4-mini": "gpt-4o-mini",
        "fast": "gpt-4o-mini",
        "standard": "gpt-4o",
    }

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        organization: str | None = None,
    ):
        self.client = OpenAI(api_key=api_key, organization=organization)
        self.async_client = AsyncOpenAI(api_key=api_key, organization=organization)
        self._default_model = self._resolve_model(default_model)

    def _resolve_model(self, model: str) -> str:
        return self.MODEL_ALIASES.get(model, model)

    @property
    def name(self) -> str:
        return "openai"

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(supports_json_mode=True, max_context_tokens=128000)

    @property
    def default_model(self) -> str:
        return self._default_model

    def get_model_for_tier(self, tier: ModelTier) -> str:
        return self.TIER_MODELS[tier]

    def _request(self, user_prompt, system_prompt, model, max_tokens, temperature, json_mode) -> dict:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        kwargs = {
            "model": self._resolve_model(model) if model else self._default_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    def _to_response(self, response, model: str) -> LLMResponse:
        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            text=choice.message.content or "",
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            metadata={"finish_reason": choice.finish_reason, "provider": "openai"},
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
        response = self.client.chat.completions.create(**kwargs)
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
        response = await self.async_client.chat.completions.create(**kwargs)
        return self._to_response(response, kwargs["model"])
