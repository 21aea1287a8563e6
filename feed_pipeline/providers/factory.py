"""
Provider selection from configured API keys.
"""

import logging
from enum import Enum

from .anthropic import AnthropicProvider
from .base import LLMProvider
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)


class ProviderType(Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


# Selection order when no provider is preferred
PROVIDER_CLASSES: dict[ProviderType, type[LLMProvider]] = {
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.OPENAI: OpenAIProvider,
}


def parse_provider_type(value: ProviderType | str) -> ProviderType:
    if isinstance(value, ProviderType):
        return value
    try:
        return ProviderType(value.strip().lower())
    except ValueError:
        known = ", ".join(p.value for p in ProviderType)
        raise ValueError(f"Unknown provider: {value} (expected one of: {known})") from None


def create_provider(
    provider_type: ProviderType | str,
    api_key: str,
    default_model: str | None = None,
) -> LLMProvider:
    """
    Instantiate a provider. Without default_model, the provider's fast tier
    model is used.

    Raises:
        ValueError: provider_type names no known provider
    """
    provider_cls = PROVIDER_CLASSES[parse_provider_type(provider_type)]
    if default_model:
        return provider_cls(api_key=api_key, default_model=default_model)
    return provider_cls(api_key=api_key)


def get_provider_from_env(
    anthropic_key: str | None = None,
    openai_key: str | None = None,
    preferred_provider: str | None = None,
    default_model: str | None = None,
) -> LLMProvider | None:
    """
    Pick a provider for summaries, or None when no key is configured.

    A preferred provider is used when its key is set; otherwise the first
    provider with a key wins, in PROVIDER_CLASSES order.
    """
    keys = {
        ProviderType.ANTHROPIC: anthropic_key,
        ProviderType.OPENAI: openai_key,
    }

    candidates = list(PROVIDER_CLASSES)
    if preferred_provider:
        try:
            preferred = parse_provider_type(preferred_provider)
        except ValueError:
            logger.warning(f"Ignoring unknown LLM provider: {preferred_provider}")
        else:
            candidates.remove(preferred)
            candidates.insert(0, preferred)

    for provider_type in candidates:
        if keys[provider_type]:
            return create_provider(provider_type, keys[provider_type], default_model=default_model)
    return None
