"""
LLM provider abstraction used by the summarization capability.

Supports Anthropic and OpenAI behind one interface.
"""

from .base import LLMProvider, LLMResponse, ModelTier, ProviderCapabilities
from .anthropic import AnthropicProvider
from .openai import OpenAIProvider
from .factory import ProviderType, create_provider, get_provider_from_env

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ModelTier",
    "ProviderCapabilities",
    "AnthropicProvider",
    "OpenAIProvider",
    "ProviderType",
    "create_provider",
    "get_provider_from_env",
]
