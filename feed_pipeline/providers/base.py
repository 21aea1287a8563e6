"""
Base LLM provider interface.

Summaries are produced through this interface, so the engine never imports
an SDK directly and tests can substitute a scripted provider.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class ModelTier(Enum):
    """Price/quality tiers a provider maps onto concrete model IDs."""
    FAST = "fast"          # Cheap models suited to bulk summaries
    STANDARD = "standard"


@dataclass
class ProviderCapabilities:
    # Native JSON output; otherwise the prompt asks for it
    supports_json_mode: bool = False
    max_context_tokens: int = 128000


@dataclass
class LLMResponse:
    """Reply text plus the token usage summaries are priced from."""
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name (e.g., 'anthropic', 'openai')."""

    @property
    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        ...

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when a call does not name one."""

    @abstractmethod
    def get_model_for_tier(self, tier: ModelTier) -> str:
        """Get the model ID for a capability tier."""

    @abstractmethod
    def complete(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Run one blocking completion.

        `model` falls back to default_model. With json_mode the reply should be
        a single JSON object, enforced natively where the provider can.
        """

    async def complete_async(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Async version of complete.

        Default implementation runs the sync call in an executor.
        Providers with native async clients override this.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.complete(
                user_prompt=user_prompt,
                system_prompt=system_prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                json_mode=json_mode,
            )
        )
