"""AI client interface and provider abstraction."""

import re
from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel

_FENCE = re.compile(r"```(?:python|py)?[ \t]*\n(.*?)```", re.DOTALL)


def extract_code(raw_response: str) -> str:
    """
    Pull Python source out of a model response.

    Takes the largest fenced block when the response uses markdown fences,
    otherwise the whole response.

    Args:
        raw_response: Text returned by the model.

    Returns:
        The code, stripped of surrounding whitespace.
    """
    blocks = _FENCE.findall(raw_response)
    if blocks:
        return max(blocks, key=len).strip()
    return raw_response.strip()


class AIProvider(str, Enum):
    """Supported AI providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class GenerationResult(BaseModel):
    """Result of an AI generation attempt."""

    success: bool
    raw_response: str
    code: str | None = None
    error_message: str | None = None


class AIClient(ABC):
    """Abstract base class for AI providers."""

    provider: AIProvider
    model: str

    @abstractmethod
    def generate_scraper_code(self, system_prompt: str, prompt: str) -> GenerationResult:
        """
        Ask the model for scraper code.

        Args:
            system_prompt: Instructions describing the execution contract.
            prompt: Source-specific request (website, HTML sample, feedback).

        Returns:
            GenerationResult with the extracted code or error details.
        """
        pass


def get_ai_client(
    provider: AIProvider | str,
    api_key: str,
    model: str | None = None,
) -> AIClient:
    """
    Factory function to get an AI client for the specified provider.

    Args:
        provider: The AI provider to use.
        api_key: The API key for the provider.
        model: Optional model name override.

    Returns:
        An AIClient instance for the specified provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    if isinstance(provider, str):
        provider = AIProvider(provider.lower())

    if provider == AIProvider.ANTHROPIC:
        from gig_agent.services.ai.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=api_key, model=model)
    elif provider == AIProvider.OPENAI:
        from gig_agent.services.ai.providers.openai import OpenAIClient

        return OpenAIClient(api_key=api_key, model=model)
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")
