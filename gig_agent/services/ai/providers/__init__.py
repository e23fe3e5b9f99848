"""AI provider implementations."""

from gig_agent.services.ai.providers.anthropic import AnthropicClient
from gig_agent.services.ai.providers.openai import OpenAIClient

__all__ = ["AnthropicClient", "OpenAIClient"]
