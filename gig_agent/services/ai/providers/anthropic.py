"""Anthropic (Claude) AI provider implementation."""

import logging

import anthropic

from gig_agent.services.ai.client import AIClient, AIProvider, GenerationResult, extract_code

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 8192


class AnthropicClient(AIClient):
    """Anthropic Claude AI client."""

    provider = AIProvider.ANTHROPIC

    def __init__(self, api_key: str, model: str | None = None):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            model: Model name (defaults to claude-sonnet-4-20250514).
        """
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model or DEFAULT_MODEL

    def generate_scraper_code(self, system_prompt: str, prompt: str) -> GenerationResult:
        """
        Generate scraper code using Claude.

        Args:
            system_prompt: Execution contract and guidelines.
            prompt: Source-specific request.

        Returns:
            GenerationResult with the extracted code or error details.
        """
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                system=system_prompt,
                messages=[{"role": "user", "content": prompt}],
            )
            raw_response = "".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            )
            logger.info(f"Scraper generation received response ({len(raw_response)} chars)")
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            return GenerationResult(
                success=False,
                raw_response="",
                error_message=f"API error: {str(e)}",
            )

        code = extract_code(raw_response)
        if not code:
            return GenerationResult(
                success=False, raw_response=raw_response, error_message="Empty response"
            )
        return GenerationResult(success=True, raw_response=raw_response, code=code)
