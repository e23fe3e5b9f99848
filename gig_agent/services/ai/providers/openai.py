"""OpenAI AI provider implementation."""

import logging

import openai

from gig_agent.services.ai.client import AIClient, AIProvider, GenerationResult, extract_code

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
MAX_TOKENS = 8192


class OpenAIClient(AIClient):
    """OpenAI GPT AI client."""

    provider = AIProvider.OPENAI

    def __init__(self, api_key: str, model: str | None = None):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key.
            model: Model name (defaults to gpt-4o).
        """
        self.client = openai.OpenAI(api_key=api_key)
        self.model = model or DEFAULT_MODEL

    def generate_scraper_code(self, system_prompt: str, prompt: str) -> GenerationResult:
        """
        Generate scraper code using GPT.

        Args:
            system_prompt: Execution contract and guidelines.
            prompt: Source-specific request.

        Returns:
            GenerationResult with the extracted code or error details.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
            )
            raw_response = response.choices[0].message.content or ""
            logger.debug(f"Raw AI response: {raw_response[:500]}...")
        except openai.OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
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
