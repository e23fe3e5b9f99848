"""AI scraper generation service.

Asks a model for scraper code, checks it statically and stores it as the
source's next version with origin AI_GENERATED. Generation never activates
a version; an operator tests and activates it.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from gig_agent.core.enums import VersionOrigin
from gig_agent.core.errors import GigAgentError, ValidationError
from gig_agent.core.schema import ScraperVersion, Source, VersionTestResults
from gig_agent.db.repositories import ScraperVersionRepository, SourceRepository, VenueRepository
from gig_agent.ingestion.crawler import Crawler
from gig_agent.ingestion.registry import GlobalConfig
from gig_agent.ingestion.sandbox import validate_scraper_code
from gig_agent.ingestion.versions import ScraperVersionService, source_timezone
from gig_agent.services.ai.client import AIClient, get_ai_client
from gig_agent.services.ai.prompts import PROMPT_VERSION, SYSTEM_PROMPT, build_generation_prompt

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    """Result of a generation attempt."""

    success: bool
    version: ScraperVersion | None = None
    raw_response: str = ""
    error_message: str | None = None


def feedback_from_results(results: VersionTestResults | None) -> str | None:
    """Summarize a version's test results as feedback for the next attempt."""
    if results is None:
        return None
    lines = []
    if results.error:
        lines.append(f"The scraper failed: {results.error}")
    if results.fields_analysis is not None:
        for cov in results.fields_analysis.coverage:
            if cov.percentage < 100.0:
                kind = "Required" if cov.required else "Optional"
                lines.append(f"{kind} field '{cov.field}' was only found on {cov.percentage:g}% of events")
    lines.extend(results.warnings)
    return "\n".join(f"- {line}" for line in lines) or None


class ScraperGenerator:
    """Service for generating scraper versions with an AI model."""

    def __init__(
        self,
        session: Session,
        ai_client: AIClient | None = None,
        global_config: GlobalConfig | None = None,
        crawler: Crawler | None = None,
    ):
        """
        Initialize the generator.

        Args:
            session: SQLAlchemy database session.
            ai_client: Optional pre-configured AI client. If not provided,
                      will be created from environment variables.
            global_config: Fetch settings for HTML samples.
            crawler: Optional crawler for fetching HTML samples.
        """
        self.session = session
        self.global_config = global_config or GlobalConfig()
        self._ai_client = ai_client
        self.crawler = crawler or Crawler(
            user_agent=self.global_config.user_agent,
            timeout=self.global_config.request_timeout,
            max_retries=self.global_config.max_retries,
        )
        self.sources = SourceRepository(session)
        self.versions = ScraperVersionRepository(session)
        self.version_service = ScraperVersionService(session, global_config=self.global_config)

    @property
    def ai_client(self) -> AIClient:
        """Get or create the AI client from environment variables."""
        if self._ai_client is None:
            self._ai_client = self._create_client_from_env()
        return self._ai_client

    def _create_client_from_env(self) -> AIClient:
        """Create an AI client from environment variables."""
        provider = os.environ.get("AI_PROVIDER", "anthropic").lower()
        model = os.environ.get("AI_MODEL")

        if provider == "anthropic":
            api_key = os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise ValidationError("ANTHROPIC_API_KEY environment variable is required")
        elif provider == "openai":
            api_key = os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise ValidationError("OPENAI_API_KEY environment variable is required")
        else:
            raise ValidationError(f"Unsupported AI provider: {provider}")

        return get_ai_client(provider=provider, api_key=api_key, model=model)

    async def _fetch_sample(self, source: Source) -> str | None:
        if not source.website:
            return None
        result = await self.crawler.fetch(source.website)
        if not result.success:
            logger.warning(f"Could not fetch HTML sample for {source.slug}: {result.error}")
            return None
        return result.text

    async def generate(
        self,
        source_id: UUID | str,
        html_sample: str | None = None,
        fetch_html: bool = True,
        previous_version_id: UUID | str | None = None,
        feedback: str | None = None,
    ) -> GenerationOutcome:
        """
        Generate and store a new scraper version for a source.

        Args:
            source_id: Source to generate for
            html_sample: Listing page HTML (fetched from the website when omitted)
            fetch_html: Whether to fetch the website when no sample is given
            previous_version_id: Version to improve on; its test results become
                feedback unless ``feedback`` is given
            feedback: Explicit notes for the model

        Returns:
            GenerationOutcome with the stored (inactive) version or the error

        Raises:
            NotFoundError: Unknown source or previous version
            ValidationError: AI provider is not configured
        """
        source = self.sources.require(source_id)
        client = self.ai_client

        previous_code = None
        if previous_version_id is not None:
            previous = self.versions.get_for_source(source.id, previous_version_id)
            previous_code = previous.code
            if feedback is None:
                feedback = feedback_from_results(previous.test_results)

        if html_sample is None and fetch_html:
            html_sample = await self._fetch_sample(source)

        venue_name = None
        if source.venue_id is not None:
            venue = VenueRepository(self.session).get_by_id(source.venue_id)
            venue_name = venue.name if venue else None

        prompt = build_generation_prompt(
            website=source.website or source.config.get("url", ""),
            venue_name=venue_name or source.name,
            timezone=source_timezone(self.session, source),
            html_sample=html_sample,
            previous_code=previous_code,
            feedback=feedback,
        )

        logger.info(f"Generating scraper for {source.slug} with {client.provider.value}/{client.model}")
        result = await asyncio.to_thread(client.generate_scraper_code, SYSTEM_PROMPT, prompt)
        if not result.success or not result.code:
            return GenerationOutcome(
                success=False,
                raw_response=result.raw_response,
                error_message=result.error_message or "Model returned no code",
            )

        validation = validate_scraper_code(result.code)
        if not validation.is_valid:
            logger.warning(f"Generated code for {source.slug} rejected: {validation.errors}")
            return GenerationOutcome(
                success=False,
                raw_response=result.raw_response,
                error_message="Generated code failed validation: " + "; ".join(validation.errors),
            )

        try:
            version = self.version_service.create_version(
                source.id,
                result.code,
                origin=VersionOrigin.AI_GENERATED,
                description=(
                    f"Generated by {client.provider.value}/{client.model} "
                    f"(prompt v{PROMPT_VERSION})"
                ),
            )
        except GigAgentError as e:
            return GenerationOutcome(
                success=False, raw_response=result.raw_response, error_message=e.message
            )

        return GenerationOutcome(success=True, version=version, raw_response=result.raw_response)
