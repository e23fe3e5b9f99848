"""AI scraper generation services for Gig Agent."""

from gig_agent.services.ai.client import AIClient, AIProvider, GenerationResult, get_ai_client
from gig_agent.services.ai.generation import GenerationOutcome, ScraperGenerator

__all__ = [
    "AIClient",
    "AIProvider",
    "GenerationResult",
    "get_ai_client",
    "GenerationOutcome",
    "ScraperGenerator",
]
