"""MusicBrainz catalog provider implementation."""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from gig_agent.core.enums import MatchNamespace
from gig_agent.ingestion.crawler import TokenBucket, request_with_retries
from gig_agent.services.identity.client import CatalogArtist, CatalogClient, shared_limiter

logger = logging.getLogger(__name__)

API_BASE = "https://musicbrainz.org/ws/2"
DEFAULT_USER_AGENT = "GigAgent/0.1 (https://github.com/gig-agent/gig-agent)"
MAX_TAGS = 20

_LUCENE_SPECIAL = re.compile(r'([+\-&|!(){}\[\]^"~*?:\\/])')

# Link keys kept from url relations, matched against the relation type or URL
_LINK_KINDS = (
    ("official", lambda rel_type, url: rel_type == "official homepage"),
    ("wikipedia", lambda rel_type, url: "wikipedia.org" in url),
    ("wikidata", lambda rel_type, url: "wikidata.org" in url),
    ("discogs", lambda rel_type, url: "discogs.com" in url),
    ("bandcamp", lambda rel_type, url: "bandcamp.com" in url),
)


def escape_lucene(text: str) -> str:
    """Escape Lucene query syntax characters."""
    return _LUCENE_SPECIAL.sub(r"\\\1", text)


def extract_tags(data: dict[str, Any]) -> list[str]:
    """Tag names by descending vote count, top 20."""
    tags = sorted(data.get("tags") or [], key=lambda t: -(t.get("count") or 0))
    return [t["name"] for t in tags if t.get("name")][:MAX_TAGS]


def extract_links(data: dict[str, Any]) -> dict[str, str]:
    """Official and reference links from an artist's url relations."""
    links: dict[str, str] = {}
    for rel in data.get("relations") or []:
        url = (rel.get("url") or {}).get("resource")
        if not url:
            continue
        for kind, matches in _LINK_KINDS:
            if kind not in links and matches(rel.get("type"), url):
                links[kind] = url
                break
    return links


class MusicBrainzClient(CatalogClient):
    """Open music metadata database client."""

    namespace = MatchNamespace.MUSICBRAINZ

    def __init__(
        self,
        user_agent: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        limiter: TokenBucket | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = 1.0,
    ):
        """
        Initialize the MusicBrainz client.

        Args:
            user_agent: Identifying User-Agent (MusicBrainz rejects anonymous clients).
            timeout: Request timeout in seconds.
            max_retries: Attempts per request for transient failures.
            limiter: Rate limiter (defaults to the process-wide MusicBrainz one).
            transport: Optional httpx transport (for testing).
            backoff_base: Multiplier for the retry backoff delay.
        """
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        self.max_retries = max_retries
        self.limiter = limiter or shared_limiter(self.namespace)
        self.transport = transport
        self.backoff_base = backoff_base

    async def _get(
        self, path: str, params: dict[str, Any], allow_statuses: frozenset[int] = frozenset()
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=API_BASE,
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            transport=self.transport,
        ) as client:
            return await request_with_retries(
                client,
                "GET",
                path,
                service="musicbrainz",
                max_retries=self.max_retries,
                limiter=self.limiter,
                allow_statuses=allow_statuses,
                backoff_base=self.backoff_base,
                params={**params, "fmt": "json"},
            )

    async def search_artists(self, name: str, limit: int = 5) -> list[CatalogArtist]:
        escaped = escape_lucene(name)
        response = await self._get(
            "/artist",
            {"query": f"artist:{escaped} OR alias:{escaped}", "limit": limit},
        )
        results = []
        for item in response.json().get("artists") or []:
            results.append(
                CatalogArtist(
                    id=item["id"],
                    name=item.get("name", ""),
                    score=(item.get("score") or 0) / 100.0,
                    genres=extract_tags(item),
                    url=f"https://musicbrainz.org/artist/{item['id']}",
                    extra={
                        k: item[k] for k in ("disambiguation", "country", "type") if item.get(k)
                    },
                )
            )
        logger.debug(f"MusicBrainz search '{name}' returned {len(results)} candidates")
        return results

    async def get_artist(self, external_id: str) -> CatalogArtist | None:
        response = await self._get(
            f"/artist/{external_id}",
            {"inc": "tags+url-rels"},
            allow_statuses=frozenset({400, 404}),
        )
        if response.status_code in (400, 404):
            return None

        data = response.json()
        return CatalogArtist(
            id=data["id"],
            name=data.get("name", ""),
            score=1.0,
            genres=extract_tags(data),
            url=f"https://musicbrainz.org/artist/{data['id']}",
            extra={
                "links": extract_links(data),
                **{k: data[k] for k in ("disambiguation", "country", "type") if data.get(k)},
            },
        )
