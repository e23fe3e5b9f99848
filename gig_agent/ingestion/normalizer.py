"""
Data Normalizer Module
======================

Cleans and standardizes raw scraper output into ScrapedEvent records
ready for merging.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from urllib.parse import urljoin
from zoneinfo import ZoneInfo

from gig_agent.core.schema import ScrapedEvent
from gig_agent.ingestion.lineup import clean_artist_name, extract_artist_names
from gig_agent.ingestion.similarity import slugify

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 80

# Year correction windows (days)
FUTURE_LIMIT_DAYS = 300
PAST_GRACE_DAYS = 14
NEXT_YEAR_WINDOW_DAYS = 120


def make_event_slug(title: str, starts_at: datetime, timezone: str = "UTC") -> str:
    """
    Build the public slug of an event: slugified title plus local date.

    Args:
        title: Event title
        starts_at: Start time (timezone-aware)
        timezone: Venue timezone used to pick the calendar date

    Returns:
        Slug like "jazz-night-2025-11-01"
    """
    base = slugify(title)[:SLUG_MAX_LENGTH].strip("-") or "event"
    local_date = starts_at.astimezone(ZoneInfo(timezone)).date()
    return f"{base}-{local_date.isoformat()}"


class Normalizer:
    """
    Normalizes raw scraped event dicts into ScrapedEvent records.

    Handles:
    - camelCase and snake_case keys (e.g., "startsAt" -> starts_at)
    - Title cleanup (e.g., "Live Music: Alice - 8pm" -> "Alice")
    - Date parsing in the venue timezone, with "no time" detection
    - Year correction for listings that omit the year
    - Genre slugs and aliases (e.g., "Hip Hop" -> "hip-hop")
    - Artist lists, falling back to names found in the title

    Only keys present in the raw record are set on the result, so an
    explicit null stays distinguishable from an absent field.
    """

    # Raw key -> ScrapedEvent field
    FIELD_ALIASES: dict[str, str] = {
        "title": "title",
        "name": "title",
        "startsAt": "starts_at",
        "starts_at": "starts_at",
        "start": "starts_at",
        "date": "starts_at",
        "sourceUrl": "source_url",
        "source_url": "source_url",
        "url": "source_url",
        "sourceEventId": "source_event_id",
        "source_event_id": "source_event_id",
        "externalId": "source_event_id",
        "venueName": "venue_name",
        "venue_name": "venue_name",
        "venue": "venue_name",
        "description": "description",
        "coverCharge": "cover_charge",
        "cover_charge": "cover_charge",
        "price": "cover_charge",
        "imageUrl": "image_url",
        "image_url": "image_url",
        "image": "image_url",
        "doorsAt": "doors_at",
        "doors_at": "doors_at",
        "endsAt": "ends_at",
        "ends_at": "ends_at",
        "ticketUrl": "ticket_url",
        "ticket_url": "ticket_url",
        "ageRestriction": "age_restriction",
        "age_restriction": "age_restriction",
        "genres": "genres",
        "artists": "artists",
    }

    # Genre slug aliases: maps common variations to canonical slugs
    GENRE_ALIASES: dict[str, str] = {
        "hiphop": "hip-hop",
        "hip-hop-rap": "hip-hop",
        "rap": "hip-hop",
        "r-b": "rnb",
        "r-and-b": "rnb",
        "rhythm-and-blues": "rnb",
        "rock-n-roll": "rock",
        "rock-and-roll": "rock",
        "rock-roll": "rock",
        "singer-songwriter": "singer-songwriter",
        "singer-song-writer": "singer-songwriter",
        "electronica": "electronic",
        "edm": "electronic",
        "alt-country": "americana",
        "country-western": "country",
        "blue-grass": "bluegrass",
        "jazz-blues": "jazz",
        "world-music": "world",
        "dj": "dj",
        "djs": "dj",
    }

    TITLE_PREFIX = re.compile(
        r"^(?:live\s+music|music|comedy|theater|performance|show)\s*[:\-–—]\s*", re.I
    )
    TITLE_DATE_PREFIX = re.compile(
        r"^(?:(?:mon|tues|wednes|thurs|fri|satur|sun)day,?\s+)?"
        r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+"
        r"\d{1,2}(?:st|nd|rd|th)?,?\s*[-–—:|]\s*",
        re.I,
    )
    TITLE_NUMERIC_DATE_PREFIX = re.compile(r"^\d{1,2}/\d{1,2}(?:/\d{2,4})?\s*[-–—:|]\s*")
    TITLE_TIME = re.compile(
        r",?\s*[@-]?\s*\d{1,2}(?::\d{2})?\s*(?:am|pm)"
        r"(?:\s*-\s*\d{1,2}(?::\d{2})?\s*(?:am|pm)?)?",
        re.I,
    )
    TITLE_TIME_NOTE = re.compile(r"\s*\([^)]*(?:sign[- ]?up|doors)[^)]*\)", re.I)

    HTML_TAG = re.compile(r"<[^>]+>")
    BLOCK_TAG = re.compile(r"<\s*(?:br|/p|/div|/li)\s*/?>", re.I)

    def __init__(
        self,
        timezone: str = "UTC",
        now: datetime | None = None,
        correct_years: bool = True,
        base_url: str | None = None,
    ) -> None:
        self.timezone = timezone
        self.tz = ZoneInfo(timezone)
        self._now = now
        self.correct_years = correct_years
        self.base_url = base_url

    @property
    def now(self) -> datetime:
        """Reference time for year correction."""
        return self._now or datetime.now(UTC)

    def normalize_events(self, raw_events: Iterable[Any]) -> list[ScrapedEvent]:
        """
        Normalize a batch of raw records.

        Records that are not mappings become empty ScrapedEvents, which the
        merge engine drops with a warning.
        """
        normalized = []
        for raw in raw_events:
            if not isinstance(raw, Mapping):
                logger.warning(f"Scraper returned a non-object record: {raw!r:.100}")
                normalized.append(ScrapedEvent(raw={"value": repr(raw)}))
                continue
            normalized.append(self.normalize_event(raw))
        return normalized

    def normalize_event(self, raw: Mapping[str, Any]) -> ScrapedEvent:
        """
        Normalize one raw event dict.

        Args:
            raw: Scraper output for one event

        Returns:
            ScrapedEvent whose ``model_fields_set`` lists the fields the
            scraper reported
        """
        values: dict[str, Any] = {}
        for key, value in raw.items():
            field_name = self.FIELD_ALIASES.get(key)
            if field_name is None or field_name in values:
                continue
            values[field_name] = value

        data: dict[str, Any] = {"raw": dict(raw)}

        if "title" in values:
            title = self._clean_string(values["title"])
            data["title"] = self.clean_title(title) if title else ""

        if "starts_at" in values:
            starts_at, has_time = self.parse_datetime(values["starts_at"])
            if starts_at is not None and self.correct_years:
                starts_at = self.correct_year(starts_at)
            data["starts_at"] = starts_at
            data["has_time"] = has_time
            if starts_at is None and values["starts_at"] not in (None, ""):
                logger.warning(f"Unparseable startsAt {values['starts_at']!r}")

        for field_name in ("doors_at", "ends_at"):
            if field_name in values:
                parsed, _ = self.parse_datetime(values[field_name])
                data[field_name] = parsed

        if "source_url" in values:
            data["source_url"] = self.normalize_url(values["source_url"]) or ""
        for field_name in ("image_url", "ticket_url"):
            if field_name in values:
                data[field_name] = self.normalize_url(values[field_name])

        if "description" in values:
            data["description"] = self.clean_description(values["description"])

        for field_name in ("source_event_id", "venue_name", "cover_charge", "age_restriction"):
            if field_name in values:
                data[field_name] = self._clean_string(values[field_name])

        if "genres" in values:
            data["genres"] = self.normalize_genres(values["genres"])

        artists = self.normalize_artists(values.get("artists"))
        if not artists and data.get("title"):
            artists = extract_artist_names(data["title"])
        if "artists" in values or artists:
            data["artists"] = artists

        return ScrapedEvent(**data)

    def _clean_string(self, value: Any) -> str | None:
        """Clean and normalize a string value."""
        if value is None:
            return None
        s = str(value).strip()
        # Normalize whitespace
        s = re.sub(r"\s+", " ", s)
        return s if s else None

    def clean_title(self, title: str) -> str:
        """
        Remove category prefixes, leading dates and time notes from a title.

        Returns the original title when cleaning would leave nothing.
        """
        cleaned = html.unescape(title)
        cleaned = self.TITLE_PREFIX.sub("", cleaned)
        cleaned = self.TITLE_DATE_PREFIX.sub("", cleaned)
        cleaned = self.TITLE_NUMERIC_DATE_PREFIX.sub("", cleaned)
        cleaned = self.TITLE_TIME_NOTE.sub("", cleaned)
        cleaned = self.TITLE_TIME.sub("", cleaned)
        cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,-–—|:")
        return cleaned or title

    def clean_description(self, value: Any) -> str | None:
        """Strip HTML tags and entities, keeping paragraph breaks as spaces."""
        text = self._clean_string(value)
        if text is None:
            return None
        text = self.BLOCK_TAG.sub(" ", text)
        text = html.unescape(self.HTML_TAG.sub("", text))
        return self._clean_string(text)

    def normalize_url(self, value: Any) -> str | None:
        """Trim a URL and resolve it against the source website when relative."""
        url = self._clean_string(value)
        if url is None:
            return None
        if self.base_url and not re.match(r"^[a-z][a-z0-9+.-]*://", url, re.I):
            return urljoin(self.base_url, url)
        return url

    def parse_datetime(self, value: Any) -> tuple[datetime | None, bool]:
        """
        Parse an ISO-8601 date or datetime.

        Naive values are read in the venue timezone. A bare date, or a local
        time of exactly 00:00, means no time was specified.

        Args:
            value: datetime, date or ISO string

        Returns:
            (UTC datetime or None if unparseable, has_time)
        """
        if value is None:
            return None, False

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime.combine(value, time())
        else:
            text = str(value).strip()
            if not text:
                return None, False
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None, False

        local = parsed.replace(tzinfo=self.tz) if parsed.tzinfo is None else parsed.astimezone(self.tz)
        has_time = (local.hour, local.minute, local.second) != (0, 0, 0)
        return local.astimezone(UTC), has_time

    def correct_year(self, starts_at: datetime) -> datetime:
        """
        Fix the year of dates parsed from listings that omit it.

        A date more than 300 days ahead moves back a year when that lands no
        more than 14 days in the past. A date more than 14 days past whose
        month is one to three months ahead moves forward a year when that
        lands within 120 days.
        """
        now = self.now
        delta = starts_at - now

        if delta > timedelta(days=FUTURE_LIMIT_DAYS):
            candidate = self._shift_year(starts_at, -1)
            if candidate is not None and candidate >= now - timedelta(days=PAST_GRACE_DAYS):
                logger.debug(f"Corrected year of {starts_at.isoformat()} to {candidate.year}")
                return candidate
        elif delta < -timedelta(days=PAST_GRACE_DAYS):
            local_month = starts_at.astimezone(self.tz).month
            months_ahead = (local_month - now.astimezone(self.tz).month) % 12
            if 1 <= months_ahead <= 3:
                candidate = self._shift_year(starts_at, 1)
                if candidate is not None and candidate - now <= timedelta(
                    days=NEXT_YEAR_WINDOW_DAYS
                ):
                    logger.debug(
                        f"Corrected year of {starts_at.isoformat()} to {candidate.year}"
                    )
                    return candidate
        return starts_at

    def _shift_year(self, value: datetime, years: int) -> datetime | None:
        local = value.astimezone(self.tz)
        try:
            shifted = local.replace(year=local.year + years)
        except ValueError:
            # Feb 29 has no counterpart
            return None
        return shifted.astimezone(UTC)

    def normalize_genres(self, genres: list[str] | str | None) -> list[str]:
        """
        Normalize genre tokens into unique slugs.

        Args:
            genres: List of genres, comma-separated string, or None

        Returns:
            Lowercase slugs in first-seen order
        """
        if genres is None:
            return []

        if isinstance(genres, str):
            genre_list = re.split(r"[,;/|]", genres)
        else:
            genre_list = [str(g) for g in genres if g is not None]

        normalized: list[str] = []
        for genre in genre_list:
            slug = slugify(genre.replace("&", " and "))
            if not slug:
                continue
            slug = self.GENRE_ALIASES.get(slug, slug)
            if slug not in normalized:
                normalized.append(slug)
        return normalized

    def normalize_artists(self, artists: list[str] | str | None) -> list[str]:
        """Trim artist names and de-duplicate them case-insensitively."""
        if artists is None:
            return []
        if isinstance(artists, str):
            artist_list = re.split(r"\s*[,;]\s*", artists)
        else:
            artist_list = [str(a) for a in artists if a is not None]

        names: list[str] = []
        seen: set[str] = set()
        for artist in artist_list:
            cleaned = clean_artist_name(artist)
            if cleaned is None or cleaned.lower() in seen:
                continue
            seen.add(cleaned.lower())
            names.append(cleaned)
        return names
