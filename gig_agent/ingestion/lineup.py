"""
Lineup Extraction Module
========================

Best-effort extraction of performer names from event titles, used when a
source reports an event without an explicit artist list.
"""

from __future__ import annotations

import re

# Event framing before the actual performer ("NYE with X", "Acme Presents: X")
EVENT_PREFIX_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^(?:nye|new year'?s eve)\s+(?:with|featuring|feat\.?)\s+", re.I),
    re.compile(r"^[\w\s']+?\s+night\s+(?:with|featuring|feat\.?)\s+", re.I),
    re.compile(r"^live\s+music\s+(?:with|by|featuring|feat\.?)\s+", re.I),
    re.compile(r"^[\w\s'&.]+?\s+presents?\s*:?\s+", re.I),
    re.compile(r"^(?:residency|album release|record release|tour kickoff)\s*[:\-]\s*", re.I),
    re.compile(r"^an?\s+evening\s+with\s+", re.I),
    re.compile(r"^live\s+music\s*[:\-]\s*", re.I),
]

# Titles (or parts) that describe an event format rather than a performer
NON_ARTIST_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^live\s+music$", re.I),
    re.compile(r"\bopen\s+mic\b", re.I),
    re.compile(r"\bkaraoke\b", re.I),
    re.compile(r"\btrivia\b", re.I),
    re.compile(r"\bcomedy\b", re.I),
    re.compile(r"\bjam\s+session\b", re.I),
    re.compile(r"^[\w']+(?:\s+[\w']+)?\s+night$", re.I),
    re.compile(r"\bprivate\s+(?:event|party)\b", re.I),
    re.compile(r"\btribute\b", re.I),
    re.compile(r"^at\s+", re.I),
    re.compile(r"^(?:tba|tbd|tba\.?|to be announced)$", re.I),
    re.compile(r"^(?:special\s+guests?|and\s+more|more\s+tba|guests?)$", re.I),
    re.compile(r"^(?:closed|sold\s+out|cancelled|canceled)$", re.I),
]

_LINEUP_SEPARATORS = re.compile(
    r"\s+(?:w/|with|featuring|feat\.?|ft\.?|\+|&)\s+|\s*,\s*|\s+/\s+", re.I
)
_TOUR_SUFFIX = re.compile(r"\s*[:\-]\s*[^:\-]*\btour\b.*$", re.I)
_TIME_SUFFIX = re.compile(
    r",?\s*\d{1,2}(?::\d{2})?\s*(?:-\s*\d{1,2}(?::\d{2})?\s*)?(?:am|pm)$", re.I
)
_TRAILING_PARENS = re.compile(r"\s*\([^)]*\)\s*$")
_DATE_IN_TITLE = re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b")
_EMOJI = re.compile("[\U0001F300-\U0001FAFF☀-➿]")

MAX_ARTISTS = 5
MAX_NAME_LENGTH = 80
MAX_NAME_WORDS = 10


def is_non_artist(text: str) -> bool:
    """Check whether text names an event format rather than a performer."""
    return any(pattern.search(text) for pattern in NON_ARTIST_PATTERNS)


def clean_artist_name(name: str) -> str | None:
    """
    Strip time suffixes, trailing parentheticals and "LIVE" from a name.

    Returns:
        The cleaned name, or None when it is too short, too long or
        reads like a sentence.
    """
    artist = re.sub(r"\s+", " ", name).strip()
    artist = _TIME_SUFFIX.sub("", artist)
    artist = _TRAILING_PARENS.sub("", artist)
    artist = re.sub(r"\s+live$", "", artist, flags=re.I)
    artist = artist.strip(" -:")

    if len(artist) < 2 or len(artist) > MAX_NAME_LENGTH:
        return None
    if len(artist.split()) > MAX_NAME_WORDS:
        return None
    return artist


def _strip_event_prefix(title: str) -> str:
    for pattern in EVENT_PREFIX_PATTERNS:
        stripped = pattern.sub("", title, count=1)
        if stripped != title and stripped.strip():
            return stripped.strip()
    return title


def extract_artist_names(title: str) -> list[str]:
    """
    Extract performer names from an event title.

    Examples:
        "Alice w/ Bob & Carol"          -> ["Alice", "Bob", "Carol"]
        "Acme Presents: Dana - Fall Tour" -> ["Dana"]
        "Open Mic Night"                -> []

    Args:
        title: Cleaned event title

    Returns:
        Up to five names in billing order, or an empty list when the title
        does not look like a lineup.
    """
    if not title or not title.strip():
        return []
    working = title.strip()

    # Emoji-decorated and numbered titles are promotions, not lineups
    if _EMOJI.search(working) or working[0].isdigit():
        return []

    working = working.split("|")[0].strip()
    working = _strip_event_prefix(working)
    working = _TOUR_SUFFIX.sub("", working).strip()

    if " / " in working and _DATE_IN_TITLE.search(working):
        working = working.split(" / ")[0]

    names: list[str] = []
    seen: set[str] = set()
    for part in _LINEUP_SEPARATORS.split(working):
        cleaned = clean_artist_name(part)
        if cleaned is None or is_non_artist(cleaned):
            continue
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        names.append(cleaned)
        if len(names) >= MAX_ARTISTS:
            break
    return names
