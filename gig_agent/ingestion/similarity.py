"""
Text Similarity Module
======================

String normalization and similarity scores used to deduplicate event titles
and to score artist-name candidates from external catalogs.
"""

from __future__ import annotations

import re
import unicodedata

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Separators after which a title lists supporting acts
_SUPPORT_SEPARATORS = re.compile(
    r"\s+(?:w/|with|feat\.?|featuring|ft\.?|\+|and|&)\s+", re.IGNORECASE
)

HEADLINER_MATCH = 0.9
HEADLINER_FLOOR = 0.85
PREFIX_MIN_LENGTH = 5
PREFIX_MATCH = 0.5
PREFIX_FLOOR = 0.8


def normalize_text(text: str) -> str:
    """
    Normalize text for comparison.

    Lowercases, strips accents and punctuation, and collapses whitespace.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    without_accents = "".join(c for c in decomposed if not unicodedata.combining(c))
    lowered = without_accents.lower().replace("_", " ")
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", lowered)).strip()


def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Calculate the Levenshtein distance between two strings.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Edit distance
    """
    if len(s1) < len(s2):
        s1, s2 = s2, s1

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            # Cost is 0 if characters match, 1 otherwise
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def levenshtein_ratio(s1: str, s2: str) -> float:
    """Similarity in [0, 1] as (longer length - distance) / longer length."""
    longer = max(len(s1), len(s2))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(s1, s2)) / longer


def extract_headliner(title: str) -> str:
    """Part of a normalized-ready title before the first supporting-act separator."""
    return _SUPPORT_SEPARATORS.split(title, maxsplit=1)[0].strip()


def title_similarity(title1: str, title2: str) -> float:
    """
    Similarity of two event titles in [0, 1].

    The maximum of three views:
    - edit-distance ratio of the normalized titles
    - headliner comparison (text before "w/", "with", "feat." ...), raised to
      at least 0.85 when the headliners nearly agree
    - prefix match when one title starts with the other, raised to at least
      0.8 when the prefix covers half of the longer title
    """
    n1 = normalize_text(title1)
    n2 = normalize_text(title2)
    if not n1 or not n2:
        return 0.0
    if n1 == n2:
        return 1.0

    score = levenshtein_ratio(n1, n2)

    h1 = normalize_text(extract_headliner(title1))
    h2 = normalize_text(extract_headliner(title2))
    if h1 and h2 and (h1 != n1 or h2 != n2):
        headliner = levenshtein_ratio(h1, h2)
        if headliner >= HEADLINER_MATCH:
            score = max(score, HEADLINER_FLOOR)

    shorter, longer = sorted((n1, n2), key=len)
    if len(shorter) >= PREFIX_MIN_LENGTH and longer.startswith(shorter):
        prefix = len(shorter) / len(longer)
        if prefix >= PREFIX_MATCH:
            prefix = max(prefix, PREFIX_FLOOR)
        score = max(score, prefix)

    return min(score, 1.0)


def name_confidence(query: str, candidate: str) -> float:
    """
    Confidence that an external catalog name refers to the queried artist.

    Exact normalized match scores 1.0, containment scores between 0.8 and
    0.95 by relative length, otherwise the edit-distance ratio.
    """
    q = normalize_text(query)
    c = normalize_text(candidate)
    if not q or not c:
        return 0.0
    if q == c:
        return 1.0
    if q in c or c in q:
        shorter, longer = sorted((len(q), len(c)))
        return 0.8 + 0.15 * (shorter / longer)
    return levenshtein_ratio(q, c)


def slugify(text: str) -> str:
    """Lowercase, with runs of non-alphanumerics replaced by single hyphens."""
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = decomposed.encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")
