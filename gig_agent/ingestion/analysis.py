"""
Scraper Output Analysis
=======================

Measures how completely a scraper's output fills the event fields, picks
representative sample events and derives test warnings.
"""

from __future__ import annotations

from typing import Any

from gig_agent.core.schema import FieldCoverage, FieldsAnalysis

REQUIRED_FIELDS = ("title", "startsAt", "sourceUrl")
OPTIONAL_FIELDS = (
    "description",
    "coverCharge",
    "imageUrl",
    "doorsAt",
    "endsAt",
    "ticketUrl",
    "genres",
    "artists",
    "ageRestriction",
)

REQUIRED_WEIGHT = 0.7
OPTIONAL_WEIGHT = 0.3
MAX_SAMPLE_EVENTS = 50

# Accepted spellings of each analyzed field in raw scraper output
_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "title": ("title", "name"),
    "startsAt": ("startsAt", "starts_at", "start", "date"),
    "sourceUrl": ("sourceUrl", "source_url", "url"),
    "description": ("description",),
    "coverCharge": ("coverCharge", "cover_charge", "price"),
    "imageUrl": ("imageUrl", "image_url", "image"),
    "doorsAt": ("doorsAt", "doors_at"),
    "endsAt": ("endsAt", "ends_at"),
    "ticketUrl": ("ticketUrl", "ticket_url"),
    "genres": ("genres",),
    "artists": ("artists",),
    "ageRestriction": ("ageRestriction", "age_restriction"),
}


def has_value(value: Any) -> bool:
    """A value counts when it is not None, not blank and not an empty list."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def field_value(event: dict[str, Any], field: str) -> Any:
    """First populated spelling of a field in a raw event."""
    for key in _FIELD_KEYS.get(field, (field,)):
        if key in event and has_value(event[key]):
            return event[key]
    return None


def populated_field_count(event: dict[str, Any]) -> int:
    """Number of analyzed fields an event populates."""
    return sum(1 for f in (*REQUIRED_FIELDS, *OPTIONAL_FIELDS) if has_value(field_value(event, f)))


def analyze_fields(events: list[dict[str, Any]]) -> FieldsAnalysis:
    """
    Compute per-field coverage for a list of raw events.

    Args:
        events: Raw scraper output

    Returns:
        FieldsAnalysis with coverage percentages and the weighted completeness
    """
    total = len(events)
    coverage: list[FieldCoverage] = []
    for field, required in [(f, True) for f in REQUIRED_FIELDS] + [
        (f, False) for f in OPTIONAL_FIELDS
    ]:
        count = sum(1 for e in events if has_value(field_value(e, field)))
        percentage = round(100.0 * count / total, 1) if total else 0.0
        coverage.append(
            FieldCoverage(field=field, count=count, percentage=percentage, required=required)
        )

    required_cov = [c.percentage for c in coverage if c.required]
    optional_cov = [c.percentage for c in coverage if not c.required]
    required_coverage = sum(required_cov) / len(required_cov) if required_cov else 0.0
    optional_coverage = sum(optional_cov) / len(optional_cov) if optional_cov else 0.0

    return FieldsAnalysis(
        total_events=total,
        coverage=coverage,
        required_coverage=round(required_coverage, 1),
        optional_coverage=round(optional_coverage, 1),
        completeness=round(
            REQUIRED_WEIGHT * required_coverage + OPTIONAL_WEIGHT * optional_coverage, 1
        ),
    )


def select_sample_events(
    events: list[dict[str, Any]], limit: int = MAX_SAMPLE_EVENTS
) -> list[dict[str, Any]]:
    """The most complete events first; ties keep scraper order."""
    ranked = sorted(enumerate(events), key=lambda pair: (-populated_field_count(pair[1]), pair[0]))
    return [event for _, event in ranked[:limit]]


def build_warnings(
    analysis: FieldsAnalysis, events_without_time: int = 0
) -> list[str]:
    """
    Warnings shown alongside test results.

    Args:
        analysis: Coverage of the test output
        events_without_time: Events whose startsAt carried no time of day
    """
    warnings: list[str] = []
    if analysis.total_events == 0:
        warnings.append("Scraper returned no events")
        return warnings

    for cov in analysis.coverage:
        if cov.required and cov.percentage < 100.0:
            warnings.append(
                f"Required field '{cov.field}' is missing on "
                f"{analysis.total_events - cov.count} of {analysis.total_events} events"
            )

    if events_without_time * 2 > analysis.total_events:
        warnings.append(
            f"{events_without_time} of {analysis.total_events} events have no start time"
        )
    return warnings
