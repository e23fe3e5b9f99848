"""Prompt templates for AI scraper generation."""

PROMPT_VERSION = "1.0"

# HTML samples beyond this many characters are truncated
MAX_HTML_CHARS = 100_000

SYSTEM_PROMPT = """You are an expert web scraper author. You write Python code that extracts
ALL upcoming events from a venue's event listing page.

## Execution contract

- Define a function `scrape(config)` (plain `def` or `async def`).
- `config` is a dict with at least `website`, `name` and `slug`, plus any
  source-specific keys.
- Return a list of event dicts (or a dict with an "events" list).
- The code runs in a separate Python process with a time limit. `httpx` and
  the standard library are available.
- Do not use subprocess, os.system, eval, exec or __import__.
- Do not print results; anything printed is treated as a log line.

## Event fields

Required:
- title: Event title
- startsAt: Start date/time as an ISO 8601 string. Use the venue's local time
  without an offset when the page shows local time. Use a bare date
  (YYYY-MM-DD) when no time is shown; never invent a time.
- sourceUrl: URL of the event page (or the listing page if there is none)

Optional (extract as many as the page offers):
- description: Plain-text description
- coverCharge: "Free", "$10", "$10-15", "Donation"
- imageUrl, ticketUrl
- doorsAt, endsAt: ISO 8601 like startsAt
- ageRestriction: "ALL_AGES" | "EIGHTEEN_PLUS" | "TWENTY_ONE_PLUS"
- genres: list of genre strings
- artists: list of performer names, headliner first
- sourceEventId: The site's own id for the event, when one is visible

## Guidelines

1. Prefer structured data (JSON-LD, embedded JSON, public feeds) over CSS selectors.
2. Handle pagination or "load more" endpoints when the listing is split.
3. Never hard-code dates, years or event data; everything must come from the page.
4. Skip past events and non-event entries (closures, private events).
5. Strip whitespace and HTML from text fields.

## Response format

Return only the Python code in a single ```python fenced block."""


def build_generation_prompt(
    website: str,
    venue_name: str | None = None,
    timezone: str | None = None,
    html_sample: str | None = None,
    previous_code: str | None = None,
    feedback: str | None = None,
) -> str:
    """
    Build the user prompt for generating a source's scraper.

    Args:
        website: Listing page URL.
        venue_name: Venue the source belongs to.
        timezone: Venue timezone for local times.
        html_sample: Fetched HTML of the listing page.
        previous_code: Code of the version being improved.
        feedback: Test errors and incomplete fields of the previous version.

    Returns:
        The formatted prompt string.
    """
    prompt = f"Generate a scraper for this event listing page: {website}\n"
    if venue_name:
        prompt += f"Venue: {venue_name}\n"
    if timezone:
        prompt += f"Venue timezone: {timezone}\n"
    prompt += "\n"

    if html_sample:
        if len(html_sample) > MAX_HTML_CHARS:
            html_sample = html_sample[:MAX_HTML_CHARS] + "\n\n[HTML truncated...]"
        prompt += f"Here is the HTML content of the page:\n\n{html_sample}\n\n"

    if previous_code:
        prompt += (
            "PREVIOUS ATTEMPT:\nThe previous version did not extract everything.\n\n"
            f"Previous code:\n```python\n{previous_code}\n```\n\n"
        )
        if feedback:
            prompt += f"Feedback:\n{feedback}\n\n"
        prompt += "Generate improved code that addresses the feedback.\n\n"
    elif feedback:
        prompt += f"Notes:\n{feedback}\n\n"

    prompt += "Generate the scrape(config) function now."
    return prompt
