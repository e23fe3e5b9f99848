"""Tests for the scraper sandbox and output analysis."""

import asyncio

import pytest

from gig_agent.core.errors import ScraperExecutionError, ValidationError
from gig_agent.ingestion.analysis import (
    analyze_fields,
    build_warnings,
    has_value,
    select_sample_events,
)
from gig_agent.ingestion.sandbox import ensure_valid_code, run_scraper_code, validate_scraper_code

GOOD_CODE = '''
def scrape(config):
    return [
        {"title": "Jazz Night", "startsAt": "2025-11-01T20:00", "sourceUrl": config["url"]},
    ]
'''


class TestValidateScraperCode:
    """Tests for static code checks."""

    def test_valid_code(self) -> None:
        """Test that a plain scrape function passes."""
        validation = validate_scraper_code(GOOD_CODE)
        assert validation.is_valid
        assert validation.errors == []

    def test_empty_code(self) -> None:
        """Test that empty code is rejected."""
        assert validate_scraper_code("   ").errors == ["Code is empty"]

    def test_missing_scrape(self) -> None:
        """Test that code without scrape() is rejected."""
        validation = validate_scraper_code("def run(config):\n    return []\n")
        assert "Code must define a scrape(config) function" in validation.errors

    def test_async_scrape_accepted(self) -> None:
        """Test that async scrape functions are accepted."""
        assert validate_scraper_code("async def scrape(config):\n    return []\n").is_valid

    @pytest.mark.parametrize(
        "snippet",
        ["os.system('ls')", "import subprocess", "eval('1')", "exec('x=1')", "__import__('os')"],
    )
    def test_dangerous_calls(self, snippet: str) -> None:
        """Test that dangerous calls are errors."""
        code = f"def scrape(config):\n    {snippet}\n    return []\n"
        assert not validate_scraper_code(code).is_valid

    def test_warnings(self) -> None:
        """Test that unbounded loops and hard-coded dates only warn."""
        code = (
            "def scrape(config):\n"
            "    while True:\n"
            "        break\n"
            "    return [{'startsAt': '2024-01-01'}]\n"
        )
        validation = validate_scraper_code(code)
        assert validation.is_valid
        assert len(validation.warnings) == 2

    def test_ensure_valid_code_raises(self) -> None:
        """Test that ensure_valid_code raises ValidationError."""
        with pytest.raises(ValidationError):
            ensure_valid_code("print('hi')")


class TestRunScraperCode:
    """Tests for sandboxed execution."""

    @pytest.mark.asyncio
    async def test_returns_events(self) -> None:
        """Test that events come back from the child process."""
        result = await run_scraper_code(GOOD_CODE, {"url": "https://venue.example/jazz"})
        assert result.events == [
            {
                "title": "Jazz Night",
                "startsAt": "2025-11-01T20:00",
                "sourceUrl": "https://venue.example/jazz",
            }
        ]
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_dict_with_events(self) -> None:
        """Test that a dict with an events list is accepted."""
        code = "def scrape(config):\n    return {'events': [{'title': 'A'}]}\n"
        result = await run_scraper_code(code, {})
        assert result.events == [{"title": "A"}]

    @pytest.mark.asyncio
    async def test_async_scrape(self) -> None:
        """Test that coroutine scrapers are awaited."""
        code = "async def scrape(config):\n    return [{'title': 'A'}]\n"
        result = await run_scraper_code(code, {})
        assert result.events == [{"title": "A"}]

    @pytest.mark.asyncio
    async def test_scraper_exception(self) -> None:
        """Test that a raising scraper surfaces its error."""
        code = "def scrape(config):\n    raise RuntimeError('page changed')\n"
        with pytest.raises(ScraperExecutionError, match="page changed"):
            await run_scraper_code(code, {})

    @pytest.mark.asyncio
    async def test_print_does_not_corrupt_output(self) -> None:
        """Test that scraper prints go to stderr."""
        code = "def scrape(config):\n    print('debug')\n    return []\n"
        result = await run_scraper_code(code, {})
        assert result.events == []
        assert "debug" in result.stderr

    @pytest.mark.asyncio
    async def test_wrong_return_type(self) -> None:
        """Test that a non-list result is rejected."""
        code = "def scrape(config):\n    return 'nope'\n"
        with pytest.raises(ScraperExecutionError):
            await run_scraper_code(code, {})

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        """Test that a hanging scraper times out."""
        code = "import time\ndef scrape(config):\n    time.sleep(30)\n    return []\n"
        with pytest.raises(ScraperExecutionError) as exc_info:
            await asyncio.wait_for(run_scraper_code(code, {}, timeout=0.5), timeout=10)
        assert exc_info.value.timed_out is True

    @pytest.mark.asyncio
    async def test_output_cap(self) -> None:
        """Test that oversized output is rejected."""
        code = "def scrape(config):\n    return [{'title': 'x' * 5000}]\n"
        with pytest.raises(ScraperExecutionError, match="exceeds"):
            await run_scraper_code(code, {}, max_output_bytes=100)

    @pytest.mark.asyncio
    async def test_endless_output_stopped_at_cap(self) -> None:
        """Test that a process flooding stdout is killed once the cap is passed."""
        code = (
            "import sys\n"
            "def scrape(config):\n"
            "    while True:\n"
            "        sys.__stdout__.write('x' * 65536)\n"
        )
        with pytest.raises(ScraperExecutionError, match="exceeds 100000 bytes") as exc_info:
            await asyncio.wait_for(
                run_scraper_code(code, {}, timeout=60, max_output_bytes=100_000), timeout=30
            )
        assert exc_info.value.timed_out is False

    @pytest.mark.asyncio
    async def test_stderr_keeps_tail(self) -> None:
        """Test that only the end of a noisy scraper's log is kept."""
        code = (
            "def scrape(config):\n"
            "    for i in range(20000):\n"
            "        print(f'line {i}')\n"
            "    return []\n"
        )
        result = await run_scraper_code(code, {})

        assert result.events == []
        assert len(result.stderr) <= 4000
        assert result.stderr.rstrip().endswith("line 19999")


class TestAnalysis:
    """Tests for field coverage analysis."""

    def test_has_value(self) -> None:
        """Test what counts as a populated value."""
        assert has_value("x")
        assert has_value(0)
        assert not has_value(None)
        assert not has_value("  ")
        assert not has_value([])

    def test_coverage_and_completeness(self) -> None:
        """Test per-field percentages and weighted completeness."""
        events = [
            {"title": "A", "startsAt": "2025-11-01T20:00", "sourceUrl": "u1", "genres": ["jazz"]},
            {"title": "B", "startsAt": "2025-11-02T20:00", "sourceUrl": ""},
        ]
        analysis = analyze_fields(events)
        coverage = {c.field: c for c in analysis.coverage}

        assert analysis.total_events == 2
        assert coverage["title"].percentage == 100.0
        assert coverage["sourceUrl"].percentage == 50.0
        assert coverage["sourceUrl"].required is True
        assert coverage["genres"].percentage == 50.0
        assert coverage["genres"].required is False
        assert analysis.required_coverage == pytest.approx(83.3, abs=0.1)
        assert analysis.completeness == pytest.approx(
            0.7 * analysis.required_coverage + 0.3 * analysis.optional_coverage, abs=0.2
        )

    def test_sample_events_most_complete_first(self) -> None:
        """Test that fuller events are sampled first."""
        sparse = {"title": "A"}
        full = {"title": "B", "startsAt": "x", "sourceUrl": "y", "description": "z"}
        assert select_sample_events([sparse, full]) == [full, sparse]

    def test_sample_limit(self) -> None:
        """Test that at most 50 samples are kept."""
        assert len(select_sample_events([{"title": str(i)} for i in range(80)])) == 50

    def test_warnings(self) -> None:
        """Test warnings for missing required fields and missing times."""
        analysis = analyze_fields([{"title": "A", "startsAt": "2025-11-01"}])
        warnings = build_warnings(analysis, events_without_time=1)
        assert any("sourceUrl" in w for w in warnings)
        assert any("no start time" in w for w in warnings)

    def test_no_events_warning(self) -> None:
        """Test the empty output warning."""
        assert build_warnings(analyze_fields([])) == ["Scraper returned no events"]
