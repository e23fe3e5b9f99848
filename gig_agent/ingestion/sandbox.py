"""
Scraper Sandbox Module
======================

Runs stored scraper code in a separate Python interpreter so a faulty or
hostile scraper cannot corrupt the host process.

Execution contract: the code defines ``scrape(config)`` (sync or async)
returning a list of event dicts, or a dict with an ``events`` list. The
source config is passed as JSON on stdin; the result comes back as JSON on
stdout. Anything the scraper prints is redirected to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
import time
from dataclasses import dataclass, field
from typing import Any

from gig_agent.core.errors import ScraperExecutionError, ValidationError

logger = logging.getLogger(__name__)

MAX_CODE_BYTES = 500_000
MAX_DESCRIPTION_LENGTH = 1000
DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_MAX_OUTPUT_BYTES = 10_000_000
STDERR_TAIL_BYTES = 4000
READ_CHUNK_BYTES = 65536

# Program run by the child interpreter
_RUNNER = """
import asyncio, json, sys, traceback
payload = json.loads(sys.stdin.read())
out = sys.stdout
sys.stdout = sys.stderr
try:
    namespace = {"__name__": "scraper"}
    exec(compile(payload["code"], "<scraper>", "exec"), namespace)
    scrape = namespace.get("scrape")
    if not callable(scrape):
        raise RuntimeError("scraper code does not define scrape(config)")
    result = scrape(payload["config"])
    if asyncio.iscoroutine(result):
        result = asyncio.run(result)
    out.write(json.dumps({"ok": True, "result": result}, default=str))
except BaseException as exc:
    out.write(json.dumps({
        "ok": False,
        "error": f"{type(exc).__name__}: {exc}",
        "traceback": traceback.format_exc(),
    }))
    out.flush()
    sys.exit(1)
out.flush()
"""

# (pattern, message) pairs that make code unacceptable
FORBIDDEN_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bos\.system\s*\("), "os.system() is not allowed"),
    (re.compile(r"\bsubprocess\b"), "subprocess is not allowed"),
    (re.compile(r"(?<![\w.])eval\s*\("), "eval() is not allowed"),
    (re.compile(r"(?<![\w.])exec\s*\("), "exec() is not allowed"),
    (re.compile(r"\bshutil\.rmtree\b"), "shutil.rmtree() is not allowed"),
    (re.compile(r"\b__import__\b"), "__import__ is not allowed"),
]

# (pattern, message) pairs that are suspicious but allowed
WARNING_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bwhile\s+True\s*:"), "Unbounded 'while True' loop"),
    (
        re.compile(r"""["'](?:19|20)\d{2}-\d{2}-\d{2}"""),
        "Hard-coded absolute date; scraped dates should come from the page",
    ),
    (
        re.compile(r"\b(?:datetime|date)\(\s*(?:19|20)\d{2}\s*,"),
        "Hard-coded absolute date; scraped dates should come from the page",
    ),
]


@dataclass
class CodeValidation:
    """Result of static checks on scraper code."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True when no errors were found."""
        return not self.errors


@dataclass
class SandboxResult:
    """Output of one sandboxed scraper execution."""

    events: list[Any]
    execution_time_ms: int
    stderr: str = ""


def validate_scraper_code(code: str) -> CodeValidation:
    """
    Statically check scraper code before storing or running it.

    Args:
        code: Python source

    Returns:
        CodeValidation with errors (blocking) and warnings
    """
    validation = CodeValidation()
    if not code or not code.strip():
        validation.errors.append("Code is empty")
        return validation

    if len(code.encode("utf-8")) > MAX_CODE_BYTES:
        validation.errors.append(f"Code exceeds {MAX_CODE_BYTES} bytes")

    if not re.search(r"^\s*(?:async\s+)?def\s+scrape\s*\(", code, re.MULTILINE):
        validation.errors.append("Code must define a scrape(config) function")

    for pattern, message in FORBIDDEN_PATTERNS:
        if pattern.search(code):
            validation.errors.append(message)

    for pattern, message in WARNING_PATTERNS:
        if pattern.search(code) and message not in validation.warnings:
            validation.warnings.append(message)

    return validation


def ensure_valid_code(code: str) -> CodeValidation:
    """
    Validate code, raising on blocking problems.

    Raises:
        ValidationError: If any error was found
    """
    validation = validate_scraper_code(code)
    if not validation.is_valid:
        raise ValidationError("Invalid scraper code: " + "; ".join(validation.errors))
    return validation


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
    await process.wait()


async def _feed_stdin(process: asyncio.subprocess.Process, payload: bytes) -> None:
    try:
        process.stdin.write(payload)
        await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child exited without reading; its exit status tells the story
        logger.debug("Scraper process closed stdin early")
    finally:
        process.stdin.close()


async def _read_capped(stream: asyncio.StreamReader, limit: int) -> bytes:
    """Read a stream to EOF, failing as soon as more than ``limit`` bytes arrive."""
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return b"".join(chunks)
        total += len(chunk)
        if total > limit:
            raise ScraperExecutionError(f"Scraper output exceeds {limit} bytes")
        chunks.append(chunk)


async def _read_tail(stream: asyncio.StreamReader, keep: int) -> bytes:
    """Read a stream to EOF, keeping only its last ``keep`` bytes."""
    tail = b""
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return tail
        tail = (tail + chunk)[-keep:]


async def _exchange(
    process: asyncio.subprocess.Process, payload: bytes, max_output_bytes: int
) -> tuple[bytes, bytes]:
    """Send the payload and collect stdout (capped) and the tail of stderr."""
    feeder = asyncio.ensure_future(_feed_stdin(process, payload))
    stderr_reader = asyncio.ensure_future(_read_tail(process.stderr, STDERR_TAIL_BYTES))
    try:
        stdout = await _read_capped(process.stdout, max_output_bytes)
        await feeder
        stderr = await stderr_reader
    finally:
        for task in (feeder, stderr_reader):
            task.cancel()
        await asyncio.gather(feeder, stderr_reader, return_exceptions=True)
    await process.wait()
    return stdout, stderr


def _extract_events(result: Any) -> list[Any]:
    if isinstance(result, dict):
        result = result.get("events")
    if not isinstance(result, list):
        raise ScraperExecutionError(
            "scrape() must return a list of events or a dict with an 'events' list"
        )
    return result


async def run_scraper_code(
    code: str,
    config: dict[str, Any],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
) -> SandboxResult:
    """
    Execute scraper code in an isolated interpreter with a wall-clock timeout.

    On timeout the child process is killed and its output discarded.

    Args:
        code: Python source defining scrape(config)
        config: Source configuration passed to scrape()
        timeout: Seconds before the process is killed
        max_output_bytes: Largest accepted stdout payload

    Returns:
        SandboxResult with the raw event dicts

    Raises:
        ScraperExecutionError: On timeout, crash, oversized or unreadable output
    """
    payload = json.dumps({"code": code, "config": config}, default=str).encode("utf-8")
    started = time.monotonic()

    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-I",
        "-c",
        _RUNNER,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            _exchange(process, payload, max_output_bytes), timeout=timeout
        )
    except TimeoutError:
        await _kill(process)
        raise ScraperExecutionError(
            f"Scraper timed out after {timeout:g}s", timed_out=True
        ) from None
    except (ScraperExecutionError, asyncio.CancelledError):
        await _kill(process)
        raise

    elapsed_ms = int((time.monotonic() - started) * 1000)
    stderr_text = stderr.decode("utf-8", errors="replace")

    try:
        message = json.loads(stdout) if stdout else None
    except ValueError as e:
        raise ScraperExecutionError(f"Scraper produced unreadable output: {e}") from e

    if not isinstance(message, dict):
        detail = stderr_text.strip().splitlines()[-1:] or [f"exit code {process.returncode}"]
        raise ScraperExecutionError(f"Scraper process failed: {detail[0]}")

    if not message.get("ok"):
        logger.debug(f"Scraper traceback:\n{message.get('traceback', '')}")
        raise ScraperExecutionError(message.get("error") or "Scraper raised an error")

    events = _extract_events(message.get("result"))
    logger.info(f"Scraper returned {len(events)} events in {elapsed_ms}ms")
    return SandboxResult(events=events, execution_time_ms=elapsed_ms, stderr=stderr_text)
