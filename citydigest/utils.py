"""Utility functions for the City Digest pipeline."""

import asyncio
import re
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from .logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def hours_between(later: datetime, earlier: datetime) -> float:
    """Elapsed hours from ``earlier`` to ``later`` (negative if reversed)."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600


def is_valid_url(url: str) -> bool:
    """Check if URL is valid.

    Args:
        url: URL to validate

    Returns:
        True if URL has both a scheme and a network location
    """
    try:
        result = urlparse(url)
        return all([result.scheme, result.netloc])
    except ValueError:
        return False


def clean_text(text: str | None) -> str:
    """Collapse whitespace and decode common HTML entities."""
    if not text:
        return ""

    text = re.sub(r'\s+', ' ', text.strip())

    html_entities = {
        '&amp;': '&',
        '&lt;': '<',
        '&gt;': '>',
        '&quot;': '"',
        '&#39;': "'",
        '&nbsp;': ' ',
    }

    for entity, replacement in html_entities.items():
        text = text.replace(entity, replacement)

    return text


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix


def contains_term(text: str, term: str) -> bool:
    """Check whether ``term`` occurs in lowercase ``text`` at a word start.

    Terms may be prefixes of longer words ("delay" matches "delayed") but
    never match mid-word ("ny" does not match "company"). Terms starting
    with punctuation ("% off") match anywhere.
    """
    if not term[:1].isalnum():
        return term in text
    return re.search(r"(?<![a-z0-9])" + re.escape(term), text) is not None


async def retry_async(
    func,
    max_retries: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
) -> Any:
    """Retry async function with exponential backoff.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retries
        backoff_factor: Backoff multiplier
        exceptions: Exceptions to catch and retry

    Returns:
        Function result

    Raises:
        Last exception if all retries fail
    """
    last_exception = None

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except exceptions as e:
            last_exception = e
            if attempt < max_retries:
                delay = backoff_factor ** attempt
                logger.warning(
                    "Retry attempt failed",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "All retry attempts failed",
                    max_retries=max_retries,
                    error=str(e)
                )

    raise last_exception
