"""Record-level data quality validation."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..models.items import AlertEvent, ContentItem, DiningDeal, NewsArticle, ParkEvent
from ..utils import ensure_utc, is_valid_url, utc_now

PLACEHOLDER_PATTERNS = (
    re.compile(r"\btest\b", re.IGNORECASE),
    re.compile(r"lorem ipsum", re.IGNORECASE),
    re.compile(r"\bplaceholder\b", re.IGNORECASE),
    re.compile(r"\bxxx\b", re.IGNORECASE),
    re.compile(r"\bTODO\b"),
)


@dataclass
class ValidationResult:
    """Validation verdict with a 0-100 data quality score."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    data_quality_score: int = 100


def validate_alert_event(
    title: str | None,
    body: str | None = None,
    starts_at: datetime | None = None,
    now: datetime | None = None
) -> ValidationResult:
    """Validate an alert or event record.

    Args:
        title: Record title
        body: Record body text
        starts_at: Scheduled start, if any
        now: Reference time

    Returns:
        Validation result
    """
    errors: list[str] = []
    warnings: list[str] = []
    score = 100

    if not title or not title.strip():
        errors.append("Missing title")
        score -= 30
    elif len(title) < 5:
        warnings.append("Title very short")
        score -= 10

    if starts_at is not None:
        now = now or utc_now()
        starts_at = ensure_utc(starts_at)
        if starts_at < now - timedelta(days=1):
            errors.append("Event date in the past")
            score -= 25
        if starts_at > now + timedelta(days=365):
            warnings.append("Event more than 1 year in future")
            score -= 10

    if body:
        if len(body) < 20:
            warnings.append("Body very short")
            score -= 5
    else:
        warnings.append("No body content")
        score -= 5

    full_text = f"{title or ''} {body or ''}"
    for pattern in PLACEHOLDER_PATTERNS:
        if pattern.search(full_text):
            errors.append(f"Contains test/placeholder content: {pattern.pattern}")
            score -= 20

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        data_quality_score=max(0, score),
    )


def validate_news_article(
    title: str | None,
    url: str | None,
    summary: str | None = None,
    source: str | None = None
) -> ValidationResult:
    """Validate a news article record."""
    errors: list[str] = []
    warnings: list[str] = []
    score = 100

    if not title or not title.strip():
        errors.append("Missing title")
        score -= 30

    if not url:
        errors.append("Missing URL")
        score -= 25
    elif not is_valid_url(url):
        errors.append("Invalid URL format")
        score -= 25

    if not source:
        warnings.append("Missing source attribution")
        score -= 10

    if not summary or len(summary) < 50:
        warnings.append("Summary too short for quality digest")
        score -= 15

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        data_quality_score=max(0, score),
    )


def validate_item(item: ContentItem, now: datetime | None = None) -> ValidationResult:
    """Validate any content item with the rules for its variant."""
    match item:
        case NewsArticle():
            return validate_news_article(
                item.title, item.url, item.summary or item.body, item.source
            )
        case AlertEvent():
            return validate_alert_event(item.title, item.body, item.starts_at, now)
        case ParkEvent():
            return validate_alert_event(item.name, item.description, item.starts_at, now)
        case DiningDeal():
            return validate_alert_event(item.title, item.description, None, now)
    raise TypeError(f"Unsupported content item: {type(item).__name__}")
