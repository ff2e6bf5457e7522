"""Pytest configuration and fixtures."""

import itertools
import os
from datetime import UTC, datetime, timedelta

import pytest

# Set test environment
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["JSON_LOGGING"] = "false"
os.environ["MOCK"] = "true"

# Thursday, 07:00 in New York
FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

# Distinct words so generated titles never look alike to the fuzzy matcher
TITLE_WORDS = [
    "alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel",
    "india", "juliet", "kilo", "lima", "mike", "november", "oscar", "papa",
    "quebec", "romeo", "sierra", "tango", "uniform", "victor", "whiskey",
    "xray", "yankee", "zulu", "amber", "basil", "cedar", "dahlia", "ember",
    "fennel", "garnet", "hazel", "indigo", "jasper", "kelp", "lilac",
]


@pytest.fixture
def now() -> datetime:
    """Fixed reference clock."""
    return FIXED_NOW


@pytest.fixture
def unique_title():
    """Factory producing titles that share no significant tokens."""
    words = iter(TITLE_WORDS)

    def make(prefix: str = "") -> str:
        title = f"{next(words)} {next(words)}"
        return f"{prefix} {title}".strip()

    return make


@pytest.fixture
def make_news(now):
    """Factory for news articles published ``hours_ago`` before ``now``."""
    from citydigest.models.items import NewsArticle

    counter = itertools.count()

    def make(title: str, hours_ago: float = 0.0, **kwargs) -> NewsArticle:
        index = next(counter)
        data = {
            "id": f"news-{index}",
            "title": title,
            "source": "Gothamist",
            "url": f"https://gothamist.com/news/story-{index}",
            "summary": "Reporting from around the five boroughs on what changed today and who it affects.",
            "published_at": now - timedelta(hours=hours_ago),
        }
        data.update(kwargs)
        return NewsArticle(**data)

    return make


@pytest.fixture
def make_alert(now):
    """Factory for alerts published ``hours_ago`` before ``now``."""
    from citydigest.models.items import AlertEvent

    counter = itertools.count()

    def make(title: str, hours_ago: float = 0.0, **kwargs) -> AlertEvent:
        data = {
            "id": f"alert-{next(counter)}",
            "title": title,
            "published_at": now - timedelta(hours=hours_ago),
        }
        data.update(kwargs)
        return AlertEvent(**data)

    return make


@pytest.fixture
def make_event(now):
    """Factory for park events."""
    from citydigest.models.items import ParkEvent

    counter = itertools.count()

    def make(name: str, hours_ago: float = 0.0, **kwargs) -> ParkEvent:
        data = {
            "id": f"event-{next(counter)}",
            "name": name,
            "description": "Free outdoor program for families, no registration required.",
            "park_name": "Prospect Park",
            "borough": "Brooklyn",
            "starts_at": now + timedelta(days=2),
            "published_at": now - timedelta(hours=hours_ago),
        }
        data.update(kwargs)
        return ParkEvent(**data)

    return make


@pytest.fixture
def make_deal(now):
    """Factory for dining deals."""
    from citydigest.models.items import DiningDeal

    counter = itertools.count()

    def make(title: str, hours_ago: float = 0.0, **kwargs) -> DiningDeal:
        data = {
            "id": f"deal-{next(counter)}",
            "restaurant": "Joe's Pizza",
            "title": title,
            "description": "Two slices and a soda for five dollars all week long.",
            "source": "Eater NY",
            "published_at": now - timedelta(hours=hours_ago),
        }
        data.update(kwargs)
        return DiningDeal(**data)

    return make


@pytest.fixture
def make_scored(now):
    """Factory for scored items with a chosen overall score and category."""
    from citydigest.models.items import ContentScores, NewsArticle, ScoredItem, scoreable_fields
    from citydigest.processing.dedupe import generate_dedup_key

    counter = itertools.count()

    def make(title: str, overall: int, category, item=None, **kwargs) -> ScoredItem:
        if item is None:
            data = {
                "id": f"scored-{next(counter)}",
                "title": title,
                "source": "Gothamist",
                "published_at": now,
            }
            data.update(kwargs)
            item = NewsArticle(**data)
        fields = scoreable_fields(item)
        return ScoredItem(
            item=item,
            fields=fields,
            scores=ContentScores(
                recency=overall, relevance=overall, impact=overall,
                completeness=overall, overall=overall,
            ),
            category=category,
            dedup_key=generate_dedup_key(fields.content_type.value, fields.title),
        )

    return make


@pytest.fixture
def registry():
    """The packaged source registry."""
    from citydigest.config import SourceRegistry
    return SourceRegistry()


@pytest.fixture
def fresh_store(now, registry, make_news, make_alert, make_event, make_deal):
    """Store in which every registered source has fresh data and volume."""
    from citydigest.ingest.store import InMemoryContentStore
    from citydigest.models.items import ContentType

    store = InMemoryContentStore()
    words = iter(TITLE_WORDS * 3)

    for source in registry.sources:
        for _ in range(max(1, source.min_items_expected)):
            title = f"{next(words)} {next(words)} {source.name}"
            if source.content_type == ContentType.NEWS:
                item = make_news(f"{title} in Brooklyn", hours_ago=0.2)
            elif source.content_type == ContentType.ALERT:
                item = make_alert(
                    title, hours_ago=0.2, module=source.module,
                    body="Service notice for riders and residents across the city.",
                )
            elif source.content_type == ContentType.EVENT:
                item = make_event(title, hours_ago=0.2)
            else:
                item = make_deal(title, hours_ago=0.2)
            store.add(source.id, item)

    return store


@pytest.fixture
def fast_retry():
    """Retry schedule with small, predictable delays."""
    from citydigest.config import RetryConfig
    return RetryConfig(max_retries=2, base_delay=1.0, multiplier=2.0, max_delay=30.0)


@pytest.fixture
def circuits():
    """Isolated circuit breaker registry."""
    from citydigest.config import CircuitConfig
    from citydigest.ingest.circuit import CircuitBreakerRegistry
    return CircuitBreakerRegistry(CircuitConfig(failure_threshold=3, reset_timeout=60))


@pytest.fixture
def sleeps():
    """Recording replacement for asyncio.sleep."""
    calls: list[float] = []

    async def sleep(delay: float) -> None:
        calls.append(delay)

    sleep.calls = calls
    return sleep
