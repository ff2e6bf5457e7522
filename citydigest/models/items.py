"""Content item variants and the scored records built from them.

Items are immutable once fetched. Every variant projects onto a common
``ScoreableFields`` record so scoring, deduplication and personalization
never probe variant-specific attributes directly.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar


class ContentType(str, Enum):
    """Upstream record families."""
    NEWS = "news"
    ALERT = "alert"
    EVENT = "event"
    DEAL = "deal"


class ContentCategory(str, Enum):
    """Closed set of digest categories. Exactly one per item."""
    BREAKING = "breaking"
    ESSENTIAL = "essential"
    MONEY = "money"
    LOCAL = "local"
    CIVIC = "civic"
    CULTURE = "culture"
    LIFESTYLE = "lifestyle"


# Order used when balancing a digest across categories
CATEGORY_PRIORITY: tuple[ContentCategory, ...] = (
    ContentCategory.BREAKING,
    ContentCategory.ESSENTIAL,
    ContentCategory.MONEY,
    ContentCategory.LOCAL,
    ContentCategory.CULTURE,
    ContentCategory.CIVIC,
    ContentCategory.LIFESTYLE,
)

@dataclass(frozen=True)
class NewsArticle:
    """A local news story."""
    id: str
    title: str
    source: str
    url: str | None = None
    summary: str | None = None
    body: str | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None
    neighborhood: str | None = None
    embedding: tuple[float, ...] | None = None

    content_type: ClassVar[ContentType] = ContentType.NEWS


@dataclass(frozen=True)
class AlertEvent:
    """A transit, service or city alert, keyed by the module that produced it."""
    id: str
    title: str
    body: str | None = None
    source: str | None = None
    module: str | None = None
    url: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None
    neighborhood: str | None = None
    embedding: tuple[float, ...] | None = None

    content_type: ClassVar[ContentType] = ContentType.ALERT


@dataclass(frozen=True)
class ParkEvent:
    """A scheduled event in a city park."""
    id: str
    name: str
    description: str | None = None
    park_name: str | None = None
    borough: str | None = None
    url: str | None = None
    source: str = "NYC Parks"
    starts_at: datetime | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None
    neighborhood: str | None = None
    embedding: tuple[float, ...] | None = None

    content_type: ClassVar[ContentType] = ContentType.EVENT


@dataclass(frozen=True)
class DiningDeal:
    """A restaurant deal or discount."""
    id: str
    restaurant: str
    title: str
    description: str | None = None
    deal_type: str | None = None
    url: str | None = None
    source: str | None = None
    borough: str | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None
    neighborhood: str | None = None
    embedding: tuple[float, ...] | None = None

    content_type: ClassVar[ContentType] = ContentType.DEAL


ContentItem = NewsArticle | AlertEvent | ParkEvent | DiningDeal


@dataclass(frozen=True)
class ScoreableFields:
    """Variant-independent view of an item used by every scoring stage."""
    id: str
    content_type: ContentType
    type_tag: str
    title: str
    body: str
    url: str | None
    source: str | None
    timestamp: datetime | None
    location: str | None
    embedding: tuple[float, ...] | None

    @property
    def text(self) -> str:
        return f"{self.title} {self.body}".strip()


def _timestamp(item: ContentItem) -> datetime | None:
    return item.published_at or item.created_at


def scoreable_fields(item: ContentItem) -> ScoreableFields:
    """Project any content item onto the fields the scoring engine reads.

    Args:
        item: News article, alert, park event or dining deal

    Returns:
        Scoreable projection of the item
    """
    match item:
        case NewsArticle():
            return ScoreableFields(
                id=item.id,
                content_type=ContentType.NEWS,
                type_tag="news",
                title=item.title,
                body=item.body or item.summary or "",
                url=item.url,
                source=item.source,
                timestamp=_timestamp(item),
                location=item.neighborhood,
                embedding=item.embedding,
            )
        case AlertEvent():
            return ScoreableFields(
                id=item.id,
                content_type=ContentType.ALERT,
                type_tag="alert",
                title=item.title,
                body=item.body or "",
                url=item.url,
                source=item.source,
                timestamp=_timestamp(item),
                location=item.neighborhood,
                embedding=item.embedding,
            )
        case ParkEvent():
            location = item.neighborhood or item.borough
            body = item.description or ""
            if item.park_name:
                body = f"{body} {item.park_name}".strip()
            return ScoreableFields(
                id=item.id,
                content_type=ContentType.EVENT,
                type_tag="event",
                title=item.name,
                body=body,
                url=item.url,
                source=item.source,
                timestamp=_timestamp(item),
                location=location,
                embedding=item.embedding,
            )
        case DiningDeal():
            return ScoreableFields(
                id=item.id,
                content_type=ContentType.DEAL,
                type_tag="deal",
                title=f"{item.restaurant}: {item.title}",
                body=item.description or "",
                url=item.url,
                source=item.source,
                timestamp=_timestamp(item),
                location=item.neighborhood or item.borough,
                embedding=item.embedding,
            )
    raise TypeError(f"Unsupported content item: {type(item).__name__}")


@dataclass(frozen=True)
class ContentScores:
    """Per-dimension scores, each 0-100."""
    recency: int
    relevance: int
    impact: int
    completeness: int
    overall: int


@dataclass(frozen=True)
class ScoredItem:
    """An item together with its scores, category and dedup key for one run."""
    item: ContentItem
    fields: ScoreableFields
    scores: ContentScores
    category: ContentCategory
    dedup_key: str

    @property
    def id(self) -> str:
        return self.fields.id

    @property
    def title(self) -> str:
        return self.fields.title

    @property
    def source(self) -> str | None:
        return self.fields.source

    @property
    def overall(self) -> int:
        return self.scores.overall

    @property
    def content_type(self) -> ContentType:
        return self.fields.content_type


# ── Record loading ─────────────────────────────────────────────────────────

_ITEM_CLASSES: dict[str, type] = {
    ContentType.NEWS.value: NewsArticle,
    ContentType.ALERT.value: AlertEvent,
    ContentType.EVENT.value: ParkEvent,
    ContentType.DEAL.value: DiningDeal,
}

_DATETIME_FIELDS = ("published_at", "created_at", "starts_at", "ends_at")


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def item_from_record(record: dict[str, Any]) -> ContentItem:
    """Build a content item from a plain mapping with a ``type`` key.

    Args:
        record: Mapping such as one entry of a JSON fixture file

    Returns:
        The matching content item variant

    Raises:
        ValueError: If the type is unknown or required fields are missing
    """
    data = dict(record)
    item_type = data.pop("type", None)
    data.pop("source_id", None)
    item_class = _ITEM_CLASSES.get(item_type)
    if item_class is None:
        raise ValueError(f"Unknown content type: {item_type!r}")

    for name in _DATETIME_FIELDS:
        if name in data:
            data[name] = _parse_datetime(data[name])
    if data.get("embedding") is not None:
        data["embedding"] = tuple(float(v) for v in data["embedding"])

    allowed = set(item_class.__dataclass_fields__)
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown fields for {item_type}: {sorted(unknown)}")

    try:
        return item_class(**data)
    except TypeError as e:
        raise ValueError(f"Invalid {item_type} record: {e}") from e
