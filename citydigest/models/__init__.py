"""Content item models."""

from .items import (
    CATEGORY_PRIORITY,
    AlertEvent,
    ContentCategory,
    ContentItem,
    ContentScores,
    ContentType,
    DiningDeal,
    NewsArticle,
    ParkEvent,
    ScoreableFields,
    ScoredItem,
    item_from_record,
    scoreable_fields,
)

__all__ = [
    "CATEGORY_PRIORITY",
    "AlertEvent",
    "ContentCategory",
    "ContentItem",
    "ContentScores",
    "ContentType",
    "DiningDeal",
    "NewsArticle",
    "ParkEvent",
    "ScoreableFields",
    "ScoredItem",
    "item_from_record",
    "scoreable_fields",
]
