"""
Multi-dimensional scoring for city digest content.

Every item is scored on four 0-100 dimensions:
- Recency: step decay over elapsed hours
- Relevance: mentions of boroughs, neighborhoods, transit, landmarks,
  government and local outlets
- Impact: urgency keywords plus a content-type adjustment
- Completeness: presence and length of title, body, URL and source

The overall score is a fixed weighted sum. Scoring is pure: identical
inputs and clock always give identical scores.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from ..logging import LoggingMixin, log_processing_stage
from ..models.items import (
    ContentCategory,
    ContentItem,
    ContentScores,
    DiningDeal,
    ScoreableFields,
    ScoredItem,
    scoreable_fields,
)
from ..utils import contains_term, hours_between, is_valid_url, utc_now
from .dedupe import generate_dedup_key


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of each dimension in the overall score."""
    recency: float = 0.25
    relevance: float = 0.30
    impact: float = 0.30
    completeness: float = 0.15


DEFAULT_WEIGHTS = ScoringWeights()

QUALITY_THRESHOLDS = {
    "minimum": 40,
    "good": 60,
    "excellent": 80,
}

# (upper bound in hours, score); first bound the age falls under wins
RECENCY_STEPS = (
    (1, 100),
    (3, 95),
    (6, 85),
    (12, 70),
    (24, 50),
    (48, 30),
    (72, 20),
)
RECENCY_FLOOR = 10
RECENCY_UNKNOWN = 30

NYC_TERMS = {
    "boroughs": [
        "nyc", "new york city", "manhattan", "brooklyn", "queens", "bronx", "staten island",
        "new york", "ny", "new yorker", "new yorkers",
    ],
    "neighborhoods": [
        "harlem", "east harlem", "upper west side", "upper east side", "ues", "uws",
        "midtown", "hell's kitchen", "chelsea", "gramercy", "murray hill",
        "east village", "west village", "greenwich village", "soho", "tribeca", "noho", "nolita",
        "lower east side", "les", "chinatown", "little italy", "financial district", "fidi",
        "battery park", "two bridges", "alphabet city",
        "williamsburg", "greenpoint", "bushwick", "bed-stuy", "bedford-stuyvesant",
        "crown heights", "park slope", "prospect heights", "dumbo", "brooklyn heights",
        "cobble hill", "carroll gardens", "red hook", "sunset park", "bay ridge",
        "flatbush", "ditmas park", "prospect lefferts", "fort greene", "clinton hill",
        "gowanus", "boerum hill", "downtown brooklyn", "brownsville", "east new york",
        "astoria", "long island city", "lic", "sunnyside", "woodside", "jackson heights",
        "flushing", "forest hills", "rego park", "jamaica", "ridgewood", "maspeth",
        "south bronx", "mott haven", "hunts point", "fordham", "riverdale",
        "kingsbridge", "morris park", "pelham bay", "city island", "highbridge",
    ],
    "transit": [
        "mta", "subway", "metro-north", "lirr", "nj transit", "path",
        "bus", "ferry", "nyc ferry", "station", "train", "commute",
        "a train", "b train", "c train", "d train", "e train", "f train", "g train",
        "j train", "l train", "m train", "n train", "q train", "r train", "w train",
        "1 train", "2 train", "3 train", "4 train", "5 train", "6 train", "7 train",
        "service change", "delay", "suspended", "shuttle bus",
    ],
    "landmarks": [
        "times square", "central park", "wall street", "broadway", "fifth avenue",
        "madison square garden", "msg", "yankee stadium", "citi field", "barclays",
        "empire state", "world trade", "hudson yards", "high line", "prospect park",
        "brooklyn bridge", "george washington bridge", "lincoln tunnel", "holland tunnel",
    ],
    "government": [
        "mayor", "city council", "nypd", "fdny", "sanitation", "parks dept",
        "department of", "doe", "mta board", "city hall", "borough president",
        "eric adams", "kathy hochul", "nyc gov",
    ],
    "local_sources": [
        "gothamist", "thecity", "the city", "amny", "nypost", "ny post",
        "nydailynews", "daily news", "ny1", "pix11", "abc7ny", "nbc new york",
    ],
}

RELEVANCE_BONUSES = {
    "boroughs": 15,
    "neighborhoods": 20,
    "transit": 15,
    "landmarks": 10,
    "government": 10,
}
LOCAL_SOURCE_BONUS = 10

IMPACT_KEYWORDS = {
    "high": [
        "emergency", "evacuation", "closure", "closed", "suspended", "canceled",
        "free", "deadline", "last day", "last chance", "ends today", "opening",
        "breaking", "urgent", "alert", "warning",
        "shooting", "fire", "explosion", "crash", "death", "killed", "injured",
        "strike", "protest", "riot", "outage", "blackout",
        "billion", "million", "budget", "tax", "rent",
    ],
    "medium": [
        "delay", "update", "changes", "starting", "ending", "beginning",
        "sale", "discount", "deal", "percent off", "% off",
        "rain", "snow", "storm", "heat", "cold", "weather",
        "new", "launch", "announce", "reveal",
    ],
    "civic": [
        "law", "bill", "vote", "election", "policy", "regulation",
        "zoning", "housing", "affordable", "rent stabilized",
        "school", "education", "hospital", "healthcare",
    ],
}

# Housing lotteries stay open for weeks and are rarely urgent
IMPACT_TYPE_ADJUSTMENTS = {
    "alert": 20,
    "transit": 15,
    "weather": 10,
    "deal": 5,
    "housing": -25,
}

BREAKING_TERMS = ("breaking", "emergency", "evacuation", "shooting", "explosion")
ESSENTIAL_PATTERNS = (
    re.compile(r"subway|mta|train|bus|delay|suspended|service change"),
    re.compile(r"weather|rain|snow|storm|temperature|forecast"),
)
MONEY_PATTERN = re.compile(r"free|sale|discount|deal|cheap|save|lottery|affordable|percent off|% off")
CULTURE_PATTERN = re.compile(r"concert|show|festival|museum|exhibit|movie|theater|gallery|performance")
CIVIC_PATTERN = re.compile(r"mayor|council|vote|law|policy|budget|zoning|election|bill")
LIFESTYLE_PATTERN = re.compile(r"restaurant|food|recipe|health|fitness|wellness|tip|guide|how to")


def _clamp(score: int) -> int:
    return max(0, min(100, score))


def score_recency(timestamp: datetime | None, now: datetime | None = None) -> int:
    """Score content age as a step function of elapsed hours.

    Args:
        timestamp: Publish or creation time
        now: Reference time (defaults to current UTC time)

    Returns:
        100 for fresh or scheduled content down to 10 for old content,
        30 when the timestamp is unknown
    """
    if timestamp is None:
        return RECENCY_UNKNOWN

    hours = hours_between(now or utc_now(), timestamp)
    if hours < 0:
        return 100

    for bound, score in RECENCY_STEPS:
        if hours < bound:
            return score
    return RECENCY_FLOOR


def score_relevance(text: str, source: str | None = None) -> int:
    """Score how strongly content is tied to the city."""
    lower_text = text.lower()
    score = 40

    for group, bonus in RELEVANCE_BONUSES.items():
        if any(contains_term(lower_text, term) for term in NYC_TERMS[group]):
            score += bonus

    lower_source = (source or "").lower()
    if any(
        contains_term(lower_source, term) or contains_term(lower_text, term)
        for term in NYC_TERMS["local_sources"]
    ):
        score += LOCAL_SOURCE_BONUS

    return _clamp(score)


def score_impact(text: str, type_tag: str | None = None) -> int:
    """Score urgency and consequence of content.

    Args:
        text: Title and body text
        type_tag: Content type tag (news, alert, transit, weather, deal, housing...)

    Returns:
        Impact score 0-100
    """
    lower_text = text.lower()
    score = 40

    high_matches = sum(1 for kw in IMPACT_KEYWORDS["high"] if contains_term(lower_text, kw))
    score += 15 * min(high_matches, 3)

    medium_matches = sum(1 for kw in IMPACT_KEYWORDS["medium"] if contains_term(lower_text, kw))
    score += 8 * min(medium_matches, 3)

    if any(contains_term(lower_text, kw) for kw in IMPACT_KEYWORDS["civic"]):
        score += 5

    score += IMPACT_TYPE_ADJUSTMENTS.get(type_tag or "", 0)
    return _clamp(score)


def score_completeness(
    title: str | None,
    body: str | None,
    url: str | None,
    source: str | None
) -> int:
    """Score how complete an item's fields are.

    Title is worth up to 40 points, body up to 30, a valid URL 15 (5 if
    malformed) and source attribution 15.
    """
    score = 0

    if title and title.strip():
        score += 25
        if len(title) >= 10:
            score += 10
        if len(title) >= 30:
            score += 5

    content = body or ""
    if content.strip():
        score += 15
        if len(content) >= 50:
            score += 10
        if len(content) >= 200:
            score += 5

    if url:
        score += 15 if is_valid_url(url) else 5

    if source and source.strip():
        score += 15

    return _clamp(score)


def score_content(
    fields: ScoreableFields,
    now: datetime | None = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS
) -> ContentScores:
    """Compute every score dimension and the weighted overall score."""
    text = fields.text
    recency = score_recency(fields.timestamp, now)
    relevance = score_relevance(text, fields.source)
    impact = score_impact(text, fields.type_tag)
    completeness = score_completeness(fields.title, fields.body, fields.url, fields.source)

    overall = round(
        recency * weights.recency
        + relevance * weights.relevance
        + impact * weights.impact
        + completeness * weights.completeness
    )

    return ContentScores(
        recency=recency,
        relevance=relevance,
        impact=impact,
        completeness=completeness,
        overall=_clamp(overall),
    )


def categorize_content(
    title: str,
    body: str | None = None,
    type_tag: str | None = None
) -> ContentCategory:
    """Assign exactly one category; the first matching rule wins."""
    text = f"{title} {body or ''}".lower()

    if type_tag == "alert" or any(term in text for term in BREAKING_TERMS):
        return ContentCategory.BREAKING

    if type_tag in ("transit", "weather") or any(p.search(text) for p in ESSENTIAL_PATTERNS):
        return ContentCategory.ESSENTIAL

    if type_tag == "deal" or MONEY_PATTERN.search(text):
        return ContentCategory.MONEY

    if type_tag == "event" or CULTURE_PATTERN.search(text):
        return ContentCategory.CULTURE

    if type_tag == "civic" or CIVIC_PATTERN.search(text):
        return ContentCategory.CIVIC

    if LIFESTYLE_PATTERN.search(text):
        return ContentCategory.LIFESTYLE

    return ContentCategory.LOCAL


def meets_quality_threshold(scores: ContentScores, level: str = "minimum") -> bool:
    """Check an item's overall score against a named quality threshold."""
    if level not in QUALITY_THRESHOLDS:
        raise ValueError(f"Unknown quality level: {level}")
    return scores.overall >= QUALITY_THRESHOLDS[level]


class ContentScorer(LoggingMixin):
    """Scores content items against a fixed clock."""

    def __init__(
        self,
        now: datetime | None = None,
        weights: ScoringWeights | None = None
    ):
        """Initialize scorer.

        Args:
            now: Reference time for recency; fixed for the scorer's lifetime
            weights: Dimension weights
        """
        self.now = now or utc_now()
        self.weights = weights or DEFAULT_WEIGHTS

    def score_item(self, item: ContentItem) -> ScoredItem:
        """Score and categorize a single item."""
        fields = scoreable_fields(item)
        scores = score_content(fields, self.now, self.weights)

        if isinstance(item, DiningDeal):
            category = ContentCategory.MONEY
        else:
            category = categorize_content(fields.title, fields.body, fields.type_tag)

        return ScoredItem(
            item=item,
            fields=fields,
            scores=scores,
            category=category,
            dedup_key=generate_dedup_key(fields.content_type.value, fields.title),
        )

    def score_items(self, items: Iterable[ContentItem]) -> list[ScoredItem]:
        """Score items, returned in descending overall order (stable)."""
        scored = [self.score_item(item) for item in items]
        scored.sort(key=lambda s: s.overall, reverse=True)

        self.logger.debug(
            "Items scored",
            **log_processing_stage("scoring", len(scored), len(scored))
        )
        return scored


def score_items(items: Iterable[ContentItem], now: datetime | None = None) -> list[ScoredItem]:
    """Convenience function to score and rank content items."""
    return ContentScorer(now=now).score_items(items)
