"""
Duplicate detection for scored content items.

Two strategies are layered:
- Exact: items sharing a normalized dedup key collapse to the highest scorer
- Fuzzy: items whose key tokens overlap by Jaccard similarity >= threshold
  collapse across different keys (paraphrased headlines)

Ties are broken by first-seen order so results are deterministic.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..logging import get_logger, log_processing_stage
from ..models.items import ScoredItem

logger = get_logger(__name__)

# Tokens of this length or shorter carry no signal ("the", "a", "mta")
MIN_TOKEN_LENGTH = 3
KEY_TOKEN_COUNT = 5
DEFAULT_FUZZY_THRESHOLD = 0.7

DUPLICATE_REASON = 'Duplicate of "{title}" (lower score)'
SIMILAR_REASON = 'Similar to "{title}" (lower score)'


@dataclass(frozen=True)
class DroppedItem:
    """An item removed from a run, with the survivor it lost to."""
    item: ScoredItem
    reason: str
    duplicate_of: str | None = None


@dataclass
class DedupResult:
    """Survivors and losers of one deduplication pass."""
    kept: list[ScoredItem] = field(default_factory=list)
    dropped: list[DroppedItem] = field(default_factory=list)


def significant_tokens(title: str) -> list[str]:
    """Lowercase, strip punctuation and keep tokens longer than three chars."""
    normalized = re.sub(r"[^a-z0-9\s]", "", title.lower())
    return [token for token in normalized.split() if len(token) > MIN_TOKEN_LENGTH]


def generate_dedup_key(content_type: str, title: str) -> str:
    """Build the exact-match dedup key for an item.

    Args:
        content_type: Type prefix (news, alert, event, deal)
        title: Item title

    Returns:
        Key of the form ``<type>-<token>-<token>...``
    """
    tokens = sorted(significant_tokens(title))[:KEY_TOKEN_COUNT]
    return f"{content_type}-{'-'.join(tokens)}"


def title_similarity(title_a: str, title_b: str) -> float:
    """Jaccard similarity of two titles' untyped dedup-key segments.

    The untyped key keeps its empty prefix segment, which both titles share.
    Titles without any significant token are never similar.
    """
    if not significant_tokens(title_a) or not significant_tokens(title_b):
        return 0.0

    set_a = set(generate_dedup_key("", title_a).split("-"))
    set_b = set(generate_dedup_key("", title_b).split("-"))
    return len(set_a & set_b) / len(set_a | set_b)


def are_titles_similar(
    title_a: str,
    title_b: str,
    threshold: float = DEFAULT_FUZZY_THRESHOLD
) -> bool:
    """Check whether two titles are fuzzy duplicates."""
    return title_similarity(title_a, title_b) >= threshold


def dedupe_exact(items: Sequence[ScoredItem]) -> DedupResult:
    """Collapse items sharing a dedup key to their highest-scoring member.

    Survivors keep their original relative order.

    Args:
        items: Scored items in priority order

    Returns:
        Survivors plus every dropped duplicate
    """
    best: dict[str, ScoredItem] = {}
    dropped: list[DroppedItem] = []

    for item in items:
        current = best.get(item.dedup_key)
        if current is None:
            best[item.dedup_key] = item
        elif item.overall > current.overall:
            dropped.append(DroppedItem(
                item=current,
                reason=DUPLICATE_REASON.format(title=item.title),
                duplicate_of=item.id,
            ))
            best[item.dedup_key] = item
        else:
            dropped.append(DroppedItem(
                item=item,
                reason=DUPLICATE_REASON.format(title=current.title),
                duplicate_of=current.id,
            ))

    kept = [item for item in items if best.get(item.dedup_key) is item]

    logger.debug(
        "Exact deduplication complete",
        **log_processing_stage("dedupe_exact", len(items), len(kept))
    )
    return DedupResult(kept=kept, dropped=dropped)


def dedupe_fuzzy(
    items: Sequence[ScoredItem],
    threshold: float = DEFAULT_FUZZY_THRESHOLD
) -> DedupResult:
    """Drop items whose titles are similar to a higher-scoring survivor.

    Items are ranked by overall score (stable) before comparison, so the
    survivor of each similar pair is the higher scorer, or the first seen
    on a tie.

    Args:
        items: Scored items
        threshold: Jaccard similarity threshold

    Returns:
        Survivors in descending score order plus dropped items
    """
    ranked = sorted(items, key=lambda item: item.overall, reverse=True)
    kept: list[ScoredItem] = []
    dropped: list[DroppedItem] = []

    for item in ranked:
        match = next(
            (survivor for survivor in kept
             if are_titles_similar(item.title, survivor.title, threshold)),
            None,
        )
        if match is None:
            kept.append(item)
        else:
            dropped.append(DroppedItem(
                item=item,
                reason=SIMILAR_REASON.format(title=match.title),
                duplicate_of=match.id,
            ))

    logger.debug(
        "Fuzzy deduplication complete",
        **log_processing_stage("dedupe_fuzzy", len(items), len(kept), threshold=threshold)
    )
    return DedupResult(kept=kept, dropped=dropped)


def deduplicate_items(
    items: Sequence[ScoredItem],
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD
) -> DedupResult:
    """Run exact-key then fuzzy-title deduplication."""
    exact = dedupe_exact(items)
    fuzzy = dedupe_fuzzy(exact.kept, fuzzy_threshold)
    return DedupResult(kept=fuzzy.kept, dropped=exact.dropped + fuzzy.dropped)
