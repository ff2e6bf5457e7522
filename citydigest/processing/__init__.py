"""Scoring, deduplication and clustering of content items."""

from .clustering import (
    ClusterStats,
    TopicCluster,
    TopicClusterer,
    cluster_items,
    get_cluster_stats,
    select_top_clusters,
)
from .dedupe import (
    DedupResult,
    DroppedItem,
    are_titles_similar,
    dedupe_exact,
    dedupe_fuzzy,
    deduplicate_items,
    generate_dedup_key,
)
from .scoring import (
    QUALITY_THRESHOLDS,
    ContentScorer,
    categorize_content,
    meets_quality_threshold,
    score_content,
    score_items,
)

__all__ = [
    "ClusterStats",
    "TopicCluster",
    "TopicClusterer",
    "cluster_items",
    "get_cluster_stats",
    "select_top_clusters",
    "DedupResult",
    "DroppedItem",
    "are_titles_similar",
    "dedupe_exact",
    "dedupe_fuzzy",
    "deduplicate_items",
    "generate_dedup_key",
    "QUALITY_THRESHOLDS",
    "ContentScorer",
    "categorize_content",
    "meets_quality_threshold",
    "score_content",
    "score_items",
]
