"""
Embedding-based topic clustering.

Items are visited in descending score order and greedily assigned to the
nearest existing cluster when cosine similarity to its centroid meets the
threshold; otherwise they start a new cluster. The first member of each
cluster is therefore its highest-scored representative.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from ..logging import LoggingMixin, log_processing_stage
from ..models.items import ScoredItem

DEFAULT_CLUSTER_THRESHOLD = 0.85


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


@dataclass
class TopicCluster:
    """A group of items judged to cover the same topic."""
    members: list[ScoredItem]
    centroid: np.ndarray

    @property
    def representative(self) -> ScoredItem:
        return self.members[0]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def item_ids(self) -> list[str]:
        return [member.id for member in self.members]

    @property
    def avg_score(self) -> float:
        return sum(member.overall for member in self.members) / len(self.members)

    @property
    def rank_score(self) -> float:
        """Average score weighted by how much coverage the topic received."""
        return self.avg_score * math.log(self.size + 1)

    def add(self, item: ScoredItem, vector: np.ndarray) -> None:
        self.members.append(item)
        # Running mean of member embeddings
        self.centroid = self.centroid + (vector - self.centroid) / len(self.members)


@dataclass
class ClusterStats:
    """Summary statistics for a clustering run."""
    total_clusters: int = 0
    avg_cluster_size: float = 0.0
    max_cluster_size: int = 0
    singleton_clusters: int = 0
    total_items: int = 0

    @property
    def duplicates_removed(self) -> int:
        return self.total_items - self.total_clusters


class TopicClusterer(LoggingMixin):
    """Greedy centroid clustering over item embeddings."""

    def __init__(self, threshold: float = DEFAULT_CLUSTER_THRESHOLD):
        if not 0 <= threshold <= 1:
            raise ValueError("Cluster threshold must be between 0 and 1")
        self.threshold = threshold

    def cluster(self, items: Sequence[ScoredItem]) -> list[TopicCluster]:
        """Cluster items that carry embeddings.

        Items without an embedding are ignored; callers backfill them
        through keyword deduplication.

        Args:
            items: Scored items

        Returns:
            Clusters sorted by descending rank score
        """
        embedded = [item for item in items if item.fields.embedding]
        ranked = sorted(embedded, key=lambda item: item.overall, reverse=True)
        clusters: list[TopicCluster] = []

        for item in ranked:
            vector = np.asarray(item.fields.embedding, dtype=float)
            best_cluster = None
            best_similarity = -1.0

            for cluster in clusters:
                if cluster.centroid.shape != vector.shape:
                    continue
                similarity = cosine_similarity(vector, cluster.centroid)
                if similarity > best_similarity:
                    best_similarity = similarity
                    best_cluster = cluster

            if best_cluster is not None and best_similarity >= self.threshold:
                best_cluster.add(item, vector)
            else:
                clusters.append(TopicCluster(members=[item], centroid=vector.copy()))

        clusters.sort(key=lambda c: c.rank_score, reverse=True)

        self.logger.debug(
            "Topic clustering complete",
            **log_processing_stage(
                "clustering", len(embedded), len(clusters), threshold=self.threshold
            )
        )
        return clusters


def cluster_items(
    items: Sequence[ScoredItem],
    threshold: float = DEFAULT_CLUSTER_THRESHOLD
) -> list[TopicCluster]:
    """Convenience function to cluster scored items."""
    return TopicClusterer(threshold).cluster(items)


def select_top_clusters(clusters: Sequence[TopicCluster], limit: int) -> list[ScoredItem]:
    """Take the representative of each of the top ``limit`` clusters."""
    return [cluster.representative for cluster in clusters[:limit]]


def get_cluster_stats(clusters: Sequence[TopicCluster]) -> ClusterStats:
    """Compute size statistics for a set of clusters."""
    if not clusters:
        return ClusterStats()

    sizes = [cluster.size for cluster in clusters]
    return ClusterStats(
        total_clusters=len(clusters),
        avg_cluster_size=round(sum(sizes) / len(sizes), 2),
        max_cluster_size=max(sizes),
        singleton_clusters=sum(1 for size in sizes if size == 1),
        total_items=sum(sizes),
    )
