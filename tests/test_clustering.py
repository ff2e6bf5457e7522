"""Tests for embedding-based topic clustering."""

import math

import numpy as np
import pytest

from citydigest.models.items import ContentCategory
from citydigest.processing.clustering import (
    TopicClusterer,
    cluster_items,
    cosine_similarity,
    get_cluster_stats,
    select_top_clusters,
)


def test_cosine_similarity():
    assert cosine_similarity(np.array([1.0, 0.0]), np.array([1.0, 0.0])) == pytest.approx(1.0)
    assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)
    assert cosine_similarity(np.array([0.0, 0.0]), np.array([1.0, 0.0])) == 0.0


class TestTopicClusterer:
    """Test greedy centroid clustering."""

    def test_groups_similar_embeddings(self, make_scored, unique_title):
        a = make_scored(unique_title(), 90, ContentCategory.LOCAL, embedding=(1.0, 0.0, 0.0))
        b = make_scored(unique_title(), 70, ContentCategory.LOCAL, embedding=(0.98, 0.05, 0.0))
        c = make_scored(unique_title(), 80, ContentCategory.LOCAL, embedding=(0.0, 1.0, 0.0))

        clusters = cluster_items([b, c, a], threshold=0.85)

        assert len(clusters) == 2
        assert clusters[0].item_ids == [a.id, b.id]
        assert clusters[0].representative is a
        assert clusters[1].item_ids == [c.id]

    def test_rank_score_rewards_coverage(self, make_scored, unique_title):
        a = make_scored(unique_title(), 60, ContentCategory.LOCAL, embedding=(1.0, 0.0))
        b = make_scored(unique_title(), 60, ContentCategory.LOCAL, embedding=(1.0, 0.01))
        c = make_scored(unique_title(), 70, ContentCategory.LOCAL, embedding=(0.0, 1.0))

        clusters = cluster_items([a, b, c])

        assert clusters[0].rank_score == pytest.approx(60 * math.log(3))
        assert clusters[1].rank_score == pytest.approx(70 * math.log(2))
        assert clusters[0].size == 2

    def test_centroid_is_running_mean(self, make_scored, unique_title):
        a = make_scored(unique_title(), 90, ContentCategory.LOCAL, embedding=(1.0, 0.0))
        b = make_scored(unique_title(), 80, ContentCategory.LOCAL, embedding=(0.9, 0.1))

        [cluster] = cluster_items([a, b], threshold=0.5)

        np.testing.assert_allclose(cluster.centroid, [0.95, 0.05])

    def test_items_without_embeddings_are_ignored(self, make_scored, unique_title):
        plain = make_scored(unique_title(), 90, ContentCategory.LOCAL)

        assert cluster_items([plain]) == []

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            TopicClusterer(1.5)


def test_select_top_clusters(make_scored, unique_title):
    items = [
        make_scored(unique_title(), 90, ContentCategory.LOCAL, embedding=(1.0, 0.0, 0.0)),
        make_scored(unique_title(), 80, ContentCategory.LOCAL, embedding=(0.0, 1.0, 0.0)),
        make_scored(unique_title(), 70, ContentCategory.LOCAL, embedding=(0.0, 0.0, 1.0)),
    ]

    selected = select_top_clusters(cluster_items(items), 2)

    assert [item.overall for item in selected] == [90, 80]


def test_cluster_stats(make_scored, unique_title):
    items = [
        make_scored(unique_title(), 90, ContentCategory.LOCAL, embedding=(1.0, 0.0)),
        make_scored(unique_title(), 85, ContentCategory.LOCAL, embedding=(1.0, 0.02)),
        make_scored(unique_title(), 80, ContentCategory.LOCAL, embedding=(1.0, 0.01)),
        make_scored(unique_title(), 70, ContentCategory.LOCAL, embedding=(0.0, 1.0)),
    ]

    stats = get_cluster_stats(cluster_items(items))

    assert stats.total_clusters == 2
    assert stats.total_items == 4
    assert stats.max_cluster_size == 3
    assert stats.singleton_clusters == 1
    assert stats.avg_cluster_size == 2.0
    assert stats.duplicates_removed == 2


def test_cluster_stats_empty():
    stats = get_cluster_stats([])

    assert stats.total_clusters == 0
    assert stats.duplicates_removed == 0
