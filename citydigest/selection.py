"""
Content selection: pick the best items of each content type.

For every content type the stage fetches up to ``fetch_multiplier`` times
the type's cap, scores each candidate, drops those under the quality
threshold, collapses exact duplicates to their highest scorer and keeps
the top items. With semantic selection enabled, embedded candidates are
clustered and one representative per top cluster is chosen, backfilled by
non-embedded high scorers.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .config import SelectionConfig
from .errors import OrchestrationError, PipelineStage, Severity, SourceFetchError
from .ingest.store import ContentStore
from .ingest.validators import validate_item
from .logging import LoggingMixin, PerformanceLogger, log_error, log_processing_stage
from .models.items import CATEGORY_PRIORITY, ContentCategory, ContentItem, ContentType, ScoredItem
from .processing.clustering import ClusterStats, TopicClusterer, get_cluster_stats, select_top_clusters
from .processing.dedupe import DroppedItem, dedupe_exact
from .processing.scoring import ContentScorer
from .utils import utc_now

BELOW_THRESHOLD_REASON = "Below quality threshold ({score} < {threshold})"
CLUSTER_REASON = 'Same topic as "{title}"'


@dataclass
class SelectionSummary:
    """Statistics for one selection run."""
    total_evaluated: int = 0
    total_selected: int = 0
    average_quality: int = 0
    top_sources: list[str] = field(default_factory=list)
    category_breakdown: dict[ContentCategory, int] = field(default_factory=dict)
    below_threshold: int = 0
    duplicates_removed: int = 0
    invalid_count: int = 0
    clusters: dict[ContentType, ClusterStats] = field(default_factory=dict)


@dataclass
class ContentSelection:
    """Selected items per type and per category."""
    news: list[ScoredItem] = field(default_factory=list)
    alerts: list[ScoredItem] = field(default_factory=list)
    deals: list[ScoredItem] = field(default_factory=list)
    events: list[ScoredItem] = field(default_factory=list)
    by_category: dict[ContentCategory, list[ScoredItem]] = field(default_factory=dict)
    summary: SelectionSummary = field(default_factory=SelectionSummary)
    dropped: list[DroppedItem] = field(default_factory=list)
    errors: list[OrchestrationError] = field(default_factory=list)

    def items_of(self, content_type: ContentType) -> list[ScoredItem]:
        return {
            ContentType.NEWS: self.news,
            ContentType.ALERT: self.alerts,
            ContentType.DEAL: self.deals,
            ContentType.EVENT: self.events,
        }[content_type]

    def all_items(self) -> list[ScoredItem]:
        """Every selected item, highest overall score first."""
        items = self.news + self.alerts + self.deals + self.events
        return sorted(items, key=lambda item: item.overall, reverse=True)


@dataclass
class _TypeSelection:
    selected: list[ScoredItem] = field(default_factory=list)
    dropped: list[DroppedItem] = field(default_factory=list)
    evaluated: int = 0
    below_threshold: int = 0
    duplicates_removed: int = 0
    invalid_count: int = 0
    clusters: ClusterStats | None = None


class ContentSelector(LoggingMixin):
    """Selects the best candidates of every content type from a store."""

    def __init__(self, store: ContentStore, config: SelectionConfig | None = None):
        """Initialize selector.

        Args:
            store: Content store to fetch candidates from
            config: Caps, thresholds and lookback window
        """
        self.store = store
        self.config = config or SelectionConfig()
        self.clusterer = TopicClusterer(self.config.cluster_threshold)

    async def select(self, now: datetime | None = None) -> ContentSelection:
        """Run selection across all content types.

        A failed fetch for one type leaves that type empty and records an
        error; the other types are unaffected.

        Args:
            now: Reference time for recency and the lookback window

        Returns:
            Content selection with summary statistics
        """
        now = now or utc_now()
        since = now - timedelta(hours=self.config.lookback_hours)
        content_types = list(ContentType)

        with PerformanceLogger("content_selection", self.logger):
            fetched = await asyncio.gather(
                *(self._fetch(content_type, since) for content_type in content_types),
                return_exceptions=True,
            )

            selection = ContentSelection()
            scorer = ContentScorer(now=now)
            per_type: dict[ContentType, _TypeSelection] = {}

            for content_type, result in zip(content_types, fetched):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    self.logger.error(
                        "Candidate fetch failed",
                        **log_error(result, context="select", content_type=content_type.value)
                    )
                    selection.errors.append(OrchestrationError.from_exception(
                        PipelineStage.SELECTION,
                        result,
                        severity=Severity.ERROR,
                        source_id=content_type.value,
                        recoverable=True,
                    ))
                    per_type[content_type] = _TypeSelection()
                    continue

                per_type[content_type] = self._select_type(content_type, result, scorer, now)

            for content_type, chosen in per_type.items():
                selection.items_of(content_type).extend(chosen.selected)
                selection.dropped.extend(chosen.dropped)

            selection.by_category = self._group_by_category(selection.all_items())
            selection.summary = self._summarize(selection, per_type)

        self.logger.info(
            "Content selection complete",
            **log_processing_stage(
                "selection",
                selection.summary.total_evaluated,
                selection.summary.total_selected,
                average_quality=selection.summary.average_quality,
            )
        )
        return selection

    async def _fetch(self, content_type: ContentType, since: datetime) -> list[ContentItem]:
        limit = self.config.cap_for(content_type) * self.config.fetch_multiplier
        if limit == 0:
            return []
        try:
            return await self.store.fetch_candidates(content_type, since, limit)
        except SourceFetchError:
            raise
        except Exception as e:
            raise SourceFetchError(f"Failed to fetch {content_type.value} candidates: {e}") from e

    def _select_type(
        self,
        content_type: ContentType,
        candidates: list[ContentItem],
        scorer: ContentScorer,
        now: datetime
    ) -> _TypeSelection:
        """Score, filter, deduplicate and cap one content type's candidates."""
        chosen = _TypeSelection(evaluated=len(candidates))
        cap = self.config.cap_for(content_type)
        threshold = self.config.min_quality_score

        qualified: list[ScoredItem] = []
        for scored in scorer.score_items(candidates):
            validation = validate_item(scored.item, now)
            if not validation.valid:
                chosen.invalid_count += 1
                if self.config.drop_invalid:
                    chosen.dropped.append(DroppedItem(
                        item=scored, reason=f"Invalid: {'; '.join(validation.errors)}"
                    ))
                    continue
            if scored.overall < threshold:
                chosen.below_threshold += 1
                chosen.dropped.append(DroppedItem(
                    item=scored,
                    reason=BELOW_THRESHOLD_REASON.format(score=scored.overall, threshold=threshold),
                ))
                continue
            if self.config.categories is not None and scored.category not in self.config.categories:
                continue
            qualified.append(scored)

        deduped = dedupe_exact(qualified)
        chosen.duplicates_removed = len(deduped.dropped)
        chosen.dropped.extend(deduped.dropped)

        if self.config.use_semantic and any(item.fields.embedding for item in deduped.kept):
            chosen.selected = self._select_semantic(deduped.kept, cap, chosen)
        else:
            chosen.selected = deduped.kept[:cap]

        return chosen

    def _select_semantic(
        self,
        items: list[ScoredItem],
        cap: int,
        chosen: _TypeSelection
    ) -> list[ScoredItem]:
        """One representative per top cluster, backfilled with non-embedded items."""
        clusters = self.clusterer.cluster(items)
        chosen.clusters = get_cluster_stats(clusters)

        for cluster in clusters:
            for member in cluster.members[1:]:
                chosen.dropped.append(DroppedItem(
                    item=member,
                    reason=CLUSTER_REASON.format(title=cluster.representative.title),
                    duplicate_of=cluster.representative.id,
                ))
        chosen.duplicates_removed += chosen.clusters.duplicates_removed

        selected = select_top_clusters(clusters, cap)
        if len(selected) < cap:
            backfill = [item for item in items if not item.fields.embedding]
            selected.extend(backfill[:cap - len(selected)])

        return sorted(selected, key=lambda item: item.overall, reverse=True)

    @staticmethod
    def _group_by_category(items: list[ScoredItem]) -> dict[ContentCategory, list[ScoredItem]]:
        grouped: dict[ContentCategory, list[ScoredItem]] = {category: [] for category in CATEGORY_PRIORITY}
        for item in items:
            grouped[item.category].append(item)
        return grouped

    @staticmethod
    def _summarize(
        selection: ContentSelection,
        per_type: dict[ContentType, _TypeSelection]
    ) -> SelectionSummary:
        selected = selection.all_items()
        source_counts = Counter(item.source for item in selected if item.source)

        return SelectionSummary(
            total_evaluated=sum(chosen.evaluated for chosen in per_type.values()),
            total_selected=len(selected),
            average_quality=round(sum(item.overall for item in selected) / len(selected)) if selected else 0,
            top_sources=[source for source, _ in source_counts.most_common(3)],
            category_breakdown={
                category: len(items) for category, items in selection.by_category.items()
            },
            below_threshold=sum(chosen.below_threshold for chosen in per_type.values()),
            duplicates_removed=sum(chosen.duplicates_removed for chosen in per_type.values()),
            invalid_count=sum(chosen.invalid_count for chosen in per_type.values()),
            clusters={
                content_type: chosen.clusters
                for content_type, chosen in per_type.items() if chosen.clusters is not None
            },
        )


async def select_best_content(
    store: ContentStore,
    config: SelectionConfig | None = None,
    now: datetime | None = None
) -> ContentSelection:
    """Convenience function to run content selection."""
    return await ContentSelector(store, config).select(now)
