"""
Cross-type curation of selected content.

News, alerts, deals and events that describe the same thing collapse to a
single item (exact key first, then fuzzy title similarity). Survivors are
balanced across categories: one item per category in priority order, then
the remaining slots by score, never exceeding the per-category or total
caps. The narrative collaborator explains why the top items matter.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from .config import CurationConfig
from .errors import OrchestrationError, PipelineStage, Severity
from .logging import LoggingMixin, PerformanceLogger, log_error, log_processing_stage
from .models.items import CATEGORY_PRIORITY, ContentCategory, ScoredItem
from .models.narrative_client import NarrativeGenerator
from .processing.dedupe import DroppedItem, dedupe_exact, dedupe_fuzzy
from .selection import ContentSelection

LOW_QUALITY_REASON = "Below quality threshold ({score} < {threshold})"


@dataclass
class CuratedItem:
    """A curated item with its optional explanation."""
    scored: ScoredItem
    why_care: str = ""

    @property
    def id(self) -> str:
        return self.scored.id

    @property
    def title(self) -> str:
        return self.scored.title

    @property
    def category(self) -> ContentCategory:
        return self.scored.category

    @property
    def overall(self) -> int:
        return self.scored.overall


@dataclass
class CurationStats:
    """Counts describing one curation run."""
    total_input: int = 0
    after_dedup: int = 0
    selected: int = 0
    duplicates_removed: int = 0
    low_quality_filtered: int = 0
    avg_relevance: int = 0


@dataclass
class CurationResult:
    """Balanced, deduplicated digest content."""
    items: list[CuratedItem] = field(default_factory=list)
    by_category: dict[ContentCategory, list[CuratedItem]] = field(default_factory=dict)
    dropped: list[DroppedItem] = field(default_factory=list)
    stats: CurationStats = field(default_factory=CurationStats)
    errors: list[OrchestrationError] = field(default_factory=list)


def balance_categories(
    items: Sequence[ScoredItem],
    max_per_category: int,
    max_total: int
) -> list[ScoredItem]:
    """Pick a category-diverse set of items.

    Items are grouped by category (capped at ``max_per_category``). The top
    item of each non-empty category is taken in priority order, then the
    remaining grouped items fill open slots by score.

    Args:
        items: Candidate items
        max_per_category: Cap for any single category
        max_total: Cap for the whole selection

    Returns:
        Selected items, highest overall score first
    """
    ranked = sorted(items, key=lambda item: item.overall, reverse=True)

    groups: dict[ContentCategory, list[ScoredItem]] = {category: [] for category in CATEGORY_PRIORITY}
    for item in ranked:
        group = groups[item.category]
        if len(group) < max_per_category:
            group.append(item)

    selected: list[ScoredItem] = []
    for category in CATEGORY_PRIORITY:
        if len(selected) >= max_total:
            break
        if groups[category]:
            selected.append(groups[category][0])

    chosen_ids = {id(item) for item in selected}
    remaining = [
        item for item in ranked
        if id(item) not in chosen_ids and item in groups[item.category]
    ]
    for item in remaining:
        if len(selected) >= max_total:
            break
        selected.append(item)

    return sorted(selected, key=lambda item: item.overall, reverse=True)


class ContentCurator(LoggingMixin):
    """Deduplicates across content types and balances categories."""

    def __init__(
        self,
        config: CurationConfig | None = None,
        narrative: NarrativeGenerator | None = None
    ):
        """Initialize curator.

        Args:
            config: Caps and thresholds
            narrative: Generator for "why you should care" text
        """
        self.config = config or CurationConfig()
        self.narrative = narrative

    async def curate(self, pool: ContentSelection | Sequence[ScoredItem]) -> CurationResult:
        """Curate a multi-type pool of selected items.

        Args:
            pool: Content selection or a flat list of scored items

        Returns:
            Curation result; narrative failures are recorded, not raised
        """
        items = pool.all_items() if isinstance(pool, ContentSelection) else list(pool)
        result = CurationResult()
        result.stats.total_input = len(items)

        with PerformanceLogger("curation", self.logger):
            threshold = self.config.min_quality_score
            qualified = []
            for item in items:
                if item.overall < threshold:
                    result.dropped.append(DroppedItem(
                        item=item,
                        reason=LOW_QUALITY_REASON.format(score=item.overall, threshold=threshold),
                    ))
                else:
                    qualified.append(item)
            result.stats.low_quality_filtered = len(items) - len(qualified)

            ranked = sorted(qualified, key=lambda item: item.overall, reverse=True)
            exact = dedupe_exact(ranked)
            fuzzy = dedupe_fuzzy(exact.kept, self.config.fuzzy_threshold)
            result.dropped.extend(exact.dropped + fuzzy.dropped)
            result.stats.after_dedup = len(fuzzy.kept)
            result.stats.duplicates_removed = len(exact.dropped) + len(fuzzy.dropped)

            balanced = balance_categories(
                fuzzy.kept, self.config.max_per_category, self.config.max_total
            )
            result.items = [CuratedItem(scored=item) for item in balanced]

            if self.config.generate_why_care and self.narrative is not None and result.items:
                await self._attach_why_care(result)

            result.by_category = {category: [] for category in CATEGORY_PRIORITY}
            for curated in result.items:
                result.by_category[curated.category].append(curated)

            result.stats.selected = len(result.items)
            if result.items:
                result.stats.avg_relevance = round(
                    sum(c.scored.scores.relevance for c in result.items) / len(result.items)
                )

        self.logger.info(
            "Curation complete",
            **log_processing_stage(
                "curation",
                result.stats.total_input,
                result.stats.selected,
                duplicates_removed=result.stats.duplicates_removed,
            )
        )
        return result

    async def _attach_why_care(self, result: CurationResult) -> None:
        top = result.items[:self.config.why_care_limit]
        if not top:
            return
        try:
            explanations = await self.narrative.generate_why_care([c.scored for c in top])
        except Exception as e:
            self.logger.warning(
                "Why-care generation failed",
                **log_error(e, context="curation")
            )
            result.errors.append(OrchestrationError.from_exception(
                PipelineStage.CURATION, e, severity=Severity.WARNING, recoverable=True
            ))
            return

        for curated, explanation in zip(top, explanations):
            curated.why_care = explanation or ""


async def curate_content(
    pool: ContentSelection | Sequence[ScoredItem],
    config: CurationConfig | None = None,
    narrative: NarrativeGenerator | None = None
) -> CurationResult:
    """Convenience function to curate selected content."""
    return await ContentCurator(config, narrative).curate(pool)
