import asyncio
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import click
import orjson

from .config import OrchestrationConfig, Settings, get_settings, get_source_registry, validate_config
from .curation import ContentCurator, CurationResult
from .errors import OrchestrationError, PipelineStage, Severity
from .ingest.circuit import get_circuit_registry
from .ingest.health import HealthReport, SourceHealthMonitor
from .ingest.retry import RefreshFunction
from .ingest.store import ContentStore, InMemoryContentStore
from .logging import PerformanceLogger, get_logger, log_error, setup_logging
from .models.items import ScoredItem
from .models.narrative_client import NarrativeGenerator, create_narrative_client
from .personalization import (
    ContentPersonalizer,
    InMemoryProfileProvider,
    PersonalizationResult,
    ProfileProvider,
    UserProfile,
)
from .selection import ContentSelection, ContentSelector
from .utils import utc_now

logger = get_logger(__name__)

LOW_HEALTH_THRESHOLD = 30


@dataclass
class OrchestrationMetrics:
    """Timing and counts aggregated across stages."""
    total_duration: float = 0.0
    stage_durations: dict[str, float] = field(default_factory=dict)
    health_before: int = 0
    health_after: int = 0
    healing_executed: int = 0
    healing_succeeded: int = 0
    items_evaluated: int = 0
    items_selected: int = 0
    avg_quality: int = 0
    duplicates_removed: int = 0
    items_curated: int = 0
    items_boosted: int = 0
    items_filtered: int = 0
    llm_call_count: int = 0


@dataclass
class OrchestrationResult:
    """Outcome of one pipeline run, including partial results."""
    success: bool = False
    health_report: HealthReport | None = None
    selection: ContentSelection | None = None
    curation: CurationResult | None = None
    personalization: PersonalizationResult | None = None
    digest: str | None = None
    digest_items: list[ScoredItem] = field(default_factory=list)
    errors: list[OrchestrationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metrics: OrchestrationMetrics = field(default_factory=OrchestrationMetrics)
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Summary suitable for JSON output."""
        why_care = {}
        if self.curation:
            why_care = {item.id: item.why_care for item in self.curation.items if item.why_care}

        return {
            "success": self.success,
            "aborted": self.aborted,
            "digest": self.digest,
            "items": [
                {
                    "id": item.id,
                    "type": item.content_type.value,
                    "title": item.title,
                    "category": item.category.value,
                    "overall": item.overall,
                    "why_care": why_care.get(item.id, ""),
                }
                for item in self.digest_items
            ],
            "health": {
                "overall": self.health_report.overall_health,
                "status": self.health_report.status.value,
                "ready_for_next_stage": self.health_report.ready_for_next_stage,
                "stale_sources": [s.source_id for s in self.health_report.stale_sources],
                "recommendations": self.health_report.recommendations,
            } if self.health_report else None,
            "errors": [
                {
                    "stage": error.stage.value,
                    "severity": error.severity.value,
                    "message": error.message,
                    "source_id": error.source_id,
                    "recoverable": error.recoverable,
                }
                for error in self.errors
            ],
            "warnings": self.warnings,
            "metrics": self.metrics,
        }


class PipelineOrchestrator:
    """Runs health check, selection, curation, personalization and summarization in order."""

    def __init__(
        self,
        monitor: SourceHealthMonitor,
        store: ContentStore,
        config: OrchestrationConfig | None = None,
        narrative: NarrativeGenerator | None = None,
        profiles: ProfileProvider | None = None
    ):
        """Initialize orchestrator.

        Args:
            monitor: Source health monitor for the health stage
            store: Content store for selection
            config: Stage toggles and per-stage configuration
            narrative: Narrative generator for why-care text and the digest
            profiles: Profile provider for personalization
        """
        self.monitor = monitor
        self.store = store
        self.config = config or OrchestrationConfig()
        self.narrative = narrative
        self.selector = ContentSelector(store, self.config.selection)
        self.curator = ContentCurator(self.config.curation, narrative)
        self.personalizer = ContentPersonalizer(profiles, self.config.personalization)

    async def run(self, user_id: str | None = None, now: datetime | None = None) -> OrchestrationResult:
        """Run the pipeline once.

        Stage failures never propagate. Required stages (health, selection)
        record critical errors and stop the run when ``abort_on_critical``
        is set; optional stages record recoverable errors and the run
        continues without their output.

        Args:
            user_id: Subscriber to personalize for
            now: Reference time for every stage

        Returns:
            Orchestration result with partial results for stages that ran
        """
        now = now or utc_now()
        result = OrchestrationResult()
        calls_before = self.narrative.call_count if self.narrative is not None else 0
        start_time = time.perf_counter()

        with PerformanceLogger("full_pipeline", logger):
            if await self._run_health(result, now) or await self._run_selection(result, now):
                result.aborted = True
                result.selection = result.selection or ContentSelection()
            else:
                if self.config.enable_curation:
                    await self._run_curation(result)
                if self.config.enable_personalization and user_id:
                    await self._run_personalization(result, user_id, now)
                result.digest_items = self._digest_items(result)
                await self._run_summarization(result)

        if self.narrative is not None:
            result.metrics.llm_call_count = self.narrative.call_count - calls_before
        result.metrics.total_duration = time.perf_counter() - start_time

        unrecovered = any(error.is_unrecovered_critical for error in result.errors)
        digest_done = result.digest is not None or self.config.skip_summarization
        result.success = not unrecovered and not result.aborted and digest_done

        logger.info(
            "Pipeline finished",
            success=result.success,
            aborted=result.aborted,
            errors=len(result.errors),
            warnings=len(result.warnings),
            duration=round(result.metrics.total_duration, 3)
        )
        return result

    def _critical(self, result: OrchestrationResult, stage: PipelineStage, error: Exception) -> bool:
        logger.error(f"{stage.value} stage failed", **log_error(error, context=stage.value))
        result.errors.append(OrchestrationError.from_exception(stage, error, severity=Severity.CRITICAL))
        return self.config.abort_on_critical

    async def _run_health(self, result: OrchestrationResult, now: datetime) -> bool:
        metrics = result.metrics
        try:
            with PerformanceLogger("health_check", logger) as perf:
                report = await self.monitor.produce_health_report(
                    auto_heal=self.config.health.auto_heal,
                    healing_threshold=self.config.health.healing_threshold,
                    now=now,
                )
        except Exception as e:
            return self._critical(result, PipelineStage.HEALTH, e)

        metrics.stage_durations[PipelineStage.HEALTH.value] = perf.duration
        result.health_report = report
        metrics.health_before = report.health_before
        metrics.health_after = report.overall_health
        executed = [action for action in report.healing_actions if action.executed]
        metrics.healing_executed = len(executed)
        metrics.healing_succeeded = sum(1 for action in executed if action.success)

        if report.overall_health < LOW_HEALTH_THRESHOLD:
            result.warnings.append(
                f"System health critically low: {report.overall_health}%. Digest may have limited content."
            )
        result.warnings.extend(report.errors)
        if not report.ready_for_next_stage:
            result.errors.append(OrchestrationError(
                stage=PipelineStage.HEALTH,
                severity=Severity.ERROR,
                message="Critical sources are stale and no primary content is available",
                recoverable=True,
            ))
        return False

    async def _run_selection(self, result: OrchestrationResult, now: datetime) -> bool:
        metrics = result.metrics
        try:
            with PerformanceLogger("content_selection", logger) as perf:
                selection = await self.selector.select(now)
        except Exception as e:
            result.selection = ContentSelection()
            result.warnings.append("No content met quality threshold. Check data sources.")
            return self._critical(result, PipelineStage.SELECTION, e)

        metrics.stage_durations[PipelineStage.SELECTION.value] = perf.duration
        result.selection = selection
        result.errors.extend(selection.errors)
        metrics.items_evaluated = selection.summary.total_evaluated
        metrics.items_selected = selection.summary.total_selected
        metrics.avg_quality = selection.summary.average_quality
        metrics.duplicates_removed = selection.summary.duplicates_removed

        if selection.summary.total_selected == 0:
            result.warnings.append("No content met quality threshold. Check data sources.")
        return False

    async def _run_curation(self, result: OrchestrationResult) -> None:
        try:
            with PerformanceLogger("curation", logger) as perf:
                curation = await self.curator.curate(result.selection)
        except Exception as e:
            logger.warning("Curation failed, continuing without it", **log_error(e, context="curation"))
            result.errors.append(OrchestrationError.from_exception(
                PipelineStage.CURATION, e, severity=Severity.ERROR, recoverable=True
            ))
            return

        result.metrics.stage_durations[PipelineStage.CURATION.value] = perf.duration
        result.curation = curation
        result.errors.extend(curation.errors)
        result.metrics.items_curated = curation.stats.selected
        result.metrics.duplicates_removed += curation.stats.duplicates_removed

    async def _run_personalization(self, result: OrchestrationResult, user_id: str, now: datetime) -> None:
        try:
            with PerformanceLogger("personalization", logger) as perf:
                personalization = await self.personalizer.personalize(result.selection, user_id, now)
        except Exception as e:
            logger.warning("Personalization failed, continuing without it", **log_error(e, context="personalization"))
            result.errors.append(OrchestrationError.from_exception(
                PipelineStage.PERSONALIZATION, e, severity=Severity.ERROR, recoverable=True
            ))
            return

        result.metrics.stage_durations[PipelineStage.PERSONALIZATION.value] = perf.duration
        result.personalization = personalization
        result.errors.extend(personalization.errors)
        result.metrics.items_boosted = personalization.boosted_count
        result.metrics.items_filtered = personalization.filtered_count

    async def _run_summarization(self, result: OrchestrationResult) -> None:
        if self.config.skip_summarization:
            logger.info("Skipping narrative summarization as configured")
            return
        if self.narrative is None:
            result.errors.append(OrchestrationError(
                stage=PipelineStage.SUMMARIZATION,
                severity=Severity.ERROR,
                message="No narrative generator configured",
            ))
            return

        try:
            with PerformanceLogger("summarization", logger) as perf:
                result.digest = await self.narrative.generate_digest(result.digest_items)
        except Exception as e:
            logger.error("Summarization failed", **log_error(e, context="summarization"))
            result.errors.append(OrchestrationError.from_exception(
                PipelineStage.SUMMARIZATION, e, severity=Severity.ERROR
            ))
            return

        result.metrics.stage_durations[PipelineStage.SUMMARIZATION.value] = perf.duration

    @staticmethod
    def _digest_items(result: OrchestrationResult) -> list[ScoredItem]:
        """Curated items if curation ran, else the selection, in personalized order if available."""
        if result.curation is not None:
            items = [curated.scored for curated in result.curation.items]
        elif result.selection is not None:
            items = result.selection.all_items()
        else:
            return []

        if result.personalization is None or not result.personalization.profile_found:
            return items

        ranked = {
            personalized.id: (index, personalized.filtered)
            for index, personalized in enumerate(result.personalization.items)
        }
        kept = [item for item in items if not ranked.get(item.id, (0, False))[1]]
        return sorted(kept, key=lambda item: ranked.get(item.id, (len(ranked), False))[0])


async def run_pipeline(
    store: ContentStore,
    settings: Settings | None = None,
    config: OrchestrationConfig | Mapping[str, Any] | None = None,
    narrative: NarrativeGenerator | None = None,
    profiles: ProfileProvider | None = None,
    user_id: str | None = None,
    now: datetime | None = None,
    refreshers: Mapping[str, RefreshFunction] | None = None
) -> OrchestrationResult:
    """Run the complete digest pipeline against a content store.

    Args:
        store: Content store answering freshness and candidate queries
        settings: The application settings
        config: Orchestration configuration, or overrides merged over the
            configuration built from settings
        narrative: Narrative generator; created from settings if omitted
        profiles: Profile provider for personalization
        user_id: Subscriber to personalize for
        now: Reference time
        refreshers: Refresh function per source id, used by self-healing

    Returns:
        Orchestration result
    """
    settings = settings or get_settings()
    if not isinstance(config, OrchestrationConfig):
        config = settings.orchestration_config(dict(config or {}))
    if narrative is None and not config.skip_summarization:
        narrative = create_narrative_client(mock=settings.mock, settings=settings)

    monitor = SourceHealthMonitor(
        store,
        registry=get_source_registry(),
        refreshers=refreshers,
        circuits=get_circuit_registry(config.circuit),
        config=config.health,
        retry_config=config.retry,
    )
    orchestrator = PipelineOrchestrator(monitor, store, config, narrative, profiles)
    return await orchestrator.run(user_id=user_id, now=now)


def load_fixture(path: Path) -> tuple[InMemoryContentStore, InMemoryProfileProvider]:
    """Load items and optional profiles from a JSON fixture file."""
    data = orjson.loads(path.read_bytes())
    if isinstance(data, list):
        return InMemoryContentStore.from_records(data), InMemoryProfileProvider()

    profiles = [UserProfile.from_record(record) for record in data.get("profiles", [])]
    return InMemoryContentStore.from_records(data.get("items", [])), InMemoryProfileProvider(profiles)


@click.command()
@click.argument("items", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=False)
@click.option("--mock", is_flag=True, help="Use the mock narrative client")
@click.option("--no-curation", is_flag=True, help="Skip the curation stage")
@click.option("--personalize", "user_id", help="Personalize the digest for this user id")
@click.option("--skip-summary", is_flag=True, help="Skip narrative summarization")
@click.option(
    "--output",
    "-o",
    type=click.File("wb"),
    default="-",
    help="Output file (default: stdout)",
)
@click.option("--log-level", default="ERROR", help="Log level")
@click.option("--verbose", is_flag=True, help="Show detailed progress information")
@click.option(
    "--validate-config",
    "validate_config_flag",
    is_flag=True,
    help="Validate configuration and exit",
)
def cli(
    items,
    mock,
    no_curation,
    user_id,
    skip_summary,
    output,
    log_level,
    verbose,
    validate_config_flag,
):
    """City Digest - curate a daily NYC digest from an items fixture."""
    actual_log_level = "INFO" if verbose else log_level
    setup_logging(log_level=actual_log_level, json_logging=False)

    try:
        settings = get_settings()
        if mock:
            settings.mock = True

        if validate_config_flag:
            if validate_config(settings):
                click.echo("Configuration is valid")
                sys.exit(0)
            else:
                click.echo("Configuration validation failed", err=True)
                sys.exit(1)

        if items is None:
            raise click.UsageError("ITEMS fixture file is required")

        if not skip_summary and not validate_config(settings):
            click.echo("Configuration validation failed. Use --validate-config for details.", err=True)
            sys.exit(1)

        config = settings.orchestration_config({
            "enable_curation": not no_curation,
            "enable_personalization": user_id is not None,
            "skip_summarization": skip_summary,
        })
        store, profiles = load_fixture(items)

        result = asyncio.run(run_pipeline(
            store,
            settings=settings,
            config=config,
            profiles=profiles,
            user_id=user_id,
        ))

        output.write(orjson.dumps(result.to_dict(), option=orjson.OPT_INDENT_2))
        output.write(b"\n")
        if not result.success:
            sys.exit(2)

    except click.UsageError:
        raise
    except Exception as e:
        logger.error("CLI execution failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
