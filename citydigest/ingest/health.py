"""Source health monitoring, freshness detection and self-healing."""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from ..config import HealthConfig, RetryConfig, SourceDefinition, SourceRegistry, get_source_registry
from ..logging import LoggingMixin, PerformanceLogger, log_error
from ..utils import hours_between, utc_now
from .circuit import CircuitBreakerRegistry, CircuitState, CircuitStatus, get_circuit_registry
from .retry import RefreshFunction, Sleeper, run_with_robustness
from .store import ContentStore

# Sort key for sources missing from the registry
UNKNOWN_PRIORITY = 99


class HealthStatus(str, Enum):
    """Overall system health classification."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class SourceFreshness:
    """Freshness of one source at a point in time."""
    source_id: str
    name: str
    is_stale: bool
    last_data_at: datetime | None
    threshold_hours: float
    hours_old: float | None
    item_count: int = 0
    item_count_24h: int = 0
    min_items_expected: int = 0
    priority: int = 3
    critical_for_digest: bool = False
    error: str | None = None

    @property
    def volume_too_low(self) -> bool:
        return self.min_items_expected > 0 and self.item_count_24h == 0

    @property
    def stale_reason(self) -> str | None:
        """Human-readable reason the source is stale, if it is."""
        if not self.is_stale:
            return None
        if self.error:
            return f"Freshness check failed: {self.error}"
        if self.last_data_at is None or self.hours_old is None:
            return "No data exists"
        if self.hours_old > self.threshold_hours:
            return f"Data is {self.hours_old:.0f}h old (threshold: {self.threshold_hours:g}h)"
        return f"No items in last 24h (expected at least {self.min_items_expected})"


@dataclass
class HealingAction:
    """Auditable record of one self-healing attempt."""
    source_id: str
    reason: str
    action_type: str = "refresh_data"
    executed: bool = True
    success: bool = False
    result: str | None = None
    duration: float | None = None
    retry_count: int = 0
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class HealthReport:
    """Snapshot of source health handed to the selection stage."""
    timestamp: datetime
    overall_health: int
    status: HealthStatus
    sources: list[SourceFreshness]
    ready_for_next_stage: bool
    health_before: int
    circuits: dict[str, CircuitState] = field(default_factory=dict)
    healing_actions: list[HealingAction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def stale_sources(self) -> list[SourceFreshness]:
        return [source for source in self.sources if source.is_stale]


def is_source_stale(
    hours_old: float | None,
    threshold_hours: float,
    item_count_24h: int = 0,
    min_items_expected: int = 0
) -> bool:
    """A source is stale when it has no data, old data, or no recent volume.

    Args:
        hours_old: Age of the newest record, None if no record exists
        threshold_hours: Maximum acceptable age
        item_count_24h: Records seen in the volume window
        min_items_expected: Records the source normally produces per window

    Returns:
        True if the source needs refreshing
    """
    if hours_old is None or hours_old > threshold_hours:
        return True
    return min_items_expected > 0 and item_count_24h == 0


def calculate_overall_health(freshness: list[SourceFreshness]) -> int:
    """Priority-weighted percentage of fresh sources.

    Priority 1 sources weigh 3, priority 3 sources weigh 1.

    Returns:
        0-100; 0 when no sources are known
    """
    if not freshness:
        return 0

    total_weight = 0
    healthy_weight = 0
    for source in freshness:
        weight = 4 - source.priority if 1 <= source.priority <= 3 else 1
        total_weight += weight
        if not source.is_stale:
            healthy_weight += weight

    return round(healthy_weight / total_weight * 100)


class SourceHealthMonitor(LoggingMixin):
    """Checks source freshness and refreshes stale sources."""

    def __init__(
        self,
        store: ContentStore,
        registry: SourceRegistry | None = None,
        refreshers: Mapping[str, RefreshFunction] | None = None,
        circuits: CircuitBreakerRegistry | None = None,
        config: HealthConfig | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        """Initialize monitor.

        Args:
            store: Content store answering freshness queries
            registry: Registered data sources
            refreshers: Refresh function per source id
            circuits: Circuit breaker registry guarding refresh calls
            config: Health and healing configuration
            retry_config: Retry schedule for refresh calls
            sleep: Awaitable sleep used for backoff and healing delays
        """
        self.store = store
        self.registry = registry or get_source_registry()
        self.refreshers = dict(refreshers or {})
        self.circuits = circuits or get_circuit_registry()
        self.config = config or HealthConfig()
        self.retry_config = retry_config or RetryConfig()
        self.sleep = sleep

    async def check_source_freshness(
        self,
        source: SourceDefinition,
        now: datetime | None = None
    ) -> SourceFreshness:
        """Check freshness and recent volume of one source."""
        now = now or utc_now()
        try:
            last_data_at = await self.store.latest_timestamp(source)
            item_count = await self.store.count_since(
                source, now - timedelta(hours=self.config.item_count_window_hours)
            )
            item_count_24h = await self.store.count_since(
                source, now - timedelta(hours=self.config.volume_window_hours)
            )
        except Exception as e:
            self.logger.error(
                "Freshness check failed",
                **log_error(e, context="check_source_freshness", source_id=source.id)
            )
            return SourceFreshness(
                source_id=source.id,
                name=source.name,
                is_stale=True,
                last_data_at=None,
                threshold_hours=source.threshold_hours,
                hours_old=None,
                min_items_expected=source.min_items_expected,
                priority=source.priority,
                critical_for_digest=source.critical_for_digest,
                error=str(e),
            )

        hours_old = None
        if last_data_at is not None:
            hours_old = round(max(0.0, hours_between(now, last_data_at)), 1)

        return SourceFreshness(
            source_id=source.id,
            name=source.name,
            is_stale=is_source_stale(
                hours_old, source.threshold_hours, item_count_24h, source.min_items_expected
            ),
            last_data_at=last_data_at,
            threshold_hours=source.threshold_hours,
            hours_old=hours_old,
            item_count=item_count,
            item_count_24h=item_count_24h,
            min_items_expected=source.min_items_expected,
            priority=source.priority,
            critical_for_digest=source.critical_for_digest,
        )

    async def check_freshness(self, now: datetime | None = None) -> list[SourceFreshness]:
        """Check every registered source concurrently."""
        now = now or utc_now()
        results = await asyncio.gather(
            *(self.check_source_freshness(source, now) for source in self.registry.sources)
        )
        stale = [r.source_id for r in results if r.is_stale]
        self.logger.info(
            "Freshness check complete",
            sources=len(results),
            stale=len(stale),
            stale_sources=stale
        )
        return list(results)

    async def heal_stale_data(
        self,
        freshness: list[SourceFreshness] | None = None,
        now: datetime | None = None
    ) -> list[HealingAction]:
        """Refresh stale sources, most critical first.

        Refreshes run sequentially under retry and circuit breaking with a
        pause between sources. Every stale source yields one action.

        Args:
            freshness: Precomputed freshness; checked now if omitted
            now: Reference time for the freshness check

        Returns:
            Healing actions in execution order; empty if nothing is stale
        """
        now = now or utc_now()
        if freshness is None:
            freshness = await self.check_freshness(now)

        stale = sorted(
            (source for source in freshness if source.is_stale),
            key=lambda source: source.priority if source.source_id in self.registry else UNKNOWN_PRIORITY,
        )
        if not stale:
            self.logger.info("All data sources are fresh, no healing needed")
            return []

        self.logger.warning("Stale sources found, healing", count=len(stale))
        actions: list[HealingAction] = []
        refreshed = 0

        for source in stale:
            reason = source.stale_reason or "Stale data"
            refresh = self.refreshers.get(source.source_id)
            if refresh is None:
                self.logger.warning("No refresh function registered", source_id=source.source_id)
                actions.append(HealingAction(
                    source_id=source.source_id,
                    reason=reason,
                    executed=False,
                    result="No refresh function registered",
                    timestamp=now,
                ))
                continue

            if refreshed:
                await self.sleep(self.config.heal_delay)
            refreshed += 1

            self.logger.info("Healing source", source_id=source.source_id, reason=reason)
            run = await run_with_robustness(
                source.source_id, refresh, self.retry_config, self.circuits, self.sleep, now
            )

            if run.success:
                result = f"Created {run.items_valid} items"
                if run.items_invalid:
                    result += f", skipped {run.items_invalid}"
            else:
                result = "; ".join(run.errors)

            actions.append(HealingAction(
                source_id=source.source_id,
                reason=reason,
                success=run.success,
                result=result,
                duration=run.duration,
                retry_count=run.retry_count,
                timestamp=now,
            ))

        succeeded = sum(1 for action in actions if action.success)
        self.logger.info("Healing complete", succeeded=succeeded, attempted=len(actions))
        return actions

    async def ensure_data_ready(self, now: datetime | None = None) -> tuple[bool, list[SourceFreshness], list[HealingAction]]:
        """Heal any stale source regardless of overall health, then re-check.

        Returns:
            Whether every source is fresh, the final freshness and the actions taken
        """
        now = now or utc_now()
        freshness = await self.check_freshness(now)
        if not any(source.is_stale for source in freshness):
            return True, freshness, []

        actions = await self.heal_stale_data(freshness, now)
        freshness = await self.check_freshness(now)
        return not any(source.is_stale for source in freshness), freshness, actions

    async def produce_health_report(
        self,
        auto_heal: bool | None = None,
        healing_threshold: float | None = None,
        now: datetime | None = None
    ) -> HealthReport:
        """Check sources, heal if health is low, and classify the result.

        Args:
            auto_heal: Run self-healing when health is below the threshold
            healing_threshold: Health percentage that triggers healing
            now: Reference time

        Returns:
            Health report for the selection stage
        """
        auto_heal = self.config.auto_heal if auto_heal is None else auto_heal
        threshold = self.config.healing_threshold if healing_threshold is None else healing_threshold

        now = now or utc_now()
        with PerformanceLogger("health_report", self.logger):
            freshness = await self.check_freshness(now)
            health_before = calculate_overall_health(freshness)
            actions: list[HealingAction] = []
            errors = [
                f"{source.name}: {source.error}" for source in freshness if source.error
            ]

            if auto_heal and health_before < threshold:
                actions = await self.heal_stale_data(freshness, now)
                freshness = await self.check_freshness(now)
                if any(action.executed for action in actions):
                    errors.extend(
                        f"{source.name} still stale after healing attempt"
                        for source in freshness if source.is_stale
                    )

            overall = calculate_overall_health(freshness)
            status = self._classify(freshness, overall)
            ready = self._ready_for_next_stage(freshness)
            circuits = self.circuits.states()

        report = HealthReport(
            timestamp=now,
            overall_health=overall,
            status=status,
            sources=freshness,
            ready_for_next_stage=ready,
            health_before=health_before,
            circuits=circuits,
            healing_actions=actions,
            errors=errors,
            recommendations=self._recommendations(freshness, circuits),
        )
        self.logger.info(
            "Health report produced",
            overall_health=overall,
            health_before=health_before,
            status=status.value,
            ready=ready,
            healing_actions=len(actions)
        )
        return report

    @staticmethod
    def _classify(freshness: list[SourceFreshness], overall: int) -> HealthStatus:
        if any(source.is_stale and source.critical_for_digest for source in freshness):
            return HealthStatus.CRITICAL
        if overall < 80 or any(source.is_stale for source in freshness):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def _ready_for_next_stage(self, freshness: list[SourceFreshness]) -> bool:
        # Primary content alone is enough to build a digest
        if not any(source.is_stale and source.critical_for_digest for source in freshness):
            return True
        primary = next(
            (s for s in freshness if s.source_id == self.config.primary_source_id), None
        )
        return primary is not None and not primary.is_stale and primary.item_count > 0

    @staticmethod
    def _recommendations(
        freshness: list[SourceFreshness],
        circuits: dict[str, CircuitState]
    ) -> list[str]:
        recommendations = []
        for source in freshness:
            if not source.is_stale:
                continue
            if source.hours_old is None:
                recommendations.append(f"Refresh {source.name}: no data")
            else:
                recommendations.append(f"Refresh {source.name}: data is {source.hours_old:.0f}h old")
        for source_id, circuit in circuits.items():
            if circuit.state == CircuitStatus.OPEN:
                recommendations.append(f"{source_id}: circuit breaker open, retrying after cooldown")
        return recommendations
