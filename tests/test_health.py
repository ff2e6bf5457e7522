"""Tests for source health monitoring and self-healing."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from citydigest.config import HealthConfig
from citydigest.ingest.circuit import CircuitStatus
from citydigest.ingest.health import (
    HealthStatus,
    SourceFreshness,
    SourceHealthMonitor,
    calculate_overall_health,
    is_source_stale,
)
from citydigest.ingest.store import InMemoryContentStore


def freshness(source_id: str, priority: int, is_stale: bool) -> SourceFreshness:
    return SourceFreshness(
        source_id=source_id,
        name=source_id.title(),
        is_stale=is_stale,
        last_data_at=None,
        threshold_hours=24,
        hours_old=None if is_stale else 1.0,
        priority=priority,
    )


class RecentButEmptyStore:
    """Store whose newest record is recent but which reports no volume."""

    def __init__(self, now):
        self.now = now

    async def latest_timestamp(self, source):
        return self.now - timedelta(minutes=30)

    async def count_since(self, source, since):
        return 0

    async def fetch_candidates(self, content_type, since, limit):
        return []


class BrokenStore:
    """Store whose freshness queries always fail."""

    async def latest_timestamp(self, source):
        raise ConnectionError("database unavailable")

    async def count_since(self, source, since):
        raise ConnectionError("database unavailable")

    async def fetch_candidates(self, content_type, since, limit):
        raise ConnectionError("database unavailable")


class TestStaleness:
    """Test staleness and health calculations."""

    @pytest.mark.parametrize("hours_old,threshold,count,expected_min,stale", [
        (None, 24, 0, 0, True),
        (30, 24, 10, 5, True),
        (1, 24, 0, 5, True),
        (1, 24, 3, 5, False),
        (1, 24, 0, 0, False),
        (24, 24, 1, 1, False),
    ])
    def test_is_source_stale(self, hours_old, threshold, count, expected_min, stale):
        assert is_source_stale(hours_old, threshold, count, expected_min) is stale

    def test_health_of_no_sources(self):
        assert calculate_overall_health([]) == 0

    def test_health_is_priority_weighted(self):
        sources = [freshness("news", 1, False), freshness("parks", 3, True)]
        assert calculate_overall_health(sources) == 75

        sources = [freshness("news", 1, True), freshness("parks", 3, False)]
        assert calculate_overall_health(sources) == 25

    def test_stale_reasons(self):
        assert freshness("news", 1, True).stale_reason == "No data exists"
        assert freshness("news", 1, False).stale_reason is None

        old = SourceFreshness(
            source_id="news", name="News", is_stale=True, last_data_at=None,
            threshold_hours=12, hours_old=30.0,
        )
        assert old.stale_reason == "Data is 30h old (threshold: 12h)"


class TestFreshnessCheck:
    """Test per-source freshness checks."""

    @pytest.mark.asyncio
    async def test_all_fresh(self, fresh_store, registry, circuits, now):
        monitor = SourceHealthMonitor(fresh_store, registry, circuits=circuits)

        results = await monitor.check_freshness(now)

        assert len(results) == len(registry)
        assert not any(result.is_stale for result in results)
        news = next(result for result in results if result.source_id == "news")
        assert news.hours_old == 0.2
        assert news.item_count == 5
        assert news.item_count_24h == 5

    @pytest.mark.asyncio
    async def test_recent_data_without_volume_is_stale(self, registry, circuits, now):
        monitor = SourceHealthMonitor(RecentButEmptyStore(now), registry, circuits=circuits)

        results = {result.source_id: result for result in await monitor.check_freshness(now)}

        assert results["news"].is_stale
        assert results["news"].stale_reason == "No items in last 24h (expected at least 5)"
        # Event-driven sources expect no volume
        assert not results["mta"].is_stale

    @pytest.mark.asyncio
    async def test_store_failure_marks_source_stale(self, registry, circuits, now):
        monitor = SourceHealthMonitor(BrokenStore(), registry, circuits=circuits)

        [news] = [r for r in await monitor.check_freshness(now) if r.source_id == "news"]

        assert news.is_stale
        assert news.error == "database unavailable"
        assert news.stale_reason == "Freshness check failed: database unavailable"


class TestHealing:
    """Test self-healing of stale sources."""

    @pytest.mark.asyncio
    async def test_nothing_to_heal(self, fresh_store, registry, circuits, sleeps, now):
        refresh = AsyncMock(return_value={"created": 1})
        monitor = SourceHealthMonitor(
            fresh_store, registry, {"news": refresh}, circuits, sleep=sleeps
        )

        actions = await monitor.heal_stale_data(now=now)

        assert actions == []
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_heals_in_priority_order(self, registry, circuits, sleeps, now):
        refreshers = {
            "parks": AsyncMock(return_value={"created": 2, "skipped": 1}),
            "news": AsyncMock(return_value={"created": 3}),
        }
        monitor = SourceHealthMonitor(
            InMemoryContentStore(), registry, refreshers, circuits, sleep=sleeps
        )

        actions = await monitor.heal_stale_data(now=now)

        assert [action.source_id for action in actions] == [
            "news", "mta", "311", "sample-sales", "housing", "air-quality", "dining", "parks"
        ]
        by_id = {action.source_id: action for action in actions}
        assert by_id["news"].success
        assert by_id["news"].result == "Created 3 items"
        assert by_id["news"].reason == "No data exists"
        assert by_id["parks"].result == "Created 2 items, skipped 1"
        assert not by_id["mta"].executed
        assert by_id["mta"].result == "No refresh function registered"
        # Pause only between executed refreshes
        assert sleeps.calls == [HealthConfig().heal_delay]

    @pytest.mark.asyncio
    async def test_failed_refresh_is_recorded(self, registry, circuits, fast_retry, sleeps, now):
        refresh = AsyncMock(side_effect=RuntimeError("api down"))
        monitor = SourceHealthMonitor(
            InMemoryContentStore(), registry, {"news": refresh}, circuits,
            retry_config=fast_retry, sleep=sleeps
        )

        actions = await monitor.heal_stale_data(now=now)

        news = actions[0]
        assert news.executed
        assert not news.success
        assert news.result == "api down"
        assert news.retry_count == 2
        assert sleeps.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_circuit_follows_reference_clock(self, registry, circuits, sleeps, now):
        for _ in range(3):
            circuits.record_failure("news", "timeout", now)
        refresh = AsyncMock(return_value={"created": 4})
        monitor = SourceHealthMonitor(
            InMemoryContentStore(), registry, {"news": refresh}, circuits, sleep=sleeps
        )

        during_cooldown = now + timedelta(seconds=30)
        [skipped] = [a for a in await monitor.heal_stale_data(now=during_cooldown) if a.executed]
        assert not skipped.success
        assert skipped.result == "Circuit breaker OPEN for news"
        assert skipped.timestamp == during_cooldown
        refresh.assert_not_awaited()

        after_cooldown = now + timedelta(minutes=2)
        [recovered] = [a for a in await monitor.heal_stale_data(now=after_cooldown) if a.executed]
        assert recovered.success
        assert recovered.result == "Created 4 items"
        assert circuits.get_state("news", after_cooldown) == CircuitStatus.CLOSED


class TestHealthReport:
    """Test the health report handed to selection."""

    @pytest.mark.asyncio
    async def test_healthy_report(self, fresh_store, registry, circuits, now):
        monitor = SourceHealthMonitor(fresh_store, registry, circuits=circuits)

        report = await monitor.produce_health_report(now=now)

        assert report.overall_health == 100
        assert report.health_before == 100
        assert report.status == HealthStatus.HEALTHY
        assert report.ready_for_next_stage
        assert report.healing_actions == []
        assert report.recommendations == []

    @pytest.mark.asyncio
    async def test_empty_store_is_critical(self, registry, circuits, now):
        monitor = SourceHealthMonitor(InMemoryContentStore(), registry, circuits=circuits)

        report = await monitor.produce_health_report(auto_heal=False, now=now)

        assert report.overall_health == 0
        assert report.status == HealthStatus.CRITICAL
        assert not report.ready_for_next_stage
        assert len(report.stale_sources) == len(registry)
        assert "Refresh NYC News: no data" in report.recommendations

    @pytest.mark.asyncio
    async def test_primary_source_keeps_pipeline_ready(self, fresh_store, registry, circuits, now):
        monitor = SourceHealthMonitor(fresh_store, registry, circuits=circuits)

        report = await monitor.produce_health_report(auto_heal=False, now=now + timedelta(hours=7))

        # Only sources with short thresholds have aged out
        stale = {source.source_id for source in report.stale_sources}
        assert stale == {"mta", "311", "air-quality"}
        assert report.overall_health == 57
        assert report.status == HealthStatus.CRITICAL
        assert report.ready_for_next_stage

    @pytest.mark.asyncio
    async def test_auto_heal_refreshes_primary_source(self, registry, circuits, sleeps, make_news, now):
        store = InMemoryContentStore()

        async def refresh_news():
            for index in range(5):
                store.add("news", make_news(f"Fresh story {index} from Queens"))
            return {"created": 5}

        monitor = SourceHealthMonitor(
            store, registry, {"news": refresh_news}, circuits, sleep=sleeps
        )

        report = await monitor.produce_health_report(now=now)

        assert report.health_before == 0
        assert report.overall_health == 21
        assert report.ready_for_next_stage
        assert report.healing_actions[0].result == "Created 5 items"
        assert "MTA Alerts still stale after healing attempt" in report.errors
        assert "NYC News still stale after healing attempt" not in report.errors

    @pytest.mark.asyncio
    async def test_no_healing_above_threshold(self, fresh_store, registry, circuits, now):
        refresh = AsyncMock(return_value={"created": 1})
        monitor = SourceHealthMonitor(fresh_store, registry, {"mta": refresh}, circuits)

        await monitor.produce_health_report(now=now + timedelta(hours=7), healing_threshold=50)

        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_errors_reported(self, registry, circuits, now):
        monitor = SourceHealthMonitor(BrokenStore(), registry, circuits=circuits)

        report = await monitor.produce_health_report(auto_heal=False, now=now)

        assert "NYC News: database unavailable" in report.errors

    @pytest.mark.asyncio
    async def test_open_circuit_recommendation(self, fresh_store, registry, circuits, now):
        for _ in range(3):
            circuits.record_failure("dining", "timeout")
        monitor = SourceHealthMonitor(fresh_store, registry, circuits=circuits)

        report = await monitor.produce_health_report(now=now)

        assert "dining: circuit breaker open, retrying after cooldown" in report.recommendations

    @pytest.mark.asyncio
    async def test_ensure_data_ready(self, fresh_store, registry, circuits, now):
        monitor = SourceHealthMonitor(fresh_store, registry, circuits=circuits)

        ready, results, actions = await monitor.ensure_data_ready(now)

        assert ready
        assert actions == []
        assert len(results) == len(registry)
