"""Source health monitoring and the content store contract."""

from .circuit import CircuitBreakerRegistry, CircuitState, CircuitStatus, get_circuit_registry
from .health import (
    HealingAction,
    HealthReport,
    HealthStatus,
    SourceFreshness,
    SourceHealthMonitor,
    calculate_overall_health,
    is_source_stale,
)
from .retry import RefreshOutcome, RefreshRunResult, RetryResult, run_with_robustness, with_retry
from .store import ContentStore, InMemoryContentStore
from .validators import ValidationResult, validate_alert_event, validate_item, validate_news_article

__all__ = [
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStatus",
    "get_circuit_registry",
    "HealingAction",
    "HealthReport",
    "HealthStatus",
    "SourceFreshness",
    "SourceHealthMonitor",
    "calculate_overall_health",
    "is_source_stale",
    "RefreshOutcome",
    "RefreshRunResult",
    "RetryResult",
    "run_with_robustness",
    "with_retry",
    "ContentStore",
    "InMemoryContentStore",
    "ValidationResult",
    "validate_alert_event",
    "validate_item",
    "validate_news_article",
]
