"""Retry with exponential backoff, guarded by the circuit breaker."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from ..config import RetryConfig
from ..errors import CircuitOpenError
from ..logging import get_logger
from .circuit import CircuitBreakerRegistry, CircuitStatus, get_circuit_registry

logger = get_logger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation. Never raised, always returned."""
    result: T | None
    retries: int
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    source_id: str,
    config: RetryConfig | None = None,
    circuits: CircuitBreakerRegistry | None = None,
    sleep: Sleeper = asyncio.sleep,
    now: datetime | None = None,
) -> RetryResult[T]:
    """Run an async operation with retry/backoff and circuit breaking.

    An open circuit fails immediately without calling the operation. A
    half-open circuit allows a single probe attempt. Otherwise the
    operation runs once plus up to ``max_retries`` retries, sleeping
    ``min(base_delay * multiplier**attempt, max_delay)`` between attempts.

    Args:
        operation: Zero-argument coroutine function
        source_id: Source whose circuit guards the call
        config: Retry schedule
        circuits: Circuit breaker registry
        sleep: Awaitable sleep function
        now: Reference time for circuit decisions

    Returns:
        Result, number of retries performed and last error message
    """
    config = config or RetryConfig()
    circuits = circuits or get_circuit_registry()

    if not circuits.allow_request(source_id, now):
        error = CircuitOpenError(source_id)
        logger.warning("Call skipped, circuit open", source_id=source_id)
        return RetryResult(result=None, retries=0, error=str(error))

    probing = circuits.get_state(source_id, now) == CircuitStatus.HALF_OPEN
    max_retries = 0 if probing else config.max_retries
    last_error = "Unknown error"
    retries = 0

    for attempt in range(max_retries + 1):
        try:
            result = await operation()
        except Exception as e:
            last_error = str(e) or e.__class__.__name__
            retries = attempt
            if attempt < max_retries:
                delay = config.delay_for(attempt)
                logger.warning(
                    "Retry attempt failed",
                    source_id=source_id,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=last_error
                )
                await sleep(delay)
            continue

        circuits.record_success(source_id)
        return RetryResult(result=result, retries=attempt)

    circuits.record_failure(source_id, last_error, now)
    logger.error(
        "All retry attempts failed",
        source_id=source_id,
        retries=retries,
        error=last_error
    )
    return RetryResult(result=None, retries=retries, error=last_error)


@dataclass
class RefreshOutcome:
    """What an ingestion refresh reports back."""
    created: int
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def coerce(cls, value: "RefreshOutcome | Mapping[str, Any] | None") -> "RefreshOutcome":
        """Accept either an outcome or a ``{created, skipped?, errors?}`` mapping."""
        if isinstance(value, RefreshOutcome):
            return value
        if value is None:
            return cls(created=0)
        return cls(
            created=int(value.get("created", 0)),
            skipped=int(value.get("skipped") or 0),
            errors=list(value.get("errors") or []),
        )


RefreshFunction = Callable[[], Awaitable["RefreshOutcome | Mapping[str, Any]"]]


@dataclass
class RefreshRunResult:
    """Audit record of one guarded refresh run."""
    source_id: str
    success: bool
    items_processed: int
    items_valid: int
    items_invalid: int
    duration: float
    retry_count: int
    errors: list[str] = field(default_factory=list)


async def run_with_robustness(
    source_id: str,
    refresh: RefreshFunction,
    config: RetryConfig | None = None,
    circuits: CircuitBreakerRegistry | None = None,
    sleep: Sleeper = asyncio.sleep,
    now: datetime | None = None,
) -> RefreshRunResult:
    """Run an ingestion refresh under retry and circuit breaking.

    Args:
        source_id: Source being refreshed
        refresh: Zero-argument refresh coroutine function
        config: Retry schedule
        circuits: Circuit breaker registry
        sleep: Awaitable sleep function
        now: Reference time for circuit decisions

    Returns:
        Refresh run record; failures are reported, never raised
    """
    start = time.perf_counter()
    logger.info("Starting refresh", source_id=source_id)

    outcome = await with_retry(refresh, source_id, config, circuits, sleep, now)
    duration = time.perf_counter() - start

    if not outcome.success:
        return RefreshRunResult(
            source_id=source_id,
            success=False,
            items_processed=0,
            items_valid=0,
            items_invalid=0,
            duration=duration,
            retry_count=outcome.retries,
            errors=[outcome.error or "Unknown error"],
        )

    result = RefreshOutcome.coerce(outcome.result)
    logger.info(
        "Refresh succeeded",
        source_id=source_id,
        created=result.created,
        skipped=result.skipped,
        duration=duration
    )
    return RefreshRunResult(
        source_id=source_id,
        success=True,
        items_processed=result.created + result.skipped,
        items_valid=result.created,
        items_invalid=result.skipped,
        duration=duration,
        retry_count=outcome.retries,
        errors=result.errors,
    )
