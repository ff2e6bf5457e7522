"""Error types shared across the curation pipeline.

Exceptions are raised inside a stage; at the stage boundary they are
converted into ``OrchestrationError`` records so the orchestrator never
crashes on a single stage's failure.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class CityDigestError(Exception):
    """Base error for the curation pipeline."""
    pass


class ConfigurationError(CityDigestError):
    """Invalid or incomplete configuration."""
    pass


class CircuitOpenError(CityDigestError):
    """Raised when a source's circuit breaker refuses a call."""

    def __init__(self, source_id: str):
        self.source_id = source_id
        super().__init__(f"Circuit breaker OPEN for {source_id}")


class SourceFetchError(CityDigestError):
    """A content store could not deliver candidates for a content type."""
    pass


class NarrativeError(CityDigestError):
    """Narrative generation failed."""
    pass


class Severity(str, Enum):
    """Severity of an orchestration error."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class PipelineStage(str, Enum):
    """Stages of the curation pipeline, in execution order."""
    HEALTH = "health"
    SELECTION = "selection"
    CURATION = "curation"
    PERSONALIZATION = "personalization"
    SUMMARIZATION = "summarization"


@dataclass
class OrchestrationError:
    """A classified error raised by one pipeline stage."""
    stage: PipelineStage
    severity: Severity
    message: str
    source_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    recoverable: bool = False

    @classmethod
    def from_exception(
        cls,
        stage: PipelineStage,
        error: Exception,
        severity: Severity = Severity.ERROR,
        source_id: str | None = None,
        recoverable: bool = False,
    ) -> "OrchestrationError":
        """Build an error record from a caught exception."""
        return cls(
            stage=stage,
            severity=severity,
            message=f"{error.__class__.__name__}: {error}",
            source_id=source_id,
            recoverable=recoverable,
        )

    @property
    def is_unrecovered_critical(self) -> bool:
        return self.severity == Severity.CRITICAL and not self.recoverable
