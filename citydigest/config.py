"""Configuration management for the City Digest curation pipeline."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models.items import ContentCategory, ContentType

# Staleness threshold implied by each update cadence
EXPECTED_FREQUENCY_HOURS: dict[str, float] = {
    "realtime": 1.0,
    "hourly": 2.0,
    "daily": 26.0,
    "weekly": 170.0,
}

DEFAULT_SOURCES_FILE = Path(__file__).with_name("sources.yaml")


class StageConfig(BaseModel):
    """Immutable, validated configuration shared by every pipeline stage."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def merge_with_defaults(cls, overrides: dict[str, Any] | None = None):
        """Build a config from defaults plus the given overrides.

        Args:
            overrides: Partial mapping of field values

        Returns:
            Fully-specified config instance

        Raises:
            ConfigurationError: If an override is unknown or invalid
        """
        try:
            return cls(**(overrides or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}: {e}") from e


class RetryConfig(StageConfig):
    """Retry/backoff schedule for source refresh calls."""
    max_retries: int = Field(3, ge=0)
    base_delay: float = Field(1.0, ge=0, description="Seconds before the first retry")
    max_delay: float = Field(30.0, ge=0)
    multiplier: float = Field(2.0, ge=1)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given zero-based failed attempt."""
        return min(self.base_delay * self.multiplier ** attempt, self.max_delay)


class CircuitConfig(StageConfig):
    """Circuit breaker thresholds."""
    failure_threshold: int = Field(5, ge=1)
    reset_timeout: float = Field(300.0, ge=0, description="Seconds an open circuit waits")
    half_open_requests: int = Field(1, ge=1)


class HealthConfig(StageConfig):
    """Source health monitoring and self-healing."""
    auto_heal: bool = True
    healing_threshold: float = Field(50.0, ge=0, le=100)
    heal_delay: float = Field(0.5, ge=0, description="Seconds between healing refreshes")
    item_count_window_hours: float = Field(48.0, gt=0)
    volume_window_hours: float = Field(24.0, gt=0)
    primary_source_id: str = "news"


class SelectionConfig(StageConfig):
    """Content selection caps and filters."""
    max_news: int = Field(5, ge=0)
    max_alerts: int = Field(3, ge=0)
    max_deals: int = Field(3, ge=0)
    max_events: int = Field(4, ge=0)
    min_quality_score: int = Field(40, ge=0, le=100)
    lookback_hours: float = Field(48.0, gt=0)
    fetch_multiplier: int = Field(3, ge=1)
    use_semantic: bool = False
    cluster_threshold: float = 0.85
    drop_invalid: bool = False
    categories: tuple[ContentCategory, ...] | None = None

    @field_validator("cluster_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("Threshold must be between 0 and 1")
        return v

    def cap_for(self, content_type: ContentType) -> int:
        """Maximum number of selected items for a content type."""
        return {
            ContentType.NEWS: self.max_news,
            ContentType.ALERT: self.max_alerts,
            ContentType.DEAL: self.max_deals,
            ContentType.EVENT: self.max_events,
        }[content_type]


class CurationConfig(StageConfig):
    """Cross-type curation and category balancing."""
    max_per_category: int = Field(3, ge=1)
    max_total: int = Field(12, ge=1)
    min_quality_score: int = Field(40, ge=0, le=100)
    fuzzy_threshold: float = 0.7
    generate_why_care: bool = True
    why_care_limit: int = Field(5, ge=0)

    @field_validator("fuzzy_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("Threshold must be between 0 and 1")
        return v


class PersonalizationConfig(StageConfig):
    """Per-user re-scoring weights."""
    neighborhood_boost: int = Field(30, ge=0)
    borough_boost: int = Field(15, ge=0)
    commute_boost: int = Field(25, ge=0)
    interest_factor: float = Field(0.3, ge=0)
    overall_weight: float = Field(0.6, ge=0, le=1)
    personal_weight: float = Field(0.4, ge=0, le=1)


class OrchestrationConfig(StageConfig):
    """Pipeline-level switches plus every stage's configuration."""
    enable_curation: bool = True
    enable_personalization: bool = False
    skip_summarization: bool = False
    abort_on_critical: bool = True
    health: HealthConfig = Field(default_factory=HealthConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit: CircuitConfig = Field(default_factory=CircuitConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    curation: CurationConfig = Field(default_factory=CurationConfig)
    personalization: PersonalizationConfig = Field(default_factory=PersonalizationConfig)


class SourceDefinition(BaseModel):
    """A registered upstream data source."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    content_type: ContentType
    module: str | None = None
    expected_frequency: Literal["realtime", "hourly", "daily", "weekly"] = "daily"
    freshness_threshold_hours: float | None = Field(None, gt=0)
    priority: int = Field(3, ge=1, le=3)
    critical_for_digest: bool = False
    min_items_expected: int = Field(0, ge=0)

    @property
    def threshold_hours(self) -> float:
        """Hours after which the source's newest record counts as stale."""
        if self.freshness_threshold_hours is not None:
            return self.freshness_threshold_hours
        return EXPECTED_FREQUENCY_HOURS[self.expected_frequency]


class Settings(BaseSettings):
    """Main application settings."""

    # ── Narrative Generation ───────────────────────────────────────────────
    openai_api_key: str | None = Field(None, description="OpenAI API key for narrative generation")
    narrative_model: str = Field("gpt-4o-mini", description="Chat model for narrative text")
    narrative_temperature: float = Field(0.4, description="Sampling temperature")
    narrative_max_tokens: int = Field(1024, description="Maximum completion tokens")
    narrative_timeout_seconds: int = Field(40, description="Narrative request timeout")
    narrative_retry_attempts: int = Field(2, description="Retries per narrative request")

    # ── Operational Mode ───────────────────────────────────────────────────
    mock: bool = Field(False, description="Use mock narrative client")

    # ── Source Registry ────────────────────────────────────────────────────
    sources_file: Path | None = Field(None, description="Override for the packaged source registry")

    # ── Processing Defaults ────────────────────────────────────────────────
    min_quality_score: int = Field(40, description="Minimum overall score for selection")
    fuzzy_title_threshold: float = Field(0.7, description="Jaccard threshold for fuzzy duplicates")
    cluster_threshold: float = Field(0.85, description="Cosine threshold for topic clusters")
    healing_threshold: float = Field(50.0, description="Health percentage that triggers self-healing")

    # ── Logging ────────────────────────────────────────────────────────────
    log_level: str = Field("INFO", description="Log level")
    json_logging: bool = Field(True, description="Enable JSON logging")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("fuzzy_title_threshold", "cluster_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate similarity thresholds."""
        if not 0 <= v <= 1:
            raise ValueError("Threshold must be between 0 and 1")
        return v

    @field_validator("min_quality_score", "healing_threshold")
    @classmethod
    def validate_score(cls, v: float) -> float:
        """Validate 0-100 score thresholds."""
        if not 0 <= v <= 100:
            raise ValueError("Score threshold must be between 0 and 100")
        return v

    def orchestration_config(self, overrides: dict[str, Any] | None = None) -> OrchestrationConfig:
        """Derive a pipeline config whose defaults come from these settings."""
        base: dict[str, Any] = {
            "health": {"healing_threshold": self.healing_threshold},
            "selection": {
                "min_quality_score": self.min_quality_score,
                "cluster_threshold": self.cluster_threshold,
            },
            "curation": {
                "min_quality_score": self.min_quality_score,
                "fuzzy_threshold": self.fuzzy_title_threshold,
            },
        }
        for key, value in (overrides or {}).items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = {**base[key], **value}
            else:
                base[key] = value
        return OrchestrationConfig.merge_with_defaults(base)


class SourceRegistry:
    """Data source registry loader."""

    def __init__(self, config_path: str | Path | None = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_SOURCES_FILE
        self._sources: dict[str, SourceDefinition] = {}
        self.load_config()

    def load_config(self) -> None:
        """Load source definitions from the YAML registry file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Source registry file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        try:
            sources = [SourceDefinition(**entry) for entry in data.get("sources", [])]
        except ValidationError as e:
            raise ConfigurationError(f"Invalid source registry {self.config_path}: {e}") from e

        self._sources = {}
        for source in sources:
            if source.id in self._sources:
                raise ConfigurationError(f"Duplicate source id: {source.id}")
            self._sources[source.id] = source

    @classmethod
    def from_sources(cls, sources: list[SourceDefinition]) -> "SourceRegistry":
        """Build a registry from in-memory definitions."""
        registry = cls.__new__(cls)
        registry.config_path = None
        registry._sources = {source.id: source for source in sources}
        return registry

    @property
    def sources(self) -> list[SourceDefinition]:
        return list(self._sources.values())

    def get(self, source_id: str) -> SourceDefinition | None:
        return self._sources.get(source_id)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._sources

    def __len__(self) -> int:
        return len(self._sources)


# Global instances
settings = Settings()
_source_registry: SourceRegistry | None = None


def get_settings() -> Settings:
    """Get application settings."""
    return settings


def get_source_registry() -> SourceRegistry:
    """Get the process-wide source registry, loading it on first use."""
    global _source_registry
    if _source_registry is None:
        _source_registry = SourceRegistry(settings.sources_file)
    return _source_registry


def validate_config(settings: Settings) -> bool:
    """Validate configuration completeness."""
    try:
        if not settings.mock and not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when not in mock mode")

        registry = SourceRegistry(settings.sources_file)
        if len(registry) == 0:
            raise ValueError("Source registry is empty")

        settings.orchestration_config()
        return True

    except (ValueError, FileNotFoundError, ConfigurationError) as e:
        print(f"Configuration validation failed: {e}")
        return False


if __name__ == "__main__":
    if validate_config(get_settings()):
        print("✅ Configuration is valid")
    else:
        print("❌ Configuration validation failed")
        exit(1)
