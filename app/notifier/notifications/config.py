"""Immutable component configuration.

Settings are read once (pydantic-settings) and turned into frozen
dataclasses that are passed to each component. Components never read the
environment themselves.

Example:
    # From the environment
    config = PipelineConfig.from_settings(get_settings())

    # Named profile
    config = PipelineConfig.for_profile("high_volume")

    # Override one section
    config = dataclasses.replace(config, queue=QueueConfig(max_size=10))
"""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional

from notifier.notifications.models import GroupingStrategy
from notifier.resilience.backoff import BackoffPolicy

if TYPE_CHECKING:
    from notifier.configuration import Settings


@dataclass(frozen=True)
class QueueConfig:
    """Delivery queue behaviour.

    Attributes:
        max_size: Pending messages accepted before enqueue raises QueueFullError.
            Caps producer enqueues and requeue_failed only. A message coming
            back from a retry delay is always re-inserted at the head, so
            pending can briefly exceed max_size while retries are due.
        concurrency: Provider calls allowed in flight
        retry_delay_ms: Base delay for exponential backoff
        backoff_multiplier: Backoff growth factor
        max_retry_delay_ms: Cap for any computed backoff delay
        max_retries: Default retry budget for new messages
        processing_timeout_ms: Per-attempt provider timeout
        persistence_path: JSON snapshot file, None disables persistence
        persistence_interval_ms: Snapshot interval
        completed_dedup_window_ms: Window in which a completed id is refused
    """

    max_size: int = 1000
    concurrency: int = 3
    retry_delay_ms: int = 5000
    backoff_multiplier: float = 2.0
    max_retry_delay_ms: int = 60000
    max_retries: int = 3
    processing_timeout_ms: int = 30000
    persistence_path: Optional[str] = None
    persistence_interval_ms: int = 30000
    completed_dedup_window_ms: int = 300000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_size < 1:
            raise ValueError("max_size must be at least 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.processing_timeout_ms < 1:
            raise ValueError("processing_timeout_ms must be at least 1")
        if self.persistence_interval_ms < 1:
            raise ValueError("persistence_interval_ms must be at least 1")
        # Raises on inconsistent backoff values
        self.backoff()

    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay_ms=self.retry_delay_ms,
            multiplier=self.backoff_multiplier,
            max_delay_ms=self.max_retry_delay_ms,
        )


@dataclass(frozen=True)
class BatchConfig:
    enabled: bool = True
    max_batch_size: int = 5
    batch_timeout_ms: int = 60000
    grouping_strategy: GroupingStrategy = GroupingStrategy.PRIORITY_TIER
    min_score_for_batching: float = 6.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if self.batch_timeout_ms < 1:
            raise ValueError("batch_timeout_ms must be at least 1")
        if not isinstance(self.grouping_strategy, GroupingStrategy):
            # Accept the raw string form used in settings
            object.__setattr__(
                self, "grouping_strategy", GroupingStrategy(self.grouping_strategy)
            )


@dataclass(frozen=True)
class DeduplicationConfig:
    deduplication_window_ms: int = 300000
    similarity_threshold: float = 0.8
    max_history: int = 10000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.deduplication_window_ms < 0:
            raise ValueError("deduplication_window_ms must be non-negative")
        if not 0 < self.similarity_threshold <= 1:
            raise ValueError("similarity_threshold must be in (0, 1]")
        if self.max_history < 1:
            raise ValueError("max_history must be at least 1")


@dataclass(frozen=True)
class HistoryConfig:
    max_entries: int = 10000
    retention_days: float = 30
    persistence_path: Optional[str] = None
    persistence_interval_ms: int = 60000
    stats_cache_ttl_ms: int = 300000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if self.retention_days <= 0:
            raise ValueError("retention_days must be positive")
        if self.persistence_interval_ms < 1:
            raise ValueError("persistence_interval_ms must be at least 1")
        if self.stats_cache_ttl_ms < 0:
            raise ValueError("stats_cache_ttl_ms must be non-negative")


@dataclass(frozen=True)
class PipelineConfig:
    """Complete pipeline configuration."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    dedup: DeduplicationConfig = field(default_factory=DeduplicationConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    provider_name: Optional[str] = None
    health_check_interval_ms: int = 60000

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PipelineConfig":
        queue = settings.queue
        batch = settings.batch
        dedup = settings.dedup
        history = settings.history
        return cls(
            queue=QueueConfig(
                max_size=queue.max_size,
                concurrency=queue.concurrency,
                retry_delay_ms=queue.retry_delay_ms,
                backoff_multiplier=queue.backoff_multiplier,
                max_retry_delay_ms=queue.max_retry_delay_ms,
                max_retries=queue.max_retries,
                processing_timeout_ms=queue.processing_timeout_ms,
                persistence_path=queue.persistence_path,
                persistence_interval_ms=queue.persistence_interval_ms,
                completed_dedup_window_ms=queue.completed_dedup_window_ms,
            ),
            batch=BatchConfig(
                enabled=batch.enabled,
                max_batch_size=batch.max_batch_size,
                batch_timeout_ms=batch.batch_timeout_ms,
                grouping_strategy=GroupingStrategy(batch.grouping_strategy),
                min_score_for_batching=batch.min_score_for_batching,
            ),
            dedup=DeduplicationConfig(
                deduplication_window_ms=dedup.deduplication_window_ms,
                similarity_threshold=dedup.similarity_threshold,
                max_history=dedup.max_history,
            ),
            history=HistoryConfig(
                max_entries=history.max_entries,
                retention_days=history.retention_days,
                persistence_path=history.persistence_path,
                persistence_interval_ms=history.persistence_interval_ms,
                stats_cache_ttl_ms=history.stats_cache_ttl_ms,
            ),
            provider_name=settings.pipeline.provider_name,
            health_check_interval_ms=settings.pipeline.health_check_interval_ms,
        )

    @classmethod
    def for_profile(cls, name: str) -> "PipelineConfig":
        """Build one of the named deployment profiles.

        Args:
            name: "production", "development" or "high_volume"

        Raises:
            ValueError: If the profile is unknown
        """
        base = cls(
            queue=QueueConfig(
                max_size=1000,
                concurrency=3,
                retry_delay_ms=5000,
                max_retries=3,
                processing_timeout_ms=30000,
            ),
            batch=BatchConfig(
                enabled=True,
                max_batch_size=5,
                batch_timeout_ms=60000,
                grouping_strategy=GroupingStrategy.PRIORITY_TIER,
                min_score_for_batching=6.0,
            ),
            dedup=DeduplicationConfig(
                deduplication_window_ms=300000, similarity_threshold=0.8
            ),
            history=HistoryConfig(max_entries=10000, retention_days=30),
        )

        if name == "production":
            return base
        if name == "development":
            return replace(
                base,
                batch=replace(base.batch, enabled=False, batch_timeout_ms=10000),
                queue=replace(base.queue, max_size=100, concurrency=1),
                history=replace(base.history, max_entries=1000, retention_days=7),
            )
        if name == "high_volume":
            return replace(
                base,
                batch=replace(
                    base.batch,
                    max_batch_size=10,
                    batch_timeout_ms=30000,
                    min_score_for_batching=8.0,
                ),
                queue=replace(base.queue, max_size=2000, concurrency=2),
            )
        raise ValueError(f"Unknown pipeline profile: {name}")
