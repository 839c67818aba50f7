"""Batch grouping and deduplication settings."""

from pydantic import Field

from notifier.configuration.base import PipelineSectionSettings


class BatchSettings(PipelineSectionSettings):
    """Batch grouper configuration.

    Environment Variables:
        BATCH_ENABLED: Enable batching (default: True)
        BATCH_MAX_SIZE: Members that trigger an immediate flush (default: 5)
        BATCH_TIMEOUT_MS: Fixed flush window per group (default: 60000)
        BATCH_GROUPING_STRATEGY: time, kind, entity or priority_tier
        BATCH_MIN_SCORE: Messages scoring below this skip batching (default: 6)
    """

    enabled: bool = Field(default=True, alias="BATCH_ENABLED")
    max_batch_size: int = Field(default=5, alias="BATCH_MAX_SIZE")
    batch_timeout_ms: int = Field(default=60000, alias="BATCH_TIMEOUT_MS")
    grouping_strategy: str = Field(
        default="priority_tier",
        alias="BATCH_GROUPING_STRATEGY",
        description="Grouping strategy: 'time', 'kind', 'entity' or 'priority_tier'",
    )
    min_score_for_batching: float = Field(default=6.0, alias="BATCH_MIN_SCORE")


class DeduplicationSettings(PipelineSectionSettings):
    """Deduplicator configuration.

    Environment Variables:
        DEDUP_WINDOW_MS: How long a seen message suppresses repeats (default: 300000)
        DEDUP_SIMILARITY_THRESHOLD: Jaccard similarity for fuzzy matches (default: 0.8)
        DEDUP_MAX_HISTORY: Upper bound of remembered messages (default: 10000)
    """

    deduplication_window_ms: int = Field(default=300000, alias="DEDUP_WINDOW_MS")
    similarity_threshold: float = Field(
        default=0.8, alias="DEDUP_SIMILARITY_THRESHOLD"
    )
    max_history: int = Field(default=10000, alias="DEDUP_MAX_HISTORY")
