"""Delivery queue settings."""

from typing import Optional

from pydantic import Field

from notifier.configuration.base import PipelineSectionSettings


class QueueSettings(PipelineSectionSettings):
    """Delivery queue configuration.

    Environment Variables:
        QUEUE_MAX_SIZE: Maximum number of pending messages (default: 1000)
        QUEUE_CONCURRENCY: Provider calls allowed in flight (default: 3)
        QUEUE_RETRY_DELAY_MS: Base delay for exponential backoff (default: 5000)
        QUEUE_BACKOFF_MULTIPLIER: Backoff growth factor (default: 2.0)
        QUEUE_MAX_RETRY_DELAY_MS: Cap for the backoff delay (default: 60000)
        QUEUE_MAX_RETRIES: Default retries for new messages (default: 3)
        QUEUE_PROCESSING_TIMEOUT_MS: Per-attempt provider timeout (default: 30000)
        QUEUE_PERSISTENCE_PATH: JSON snapshot file, disabled when unset
        QUEUE_PERSISTENCE_INTERVAL_MS: Snapshot interval (default: 30000)
        QUEUE_COMPLETED_DEDUP_WINDOW_MS: Window in which a completed id is
            rejected again at enqueue time (default: 300000)

    Exponential Backoff:
        Delay calculation: min(retry_delay * multiplier ^ retry_count, max_delay)

        Example with defaults (base=5s, multiplier=2, max=60s):
            Retry 1: 5s
            Retry 2: 10s
            Retry 3: 20s
    """

    max_size: int = Field(default=1000, alias="QUEUE_MAX_SIZE")
    concurrency: int = Field(default=3, alias="QUEUE_CONCURRENCY")
    retry_delay_ms: int = Field(default=5000, alias="QUEUE_RETRY_DELAY_MS")
    backoff_multiplier: float = Field(default=2.0, alias="QUEUE_BACKOFF_MULTIPLIER")
    max_retry_delay_ms: int = Field(default=60000, alias="QUEUE_MAX_RETRY_DELAY_MS")
    max_retries: int = Field(default=3, alias="QUEUE_MAX_RETRIES")
    processing_timeout_ms: int = Field(
        default=30000, alias="QUEUE_PROCESSING_TIMEOUT_MS"
    )
    persistence_path: Optional[str] = Field(
        default=None,
        alias="QUEUE_PERSISTENCE_PATH",
        description="Queue snapshot file; persistence is disabled when unset",
    )
    persistence_interval_ms: int = Field(
        default=30000, alias="QUEUE_PERSISTENCE_INTERVAL_MS"
    )
    completed_dedup_window_ms: int = Field(
        default=300000, alias="QUEUE_COMPLETED_DEDUP_WINDOW_MS"
    )
