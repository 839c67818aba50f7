"""Notifier configuration settings - main aggregator."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from notifier.configuration.batching import BatchSettings, DeduplicationSettings
from notifier.configuration.history import HistorySettings
from notifier.configuration.pipeline import PipelineSettings
from notifier.configuration.queue import QueueSettings


class Settings(BaseSettings):
    """Notifier configuration settings - main aggregator.

    Aggregates all component settings into a single configuration object:

    - **queue**: Delivery queue sizing, retry/backoff and persistence
    - **batch**: Batch grouping policy
    - **dedup**: Deduplication window and similarity
    - **history**: Retention, analytics cache and persistence
    - **pipeline**: Facade options (provider name, health checks)

    Environment Variables:
        PREFIX: Environment prefix, empty in production
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)

    Example:
        ```python
        from notifier.configuration import get_settings

        settings = get_settings()

        max_size = settings.queue.max_size
        if settings.batch.enabled:
            strategy = settings.batch.grouping_strategy
        ```
    """

    PREFIX: str = ""
    LOG_LEVEL: str = "INFO"

    queue: QueueSettings
    batch: BatchSettings
    dedup: DeduplicationSettings
    history: HistorySettings
    pipeline: PipelineSettings

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production.

        Returns:
            True if PREFIX is empty (production), False otherwise.
        """
        return not bool(self.PREFIX)

    def __init__(self, **kwargs):
        """Initialize Settings with automatic subsettings instantiation.

        Args:
            **kwargs: Optional overrides for specific settings sections.
        """
        settings_map = {
            "queue": QueueSettings,
            "batch": BatchSettings,
            "dedup": DeduplicationSettings,
            "history": HistorySettings,
            "pipeline": PipelineSettings,
        }

        for setting_name, setting_class in settings_map.items():
            if setting_name not in kwargs:
                kwargs[setting_name] = setting_class()

        super().__init__(**kwargs)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )
