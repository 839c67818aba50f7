"""Notifier configuration module - public API.

Centralized configuration using Pydantic BaseSettings, organized per
pipeline component.

Exports:
    get_settings: Cached Settings singleton
    Settings: Main settings class (for testing/overrides)
    QueueSettings, BatchSettings, DeduplicationSettings, HistorySettings,
    PipelineSettings: Section classes

Example:
    ```python
    from notifier.configuration import get_settings

    settings = get_settings()
    concurrency = settings.queue.concurrency
    ```
"""

from notifier.configuration.batching import BatchSettings, DeduplicationSettings
from notifier.configuration.history import HistorySettings
from notifier.configuration.pipeline import PipelineSettings
from notifier.configuration.providers import get_settings
from notifier.configuration.queue import QueueSettings
from notifier.configuration.settings import Settings

__all__ = [
    "Settings",
    "get_settings",
    "QueueSettings",
    "BatchSettings",
    "DeduplicationSettings",
    "HistorySettings",
    "PipelineSettings",
]
