"""Delivery history settings."""

from typing import Optional

from pydantic import Field

from notifier.configuration.base import PipelineSectionSettings


class HistorySettings(PipelineSectionSettings):
    """History store configuration.

    Environment Variables:
        HISTORY_MAX_ENTRIES: Entry count cap (default: 10000)
        HISTORY_RETENTION_DAYS: Age cap in days (default: 30)
        HISTORY_PERSISTENCE_PATH: JSON snapshot file, disabled when unset
        HISTORY_PERSISTENCE_INTERVAL_MS: Snapshot interval (default: 60000)
        HISTORY_STATS_CACHE_TTL_MS: Analytics cache lifetime (default: 300000)
    """

    max_entries: int = Field(default=10000, alias="HISTORY_MAX_ENTRIES")
    retention_days: int = Field(default=30, alias="HISTORY_RETENTION_DAYS")
    persistence_path: Optional[str] = Field(
        default=None, alias="HISTORY_PERSISTENCE_PATH"
    )
    persistence_interval_ms: int = Field(
        default=60000, alias="HISTORY_PERSISTENCE_INTERVAL_MS"
    )
    stats_cache_ttl_ms: int = Field(default=300000, alias="HISTORY_STATS_CACHE_TTL_MS")

