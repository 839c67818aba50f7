"""Tests for notifier settings and component configs."""

import dataclasses

import pytest

from notifier.configuration import (
    BatchSettings,
    QueueSettings,
    Settings,
    get_settings,
)
from notifier.notifications.config import (
    BatchConfig,
    DeduplicationConfig,
    HistoryConfig,
    PipelineConfig,
    QueueConfig,
)
from notifier.notifications.models import GroupingStrategy


@pytest.mark.unit
class TestSettings:
    """Tests for the settings aggregator."""

    def test_settings_loads_all_sections(self):
        """Verify every pipeline section is instantiated."""
        settings = Settings()
        assert isinstance(settings.queue, QueueSettings)
        assert isinstance(settings.batch, BatchSettings)
        assert hasattr(settings, "dedup")
        assert hasattr(settings, "history")
        assert hasattr(settings, "pipeline")

    def test_defaults(self):
        """Test default values match the production profile."""
        settings = Settings()
        assert settings.queue.max_size == 1000
        assert settings.queue.concurrency == 3
        assert settings.batch.max_batch_size == 5
        assert settings.dedup.deduplication_window_ms == 300000
        assert settings.dedup.similarity_threshold == 0.8
        assert settings.history.retention_days == 30
        assert settings.pipeline.provider_name is None

    def test_environment_overrides(self, monkeypatch):
        """Test values are read from aliased environment variables."""
        monkeypatch.setenv("QUEUE_MAX_SIZE", "50")
        monkeypatch.setenv("BATCH_ENABLED", "false")
        monkeypatch.setenv("BATCH_GROUPING_STRATEGY", "entity")

        settings = Settings()

        assert settings.queue.max_size == 50
        assert settings.batch.enabled is False
        assert settings.batch.grouping_strategy == "entity"

    def test_section_override_by_field_name(self):
        """Test sections can be built with field names in tests."""
        settings = Settings(queue=QueueSettings(max_size=7))
        assert settings.queue.max_size == 7

    def test_is_production(self):
        """Test is_production follows the PREFIX convention."""
        assert Settings(PREFIX="").is_production is True
        assert Settings(PREFIX="dev-").is_production is False

    def test_get_settings_is_cached(self):
        """Test get_settings returns the same instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


@pytest.mark.unit
class TestPipelineConfig:
    """Tests for frozen component configs."""

    def test_from_settings(self, monkeypatch):
        """Test settings are copied into the frozen configs."""
        monkeypatch.setenv("QUEUE_CONCURRENCY", "2")
        monkeypatch.setenv("BATCH_GROUPING_STRATEGY", "kind")
        monkeypatch.setenv("PIPELINE_PROVIDER_NAME", "webhook")

        config = PipelineConfig.from_settings(Settings())

        assert config.queue.concurrency == 2
        assert config.batch.grouping_strategy is GroupingStrategy.KIND
        assert config.provider_name == "webhook"

    def test_configs_are_frozen(self):
        """Test configs cannot be mutated after construction."""
        config = QueueConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_size = 5  # type: ignore[misc]

    def test_production_profile(self):
        config = PipelineConfig.for_profile("production")
        assert config.queue.max_size == 1000
        assert config.queue.concurrency == 3
        assert config.batch.enabled is True
        assert config.batch.min_score_for_batching == 6.0
        assert config.history.max_entries == 10000

    def test_development_profile(self):
        config = PipelineConfig.for_profile("development")
        assert config.batch.enabled is False
        assert config.queue.max_size == 100
        assert config.queue.concurrency == 1
        assert config.history.retention_days == 7

    def test_high_volume_profile(self):
        config = PipelineConfig.for_profile("high_volume")
        assert config.batch.max_batch_size == 10
        assert config.batch.batch_timeout_ms == 30000
        assert config.batch.min_score_for_batching == 8.0
        assert config.queue.max_size == 2000

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown pipeline profile"):
            PipelineConfig.for_profile("staging")

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: QueueConfig(max_size=0),
            lambda: QueueConfig(concurrency=0),
            lambda: QueueConfig(retry_delay_ms=10, max_retry_delay_ms=5),
            lambda: BatchConfig(max_batch_size=0),
            lambda: DeduplicationConfig(similarity_threshold=1.5),
            lambda: HistoryConfig(max_entries=0),
        ],
    )
    def test_invalid_values_rejected(self, factory):
        """Test __post_init__ validation."""
        with pytest.raises(ValueError):
            factory()

    def test_batch_config_accepts_strategy_string(self):
        config = BatchConfig(grouping_strategy="entity")  # type: ignore[arg-type]
        assert config.grouping_strategy is GroupingStrategy.ENTITY

    def test_queue_config_backoff(self):
        backoff = QueueConfig(retry_delay_ms=100, backoff_multiplier=3, max_retry_delay_ms=500).backoff()
        assert backoff.delay_for(1) == 300
