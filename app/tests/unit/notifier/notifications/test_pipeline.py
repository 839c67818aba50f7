"""Unit tests for the notification pipeline facade."""

from dataclasses import replace

import pytest

from notifier.configuration import Settings
from notifier.events import EventType
from notifier.notifications.config import (
    BatchConfig,
    DeduplicationConfig,
    HistoryConfig,
    PipelineConfig,
    QueueConfig,
)
from notifier.notifications.models import (
    DeliveryErrorCode,
    GroupingStrategy,
    HistoryStatus,
    Message,
    MessageKind,
    MessagePriority,
    SubmitOutcome,
)
from notifier.notifications.pipeline import NotificationPipeline
from notifier.notifications.rendering import PlainTextRenderer
from tests.factories.notifier import permanent_failure, retryable_failure


class BrokenSingleRenderer(PlainTextRenderer):
    def _render_single(self, message):
        raise RuntimeError("missing template")


@pytest.fixture
def pipeline_config():
    return PipelineConfig(
        queue=QueueConfig(max_size=10, concurrency=1),
        batch=BatchConfig(
            max_batch_size=5,
            batch_timeout_ms=10000,
            grouping_strategy=GroupingStrategy.KIND,
            min_score_for_batching=6.0,
        ),
        dedup=DeduplicationConfig(deduplication_window_ms=300000),
        history=HistoryConfig(),
        health_check_interval_ms=60000,
    )


@pytest.fixture
def pipeline_factory(pipeline_config, provider, manual_scheduler, inline_executor, events):
    def _factory(config=None, start=True, **kwargs):
        options = {
            "scheduler": manual_scheduler,
            "executor": inline_executor,
            "events": events,
        }
        options.update(kwargs)
        pipeline = NotificationPipeline(config or pipeline_config, provider, **options)
        if start:
            pipeline.start()
        return pipeline

    return _factory


@pytest.fixture
def pipeline(pipeline_factory):
    return pipeline_factory()


def of_type(recorded_events, event_type):
    return [event for event in recorded_events if event.event_type == event_type]


@pytest.mark.unit
class TestSubmit:
    def test_same_entity_is_delivered_once_per_window(
        self, pipeline, manual_scheduler, provider, message_factory
    ):
        outcomes = [
            pipeline.submit(
                message_factory(entity_key="TOKEN_X", priority=MessagePriority.CRITICAL)
            )
        ]
        manual_scheduler.advance(1)
        outcomes.append(
            pipeline.submit(
                message_factory(entity_key="TOKEN_X", priority=MessagePriority.CRITICAL)
            )
        )
        manual_scheduler.advance(199)
        outcomes.append(
            pipeline.submit(
                message_factory(entity_key="TOKEN_X", priority=MessagePriority.CRITICAL)
            )
        )

        assert outcomes == [
            SubmitOutcome.QUEUED,
            SubmitOutcome.DEDUPLICATED,
            SubmitOutcome.DEDUPLICATED,
        ]
        assert provider.call_count == 1

        manual_scheduler.advance(101)
        later = message_factory(entity_key="TOKEN_X", priority=MessagePriority.CRITICAL)
        assert pipeline.submit(later) is SubmitOutcome.QUEUED
        assert provider.call_count == 2

    def test_deduplicated_event(self, pipeline, recorded_events, message_factory):
        pipeline.submit(message_factory(entity_key="TOKEN_X", score=2))
        duplicate = message_factory(entity_key="TOKEN_X", score=2)

        pipeline.submit(duplicate)

        events = of_type(recorded_events, EventType.MESSAGE_DEDUPLICATED)
        assert [e.metadata["message_id"] for e in events] == [duplicate.id]

    def test_low_score_is_queued_with_rendered_payload(
        self, pipeline, provider, message_factory
    ):
        message = message_factory(score=3, title="Minor move")

        assert pipeline.submit(message) is SubmitOutcome.QUEUED

        assert provider.payloads[0]["title"] == "Minor move"

    def test_batched_messages_flush_as_one_delivery(
        self, pipeline, manual_scheduler, provider, recorded_events, message_factory
    ):
        first = message_factory(score=7)
        second = message_factory(score=9)

        assert pipeline.submit(first) is SubmitOutcome.BATCHED
        assert pipeline.submit(second) is SubmitOutcome.BATCHED
        assert provider.call_count == 0

        manual_scheduler.advance(10)

        assert provider.call_count == 1
        assert provider.payloads[0]["count"] == 2
        entries = pipeline.history.query(message_id=second.id)
        assert len(entries) == 1
        assert entries[0].status is HistoryStatus.SENT
        assert entries[0].batch_member_ids == [first.id, second.id]
        assert len(of_type(recorded_events, EventType.BATCH_FLUSHED)) == 1

    def test_full_queue_rejects_and_forgets(
        self, pipeline_factory, pipeline_config, provider, message_factory
    ):
        config = replace(
            pipeline_config,
            queue=QueueConfig(max_size=1),
            batch=BatchConfig(enabled=False),
        )
        pipeline = pipeline_factory(config)
        pipeline.pause()

        assert pipeline.submit(message_factory(entity_key="A")) is SubmitOutcome.QUEUED
        rejected = message_factory(entity_key="B")
        assert pipeline.submit(rejected) is SubmitOutcome.REJECTED

        pipeline.resume()
        assert pipeline.submit(rejected) is SubmitOutcome.QUEUED
        assert provider.call_count == 2

    def test_rejected_batch_is_recorded_as_failed(
        self, pipeline_factory, pipeline_config, recorded_events, message_factory
    ):
        config = replace(
            pipeline_config,
            queue=QueueConfig(max_size=1),
            batch=replace(pipeline_config.batch, max_batch_size=1),
        )
        pipeline = pipeline_factory(config)
        pipeline.pause()
        pipeline.submit(message_factory(priority=MessagePriority.CRITICAL))

        member = message_factory(score=9)
        assert pipeline.submit(member) is SubmitOutcome.BATCHED

        failed = pipeline.history.query(message_id=member.id)
        assert len(failed) == 1
        assert failed[0].status is HistoryStatus.FAILED
        assert failed[0].attempts == 0
        assert failed[0].error_code == DeliveryErrorCode.QUEUE_FULL
        assert len(of_type(recorded_events, EventType.BATCH_FAILED)) == 1

    def test_render_failure_fails_permanently(
        self, pipeline_factory, manual_scheduler, provider, message_factory
    ):
        pipeline = pipeline_factory(renderer=BrokenSingleRenderer())
        message = message_factory(priority=MessagePriority.CRITICAL)

        assert pipeline.submit(message) is SubmitOutcome.QUEUED
        manual_scheduler.advance(120)

        assert provider.call_count == 0
        entry = pipeline.history.get(message.id)
        assert entry.status is HistoryStatus.FAILED
        assert entry.error_code == DeliveryErrorCode.RENDER_ERROR

    def test_flush_batches(self, pipeline, provider, message_factory):
        pipeline.submit(message_factory(score=7))

        assert pipeline.flush_batches() == 1
        assert provider.call_count == 1


@pytest.mark.unit
class TestHealth:
    def test_health_change_is_emitted_on_transition(
        self, pipeline, manual_scheduler, provider, recorded_events
    ):
        manual_scheduler.advance(60)
        assert of_type(recorded_events, EventType.PIPELINE_HEALTH_CHANGED) == []

        provider.healthy = False
        manual_scheduler.advance(60)
        manual_scheduler.advance(60)

        changes = of_type(recorded_events, EventType.PIPELINE_HEALTH_CHANGED)
        assert len(changes) == 1
        assert changes[0].metadata["healthy"] is False
        assert changes[0].metadata["previous"] is True

        provider.healthy = True
        manual_scheduler.advance(60)
        assert len(of_type(recorded_events, EventType.PIPELINE_HEALTH_CHANGED)) == 2

    def test_failure_ratio_makes_pipeline_unhealthy(
        self, pipeline, provider, message_factory
    ):
        assert pipeline.status().healthy is True

        provider.script(permanent_failure())
        pipeline.submit(message_factory(priority=MessagePriority.CRITICAL))

        status = pipeline.status()
        assert status.provider_healthy is True
        assert status.failure_ratio == 1.0
        assert status.healthy is False

    def test_health_check_exception_counts_as_unhealthy(self, pipeline, provider):
        def broken():
            raise ConnectionError("health endpoint unreachable")

        provider.health_check = broken

        assert pipeline.status().provider_healthy is False


@pytest.mark.unit
class TestRecovery:
    def test_retry_failed_notifications(self, pipeline, provider, message_factory):
        provider.script(permanent_failure())
        message = message_factory(priority=MessagePriority.CRITICAL)
        pipeline.submit(message)
        assert len(pipeline.queue.failed_messages()) == 1

        report = pipeline.retry_failed_notifications()

        assert report.attempted == 1
        assert report.recovered_ids == [message.id]
        entry = pipeline.history.get(message.id)
        assert entry.status is HistoryStatus.SENT
        assert entry.attempts == 2
        assert entry.recovered_at is not None
        assert len(pipeline.history) == 1
        assert pipeline.queue.failed_messages() == []

    def test_unsuccessful_recovery_is_reported(self, pipeline, provider, message_factory):
        provider.script(permanent_failure(), ValueError("still broken"))
        message = message_factory(priority=MessagePriority.CRITICAL)
        pipeline.submit(message)

        report = pipeline.retry_failed_notifications()

        assert (report.attempted, report.recovered, report.failed) == (1, 0, 1)
        assert "still broken" in report.errors[message.id]
        assert pipeline.history.get(message.id).error_code == DeliveryErrorCode.VALIDATION_ERROR

    def test_recovery_filters(
        self, pipeline, manual_scheduler, provider, message_factory
    ):
        provider.script(permanent_failure(), permanent_failure())
        pipeline.submit(message_factory(priority=MessagePriority.CRITICAL))
        manual_scheduler.advance(3600)
        recent = message_factory(priority=MessagePriority.CRITICAL)
        pipeline.submit(recent)

        report = pipeline.retry_failed_notifications(max_age_ms=60000)
        assert report.recovered_ids == [recent.id]

        assert pipeline.retry_failed_notifications(max_retries=1).attempted == 0


@pytest.mark.unit
class TestLifecycle:
    def test_service_stats(self, pipeline, manual_scheduler, message_factory):
        pipeline.submit(message_factory(priority=MessagePriority.CRITICAL))
        pipeline.submit(message_factory(score=7))
        manual_scheduler.advance(5)

        stats = pipeline.service_stats()

        assert stats.uptime_ms == 5000
        assert stats.queue.completed == 1
        assert stats.batch.total_groups == 1
        assert stats.history.total == 1
        assert stats.success_rate == 1.0
        assert stats.status.running is True

    def test_shutdown_persists_and_restart_resumes(
        self, tmp_path, pipeline_factory, pipeline_config, provider, message_factory
    ):
        config = replace(
            pipeline_config,
            queue=replace(
                pipeline_config.queue, persistence_path=str(tmp_path / "queue.json")
            ),
            history=replace(
                pipeline_config.history, persistence_path=str(tmp_path / "history.json")
            ),
        )
        first = pipeline_factory(config)
        first.submit(message_factory(priority=MessagePriority.CRITICAL))
        first.pause()
        pending = message_factory(score=7)
        first.submit(pending)

        first.shutdown()

        assert provider.call_count == 1
        assert first.queue.running is False

        second = pipeline_factory(config)

        assert provider.call_count == 2
        assert len(second.history) == 2
        assert second.history.query(message_id=pending.id)[0].status is HistoryStatus.SENT

    def test_context_manager(self, pipeline_factory):
        pipeline = pipeline_factory(start=False)

        with pipeline as running:
            assert running.queue.running is True

        assert pipeline.queue.running is False

    def test_from_settings(self, provider, manual_scheduler, inline_executor):
        pipeline = NotificationPipeline.from_settings(
            provider,
            Settings(),
            scheduler=manual_scheduler,
            executor=inline_executor,
        )

        assert pipeline.config.queue.max_size == 1000
        assert pipeline.queue.provider_name == "scripted"


@pytest.mark.unit
class TestRetryBudget:
    def test_queue_default_applies_when_message_leaves_it_unset(
        self, pipeline_factory, pipeline_config, manual_scheduler, provider
    ):
        config = replace(
            pipeline_config, queue=replace(pipeline_config.queue, max_retries=1)
        )
        pipeline = pipeline_factory(config)
        provider.script(*[retryable_failure() for _ in range(5)])
        message = Message(
            kind=MessageKind.SYSTEM_ALERT,
            priority=MessagePriority.CRITICAL,
            title="Disk full",
        )

        pipeline.submit(message)
        manual_scheduler.advance(600)

        assert provider.call_count == 2
        assert pipeline.history.get(message.id).attempts == 2
