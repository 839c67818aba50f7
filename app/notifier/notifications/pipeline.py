"""Notification pipeline facade.

Wires the deduplicator, batch grouper, delivery queue and history store
around one scheduler, one executor and one event dispatcher.

Usage:
    from notifier.notifications import NotificationPipeline, DryRunProvider

    pipeline = NotificationPipeline.from_settings(DryRunProvider())
    pipeline.start()

    outcome = pipeline.submit(
        Message(kind=MessageKind.TOKEN_ALERT, title="TOKEN_X breakout",
                content="...", entity_key="TOKEN_X")
    )
    # SubmitOutcome.QUEUED / BATCHED / DEDUPLICATED / REJECTED

    pipeline.shutdown()
"""

from concurrent.futures import Executor
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple

from notifier.events import EventDispatcher, EventType
from notifier.logging import get_module_logger
from notifier.notifications.batching import BatchGrouper
from notifier.notifications.config import PipelineConfig
from notifier.notifications.deduplicator import Deduplicator
from notifier.notifications.errors import QueueFullError, classify_delivery_exception
from notifier.notifications.history import HistoryStore
from notifier.notifications.models import (
    BatchDecision,
    BatchStats,
    DeliveryError,
    DeliveryResult,
    HistoryEntry,
    HistoryStats,
    HistoryStatus,
    Message,
    PipelineStatus,
    QueueStats,
    RecoveryReport,
    ServiceStats,
    SubmitOutcome,
    from_epoch,
)
from notifier.notifications.providers import DeliveryProvider
from notifier.notifications.queue import DeliveryQueue
from notifier.notifications.rendering import PlainTextRenderer, Renderer
from notifier.resilience.scheduler import RepeatingHandle, Scheduler, ThreadedScheduler

if TYPE_CHECKING:
    from notifier.configuration import Settings

logger = get_module_logger()

UNHEALTHY_FAILURE_RATIO = 0.1


class NotificationPipeline:
    """Reliable notification delivery pipeline.

    Producers only observe the submit outcome. Delivery results are visible
    through stats, history queries and events.

    Args:
        config: Complete pipeline configuration
        provider: Delivery provider
        renderer: Payload renderer (default: PlainTextRenderer)
        scheduler: Timer source. A ThreadedScheduler is created and owned
            by the pipeline when omitted.
        executor: Executor for provider calls (default: owned thread pool)
        events: Event dispatcher (default: a new one, see ``events``)
    """

    def __init__(
        self,
        config: PipelineConfig,
        provider: DeliveryProvider,
        renderer: Optional[Renderer] = None,
        scheduler: Optional[Scheduler] = None,
        executor: Optional[Executor] = None,
        events: Optional[EventDispatcher] = None,
    ):
        self.config = config
        self.provider = provider
        self.renderer = renderer or PlainTextRenderer()
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or ThreadedScheduler()
        self.events = events or EventDispatcher()

        self.history = HistoryStore(config.history, clock=self.scheduler.now)
        self.deduplicator = Deduplicator(config.dedup, clock=self.scheduler.now)
        self.queue = DeliveryQueue(
            config.queue,
            provider,
            self.scheduler,
            renderer=self.renderer,
            history=self.history,
            events=self.events,
            executor=executor,
            provider_name=config.provider_name,
        )
        self.batcher = BatchGrouper(
            config.batch,
            self.scheduler,
            self.renderer,
            on_flush=self.queue.enqueue,
            on_flush_failed=self._record_batch_failure,
            events=self.events,
        )

        self._timers: List[RepeatingHandle] = []
        self._started_at: Optional[float] = None
        self._last_healthy: Optional[bool] = None

    @classmethod
    def from_settings(
        cls,
        provider: DeliveryProvider,
        settings: Optional["Settings"] = None,
        **kwargs,
    ) -> "NotificationPipeline":
        if settings is None:
            from notifier.configuration import get_settings

            settings = get_settings()
        return cls(PipelineConfig.from_settings(settings), provider, **kwargs)

    # Lifecycle

    def start(self) -> None:
        """Restore persisted state and start delivering."""
        if self._started_at is not None:
            return

        self.history.load()
        if self._owns_scheduler:
            self.scheduler.start()
        self.queue.start()

        if self.config.history.persistence_path:
            self._timers.append(
                self.scheduler.call_every(
                    self.config.history.persistence_interval_ms / 1000,
                    self.history.persist,
                )
            )
        if self.config.health_check_interval_ms > 0:
            self._timers.append(
                self.scheduler.call_every(
                    self.config.health_check_interval_ms / 1000, self.check_health
                )
            )

        self._started_at = self.scheduler.now()
        logger.info(
            "notification_pipeline_started",
            provider=self.queue.provider_name,
            batching=self.config.batch.enabled,
            grouping_strategy=self.config.batch.grouping_strategy.value,
        )

    def shutdown(self) -> None:
        """Flush open batches, persist state and stop background work."""
        flushed = self.batcher.flush_all()
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        self.queue.stop(persist=True)
        self.history.persist()
        if self._owns_scheduler:
            self.scheduler.stop()

        self._started_at = None
        logger.info("notification_pipeline_shutdown", flushed_batches=flushed)

    def __enter__(self) -> "NotificationPipeline":
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.shutdown()

    # Producer API

    def submit(self, message: Message) -> SubmitOutcome:
        """Deduplicate, batch or enqueue a message.

        Returns:
            DEDUPLICATED if a recent message matched, BATCHED if held for a
            batch, QUEUED if enqueued, REJECTED if the queue is full
        """
        if "max_retries" not in message.model_fields_set:
            message = message.model_copy(
                update={"max_retries": self.config.queue.max_retries}
            )

        if self.deduplicator.check_and_remember(message):
            self.events.emit(
                EventType.MESSAGE_DEDUPLICATED,
                message_id=message.id,
                entity_key=message.entity_key,
            )
            return SubmitOutcome.DEDUPLICATED

        if self.batcher.submit(message) is BatchDecision.BATCHED:
            return SubmitOutcome.BATCHED

        if message.payload is None:
            try:
                message = message.model_copy(
                    update={"payload": self.renderer.render(message)}
                )
            except Exception as e:  # pylint: disable=broad-except
                # The queue renders again on delivery and records the failure
                logger.warning("message_render_failed", message_id=message.id, error=str(e))

        try:
            accepted = self.queue.enqueue(message)
        except QueueFullError:
            self.deduplicator.forget(message)
            return SubmitOutcome.REJECTED

        return SubmitOutcome.QUEUED if accepted else SubmitOutcome.DEDUPLICATED

    def pause(self) -> None:
        self.queue.pause()

    def resume(self) -> None:
        self.queue.resume()

    def flush_batches(self) -> int:
        return self.batcher.flush_all()

    # Stats and health

    def queue_stats(self) -> QueueStats:
        return self.queue.stats()

    def batch_stats(self) -> BatchStats:
        return self.batcher.stats()

    def history_stats(
        self, time_range: Optional[Tuple[Optional[datetime], Optional[datetime]]] = None
    ) -> HistoryStats:
        return self.history.stats(time_range)

    def service_stats(self) -> ServiceStats:
        history = self.history_stats()
        uptime_ms = 0
        if self._started_at is not None:
            uptime_ms = int((self.scheduler.now() - self._started_at) * 1000)
        return ServiceStats(
            queue=self.queue_stats(),
            batch=self.batch_stats(),
            history=history,
            success_rate=history.success_rate,
            uptime_ms=uptime_ms,
            status=self.status(),
        )

    def status(self) -> PipelineStatus:
        try:
            provider_healthy = bool(self.provider.health_check())
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("provider_health_check_failed", error=str(e))
            provider_healthy = False

        stats = self.queue.stats()
        failure_ratio = stats.failed / stats.total_processed if stats.total_processed else 0.0
        return PipelineStatus(
            healthy=provider_healthy and failure_ratio < UNHEALTHY_FAILURE_RATIO,
            provider_healthy=provider_healthy,
            running=self.queue.running,
            paused=self.queue.paused,
            failure_ratio=failure_ratio,
            checked_at=from_epoch(self.scheduler.now()),
        )

    def check_health(self) -> PipelineStatus:
        """Evaluate health and emit ``pipeline.health_changed`` on transitions."""
        status = self.status()
        previous = self._last_healthy
        self._last_healthy = status.healthy

        if previous is not None and previous != status.healthy:
            log = logger.info if status.healthy else logger.warning
            log(
                "pipeline_health_changed",
                healthy=status.healthy,
                provider_healthy=status.provider_healthy,
                failure_ratio=round(status.failure_ratio, 4),
            )
            self.events.emit(
                EventType.PIPELINE_HEALTH_CHANGED,
                healthy=status.healthy,
                previous=previous,
                provider_healthy=status.provider_healthy,
                failure_ratio=status.failure_ratio,
            )
        return status

    # Recovery

    def retry_failed_notifications(
        self, max_age_ms: Optional[int] = None, max_retries: Optional[int] = None
    ) -> RecoveryReport:
        """Resend failed history entries directly through the provider.

        Each entry is rebuilt into a best-effort message, sent once and
        updated in place with ``mark_recovered``.

        Args:
            max_age_ms: Only consider entries sent within this window
            max_retries: Skip entries whose attempts already reached this
        """
        start = None
        if max_age_ms is not None:
            start = from_epoch(self.scheduler.now() - max_age_ms / 1000)
        entries = self.history.failed_notifications(start=start, max_retries=max_retries)

        report = RecoveryReport()
        for entry in entries:
            report.attempted += 1
            result = self._resend(entry)
            self.history.mark_recovered(entry.message_id, result)
            if result.success:
                self.queue.discard_failed(entry.message_id)
                report.recovered += 1
                report.recovered_ids.append(entry.message_id)
            else:
                report.failed += 1
                report.errors[entry.message_id] = (
                    result.error.message if result.error else "Unknown error"
                )

        logger.info(
            "failed_notifications_retried",
            attempted=report.attempted,
            recovered=report.recovered,
            failed=report.failed,
        )
        return report

    def _resend(self, entry: HistoryEntry) -> DeliveryResult:
        message = entry.to_message()
        try:
            return self.provider.send(self.renderer.render(message))
        except Exception as e:  # pylint: disable=broad-except
            return classify_delivery_exception(e)

    def _record_batch_failure(self, message: Message, error: DeliveryError) -> None:
        self.history.record(
            HistoryEntry.from_message(
                message,
                provider=self.queue.provider_name,
                status=HistoryStatus.FAILED,
                sent_at=from_epoch(self.scheduler.now()),
                attempts=0,
                error=error,
            )
        )
