"""Delivery queue.

Bounded FIFO of messages awaiting delivery, drained by at most
``concurrency`` concurrent provider calls. Each attempt runs on an executor
under a per-attempt timeout; the first of (provider returns, timeout fires)
decides the outcome. A call that outlives its timeout keeps its slot until
it actually returns.

Outcomes:
- Success: one ``sent`` HistoryEntry, id remembered as completed
- Retryable failure with budget left: re-inserted at the head of the queue
  after a backoff delay, without holding a slot while waiting
- Anything else: one ``failed`` HistoryEntry, message kept in the failed set

Pending, awaiting-retry, in-flight and failed messages are snapshotted to
JSON on an interval and on shutdown, and restored on start.
"""

import functools
import threading
from collections import deque
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from typing import Any, Deque, Dict, List, Optional, Tuple

from pydantic import ValidationError

from notifier.events import EventDispatcher, EventType
from notifier.idempotency import IdempotencyKeyBuilder, InMemoryIdempotencyCache
from notifier.logging import bind_delivery_context, get_module_logger
from notifier.notifications.config import QueueConfig
from notifier.notifications.errors import (
    QueueFullError,
    RenderError,
    classify_delivery_exception,
)
from notifier.notifications.history import HistoryStore
from notifier.notifications.models import (
    DeliveryErrorCode,
    DeliveryResult,
    HistoryEntry,
    HistoryStatus,
    Message,
    QueuedMessage,
    QueueStats,
    from_epoch,
)
from notifier.notifications.persistence import SnapshotStore
from notifier.notifications.providers import DeliveryProvider
from notifier.notifications.rendering import PlainTextRenderer, Renderer
from notifier.resilience.scheduler import RepeatingHandle, Scheduler, TimerHandle

logger = get_module_logger()


class _Attempt:
    """One provider call for one queued message."""

    __slots__ = ("queued", "started", "timer", "settled")

    def __init__(self, queued: QueuedMessage, started: float):
        self.queued = queued
        self.started = started
        self.timer: Optional[TimerHandle] = None
        self.settled = False


class DeliveryQueue:
    """Bounded, persisted work queue in front of a DeliveryProvider.

    Args:
        config: Queue sizing, retry and persistence settings
        provider: Provider that transmits rendered payloads
        scheduler: Source of time, retry timers and timeouts
        renderer: Renders messages that arrive without a payload
        history: Store receiving one entry per terminal outcome
        events: Dispatcher for message.* and queue.* events
        executor: Runs provider calls. Defaults to a ThreadPoolExecutor
            with ``concurrency`` threads, owned and shut down by the queue.
        provider_name: Name recorded in history (defaults to provider.name)

    Example:
        queue = DeliveryQueue(QueueConfig(), provider, scheduler, history=history)
        queue.start()
        queue.enqueue(message)
    """

    def __init__(
        self,
        config: QueueConfig,
        provider: DeliveryProvider,
        scheduler: Scheduler,
        renderer: Optional[Renderer] = None,
        history: Optional[HistoryStore] = None,
        events: Optional[EventDispatcher] = None,
        executor: Optional[Executor] = None,
        provider_name: Optional[str] = None,
    ):
        self.config = config
        self._provider = provider
        self._scheduler = scheduler
        self._renderer = renderer or PlainTextRenderer()
        self._history = history
        self._events = events or EventDispatcher()
        self._owns_executor = executor is None
        self._executor: Optional[Executor] = executor or self._new_executor()
        self.provider_name = provider_name or provider.name
        self._backoff = config.backoff()
        self._snapshot = SnapshotStore(config.persistence_path, name="queue")
        self._keys = IdempotencyKeyBuilder(namespace="queue")
        self._completed = InMemoryIdempotencyCache(clock=scheduler.now)

        self._pending: Deque[QueuedMessage] = deque()
        self._processing: Dict[str, QueuedMessage] = {}
        self._retrying: Dict[str, Tuple[QueuedMessage, TimerHandle]] = {}
        self._failed: Dict[str, QueuedMessage] = {}

        self._in_flight = 0
        self._completed_count = 0
        self._total_processed = 0
        self._total_processing_ms = 0.0
        self._last_processed_at: Optional[float] = None

        self._running = False
        self._paused = False
        self._pumping = False
        self._persistence_timer: Optional[RepeatingHandle] = None
        self._purge_timer: Optional[RepeatingHandle] = None
        self._lock = threading.RLock()

    # Lifecycle

    def start(self) -> None:
        """Restore the snapshot, arm periodic timers and begin delivering.

        A stopped queue can be started again; an owned executor is recreated.
        """
        with self._lock:
            if self._running:
                return
            if self._executor is None:
                self._executor = self._new_executor()
        restored = self.restore()
        with self._lock:
            self._running = True
        if self._snapshot.enabled:
            self._persistence_timer = self._scheduler.call_every(
                self.config.persistence_interval_ms / 1000, self.persist
            )
        self._purge_timer = self._scheduler.call_every(
            self.config.completed_dedup_window_ms / 1000, self._purge_completed
        )
        logger.info(
            "delivery_queue_started",
            restored=restored,
            concurrency=self.config.concurrency,
            max_size=self.config.max_size,
        )
        self._pump()

    def stop(self, persist: bool = True) -> None:
        """Stop pulling work, cancel timers and write a final snapshot.

        Messages awaiting retry move back to the head of the pending list,
        so they are delivered first after a restart in this process or from
        the snapshot.
        """
        with self._lock:
            self._running = False
            waiting = list(self._retrying.values())
            self._retrying.clear()
            for queued, handle in reversed(waiting):
                handle.cancel()
                queued.processing_started_at = None
                self._pending.appendleft(queued)
        for timer in (self._persistence_timer, self._purge_timer):
            if timer is not None:
                timer.cancel()
        self._persistence_timer = None
        self._purge_timer = None
        if persist:
            self.persist()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info(
            "delivery_queue_stopped",
            requeued_retries=len(waiting),
            **self.stats().model_dump(mode="json"),
        )

    def _new_executor(self) -> Executor:
        return ThreadPoolExecutor(
            max_workers=self.config.concurrency,
            thread_name_prefix="notification-delivery",
        )

    def _purge_completed(self) -> None:
        purged = self._completed.purge()
        if purged:
            logger.debug("completed_ids_purged", purged=purged)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        """Stop pulling new work. In-flight attempts complete or time out."""
        with self._lock:
            if self._paused:
                return
            self._paused = True
        logger.info("delivery_queue_paused")
        self._events.emit(EventType.QUEUE_PAUSED)

    def resume(self) -> None:
        with self._lock:
            if not self._paused:
                return
            self._paused = False
        logger.info("delivery_queue_resumed")
        self._events.emit(EventType.QUEUE_RESUMED)
        self._pump()

    # Producer API

    def enqueue(self, message: Message) -> bool:
        """Add a message to the tail of the queue.

        Returns:
            True if queued, False if refused as a duplicate

        Raises:
            QueueFullError: If the pending list is at capacity
        """
        with self._lock:
            if len(self._pending) >= self.config.max_size:
                logger.warning(
                    "delivery_queue_full",
                    message_id=message.id,
                    max_size=self.config.max_size,
                )
                raise QueueFullError(self.config.max_size)

            reason = self._duplicate_reason(message)
            if reason is not None:
                logger.info(
                    "enqueue_duplicate_skipped", message_id=message.id, reason=reason
                )
                return False

            queued = QueuedMessage(
                message=message, enqueued_at=from_epoch(self._scheduler.now())
            )
            self._pending.append(queued)
            queue_size = len(self._pending)

        logger.info(
            "message_enqueued",
            message_id=message.id,
            kind=message.kind.value,
            priority=message.priority.value,
            queue_size=queue_size,
        )
        self._events.emit(
            EventType.MESSAGE_QUEUED, message_id=message.id, queue_size=queue_size
        )
        self._pump()
        return True

    def requeue_failed(self) -> int:
        """Move failed messages back to the tail with fresh retry budgets.

        Stops when the queue is full; the rest stay failed.

        Returns:
            Number of messages requeued
        """
        requeued = 0
        with self._lock:
            for message_id in list(self._failed):
                if len(self._pending) >= self.config.max_size:
                    break
                queued = self._failed.pop(message_id)
                queued.message.retry_count = 0
                queued.attempts = 0
                queued.processing_started_at = None
                self._pending.append(queued)
                requeued += 1
            remaining = len(self._failed)

        logger.info("failed_messages_requeued", requeued=requeued, remaining=remaining)
        self._pump()
        return requeued

    def failed_messages(self) -> List[QueuedMessage]:
        with self._lock:
            return [queued.model_copy(deep=True) for queued in self._failed.values()]

    def discard_failed(self, message_id: str) -> bool:
        """Forget a failed message, e.g. once it was recovered out of band."""
        with self._lock:
            return self._failed.pop(message_id, None) is not None

    def clear(self) -> int:
        """Drop pending, awaiting-retry and failed messages.

        In-flight attempts are unaffected.

        Returns:
            Number of messages dropped
        """
        with self._lock:
            for _, handle in self._retrying.values():
                handle.cancel()
            dropped = len(self._pending) + len(self._retrying) + len(self._failed)
            self._pending.clear()
            self._retrying.clear()
            self._failed.clear()
        logger.info("delivery_queue_cleared", dropped=dropped)
        return dropped

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                pending=len(self._pending),
                processing=len(self._processing),
                retrying=len(self._retrying),
                completed=self._completed_count,
                failed=len(self._failed),
                total_processed=self._total_processed,
                average_processing_time_ms=(
                    self._total_processing_ms / self._total_processed
                    if self._total_processed
                    else 0.0
                ),
                last_processed_at=(
                    from_epoch(self._last_processed_at)
                    if self._last_processed_at is not None
                    else None
                ),
                paused=self._paused,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    # Persistence

    def snapshot(self) -> Dict[str, Any]:
        """Queue state as ``{pending, failed}``.

        ``pending`` lists in-flight and awaiting-retry messages ahead of the
        regular pending messages, so a restart retries them first.
        """
        with self._lock:
            pending = (
                list(self._processing.values())
                + [queued for queued, _ in self._retrying.values()]
                + list(self._pending)
            )
            return {
                "pending": [queued.model_dump(mode="json") for queued in pending],
                "failed": [queued.model_dump(mode="json") for queued in self._failed.values()],
            }

    def persist(self) -> bool:
        return self._snapshot.save(self.snapshot())

    def restore(self) -> int:
        """Load the snapshot into the queue.

        Returns:
            Number of messages restored
        """
        document = self._snapshot.load()
        if not document:
            return 0

        restored = 0
        with self._lock:
            for raw in document.get("pending", []):
                queued = self._parse_snapshot_entry(raw)
                if queued is None or self._duplicate_reason(queued.message):
                    continue
                queued.processing_started_at = None
                self._pending.append(queued)
                restored += 1
            for raw in document.get("failed", []):
                queued = self._parse_snapshot_entry(raw)
                if queued is None or queued.id in self._failed:
                    continue
                self._failed[queued.id] = queued
                restored += 1

        logger.info(
            "delivery_queue_restored",
            restored=restored,
            snapshot_timestamp=document.get("timestamp"),
        )
        return restored

    @staticmethod
    def _parse_snapshot_entry(raw: Any) -> Optional[QueuedMessage]:
        try:
            return QueuedMessage.model_validate(raw)
        except ValidationError as e:
            logger.warning("snapshot_entry_invalid", error=str(e))
            return None

    # Internals

    def _equivalence_key(self, message: Message) -> str:
        return self._keys.from_fields(
            "equivalent", message, ("kind", "title", "content", "metadata")
        )

    def _duplicate_reason(self, message: Message) -> Optional[str]:
        message_id = message.id
        if message_id in self._processing:
            return "processing"
        if message_id in self._retrying:
            return "awaiting_retry"
        if self._completed.contains(message_id):
            return "recently_completed"
        key = self._equivalence_key(message)
        for queued in self._pending:
            if queued.id == message_id:
                return "pending"
            if self._equivalence_key(queued.message) == key:
                return "equivalent_pending"
        return None

    def _can_dispatch(self) -> bool:
        return (
            self._running
            and not self._paused
            and bool(self._pending)
            and self._in_flight < self.config.concurrency
        )

    def _pump(self) -> None:
        """Start attempts until the queue is empty or every slot is taken.

        Only one thread runs the loop at a time. Callers that find it running
        return immediately; the loop re-checks state before each dispatch.
        """
        with self._lock:
            if self._pumping:
                return
            self._pumping = True
        try:
            while True:
                with self._lock:
                    if not self._can_dispatch():
                        self._pumping = False
                        return
                    attempt = self._begin_attempt()
                self._dispatch(attempt)
        except BaseException:
            with self._lock:
                self._pumping = False
            raise

    def _begin_attempt(self) -> _Attempt:
        queued = self._pending.popleft()
        now = self._scheduler.now()
        queued.attempts += 1
        queued.processing_started_at = from_epoch(now)
        queued.last_attempt_at = from_epoch(now)
        self._processing[queued.id] = queued
        self._in_flight += 1

        attempt = _Attempt(queued, started=now)
        attempt.timer = self._scheduler.call_later(
            self.config.processing_timeout_ms / 1000, self._on_timeout, attempt
        )
        return attempt

    def _dispatch(self, attempt: _Attempt) -> None:
        executor = self._executor
        try:
            if executor is None:
                raise RuntimeError("delivery executor is shut down")
            future = executor.submit(self._call_provider, attempt.queued)
        except RuntimeError as e:
            logger.error(
                "delivery_executor_unavailable", message_id=attempt.queued.id, error=str(e)
            )
            self._settle(
                attempt,
                DeliveryResult.failure(
                    DeliveryErrorCode.PROVIDER_ERROR, str(e), retryable=True
                ),
            )
            self._release_slot()
            return
        future.add_done_callback(functools.partial(self._on_call_returned, attempt))

    def _call_provider(self, queued: QueuedMessage) -> DeliveryResult:
        message = queued.message
        with bind_delivery_context(message_id=message.id, attempt=queued.attempts):
            logger.debug("delivery_attempt_started", provider=self.provider_name)
            try:
                payload = message.payload or self._render(message)
                result = self._provider.send(payload)
                if not isinstance(result, DeliveryResult):
                    raise TypeError(
                        f"Provider returned {type(result).__name__}, expected DeliveryResult"
                    )
                return result
            except Exception as e:  # pylint: disable=broad-except
                logger.warning(
                    "delivery_attempt_raised",
                    provider=self.provider_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return classify_delivery_exception(e)

    def _render(self, message: Message) -> Dict[str, Any]:
        try:
            return self._renderer.render(message)
        except RenderError:
            raise
        except Exception as e:  # pylint: disable=broad-except
            raise RenderError(f"{type(e).__name__}: {e}") from e

    def _on_call_returned(self, attempt: _Attempt, future: Future) -> None:
        try:
            result = future.result()
        except CancelledError:
            result = DeliveryResult.failure(
                DeliveryErrorCode.PROVIDER_ERROR, "Delivery call cancelled", retryable=True
            )
        except Exception as e:  # pylint: disable=broad-except
            result = classify_delivery_exception(e)
        self._settle(attempt, result)
        self._release_slot()
        self._pump()

    def _on_timeout(self, attempt: _Attempt) -> None:
        timeout_ms = self.config.processing_timeout_ms
        result = DeliveryResult.failure(
            DeliveryErrorCode.TIMEOUT,
            f"Processing timeout after {timeout_ms}ms",
            retryable=True,
        )
        if self._settle(attempt, result):
            logger.warning(
                "delivery_attempt_timed_out",
                message_id=attempt.queued.id,
                timeout_ms=timeout_ms,
            )

    def _release_slot(self) -> None:
        with self._lock:
            self._in_flight -= 1

    def _settle(self, attempt: _Attempt, result: DeliveryResult) -> bool:
        """Apply the first outcome of an attempt. Later outcomes are ignored."""
        now = self._scheduler.now()
        with self._lock:
            if attempt.settled:
                return False
            attempt.settled = True
            if attempt.timer is not None:
                attempt.timer.cancel()

            queued = attempt.queued
            message = queued.message
            elapsed_ms = max(0.0, (now - attempt.started) * 1000)
            self._processing.pop(queued.id, None)

            retry_delay_ms = None
            if result.success:
                self._completed.set(
                    queued.id,
                    {"completed_at": now},
                    self.config.completed_dedup_window_ms / 1000,
                )
                self._completed_count += 1
            elif result.retryable and message.retry_count < message.max_retries:
                error = result.error
                retry_delay_ms = self._backoff.delay_for(
                    message.retry_count, error.retry_after_ms if error else None
                )
                message.retry_count += 1
                handle = self._scheduler.call_later(
                    retry_delay_ms / 1000, self._requeue_retry, queued.id
                )
                self._retrying[queued.id] = (queued, handle)
            else:
                self._failed[queued.id] = queued

            if retry_delay_ms is None:
                self._total_processed += 1
                self._total_processing_ms += elapsed_ms
                self._last_processed_at = now

        if result.success:
            self._on_delivered(queued, elapsed_ms, now, result)
        elif retry_delay_ms is not None:
            self._on_retry_scheduled(queued, result, retry_delay_ms)
        else:
            self._on_failed(queued, elapsed_ms, now, result)
        return True

    def _on_delivered(
        self, queued: QueuedMessage, elapsed_ms: float, now: float, result: DeliveryResult
    ) -> None:
        self._record_history(queued, HistoryStatus.SENT, elapsed_ms, now, result)
        logger.info(
            "message_delivered",
            message_id=queued.id,
            attempts=queued.attempts,
            processing_time_ms=round(elapsed_ms, 2),
            external_id=result.external_id,
        )
        self._events.emit(
            EventType.MESSAGE_DELIVERED,
            message_id=queued.id,
            attempts=queued.attempts,
            external_id=result.external_id,
            member_ids=queued.message.batch_member_ids,
        )

    def _on_retry_scheduled(
        self, queued: QueuedMessage, result: DeliveryResult, delay_ms: int
    ) -> None:
        error = result.error
        logger.warning(
            "message_retry_scheduled",
            message_id=queued.id,
            retry_count=queued.message.retry_count,
            max_retries=queued.message.max_retries,
            delay_ms=delay_ms,
            error_code=error.code if error else None,
            error=error.message if error else None,
        )
        self._events.emit(
            EventType.MESSAGE_RETRY_SCHEDULED,
            message_id=queued.id,
            retry_count=queued.message.retry_count,
            delay_ms=delay_ms,
            error_code=error.code if error else None,
        )

    def _on_failed(
        self, queued: QueuedMessage, elapsed_ms: float, now: float, result: DeliveryResult
    ) -> None:
        self._record_history(queued, HistoryStatus.FAILED, elapsed_ms, now, result)
        error = result.error
        logger.error(
            "message_delivery_failed",
            message_id=queued.id,
            attempts=queued.attempts,
            retry_count=queued.message.retry_count,
            error_code=error.code if error else None,
            error=error.message if error else None,
            retryable=result.retryable,
        )
        self._events.emit(
            EventType.MESSAGE_FAILED,
            message_id=queued.id,
            attempts=queued.attempts,
            error_code=error.code if error else None,
            error=error.message if error else None,
            member_ids=queued.message.batch_member_ids,
        )

    def _record_history(
        self,
        queued: QueuedMessage,
        status: HistoryStatus,
        elapsed_ms: float,
        now: float,
        result: DeliveryResult,
    ) -> None:
        if self._history is None:
            return
        self._history.record(
            HistoryEntry.from_message(
                queued.message,
                provider=self.provider_name,
                status=status,
                sent_at=from_epoch(now),
                attempts=queued.attempts,
                processing_time_ms=elapsed_ms,
                error=result.error,
            )
        )

    def _requeue_retry(self, message_id: str) -> None:
        with self._lock:
            entry = self._retrying.pop(message_id, None)
            if entry is None:
                return
            queued, _ = entry
            queued.processing_started_at = None
            self._pending.appendleft(queued)
        logger.debug("message_requeued_for_retry", message_id=message_id)
        self._pump()
