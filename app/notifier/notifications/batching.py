"""Batch grouper.

Collects batchable messages into time-bounded groups and flushes each group
exactly once, as a single rendered message, when it reaches
``max_batch_size`` members or when its fixed flush timer fires, whichever
comes first. The timer is armed when the group is created and is not reset
by later members.

Group lifecycle:
    CREATED -> ACCUMULATING -> FLUSHING -> CLEARED
"""

import itertools
import threading
from typing import Callable, Dict, List, Optional

from notifier.events import EventDispatcher, EventType
from notifier.logging import get_module_logger
from notifier.notifications.config import BatchConfig
from notifier.notifications.errors import QueueFullError
from notifier.notifications.models import (
    BatchDecision,
    BatchGroup,
    BatchGroupState,
    BatchStats,
    DeliveryError,
    DeliveryErrorCode,
    GroupingStrategy,
    Message,
    MessagePriority,
    from_epoch,
)
from notifier.notifications.rendering import Renderer
from notifier.resilience.scheduler import Scheduler, TimerHandle

logger = get_module_logger()

HIGH_TIER_SCORE = 8.0

FlushHandler = Callable[[Message], bool]
FlushFailureHandler = Callable[[Message, DeliveryError], None]


class BatchGrouper:
    """Groups messages and hands flushed batches to ``on_flush``.

    Args:
        config: Batching policy
        scheduler: Source of time and flush timers
        renderer: Renders the ordered group members into one payload
        on_flush: Receives the rendered batch message; returns False when the
            receiver refused it as a duplicate, raises QueueFullError when full
        on_flush_failed: Called with the batch message and the error when
            rendering fails or the receiver rejects the batch
        events: Optional dispatcher for batch.flushed / batch.failed events
    """

    def __init__(
        self,
        config: BatchConfig,
        scheduler: Scheduler,
        renderer: Renderer,
        on_flush: FlushHandler,
        on_flush_failed: Optional[FlushFailureHandler] = None,
        events: Optional[EventDispatcher] = None,
    ):
        self.config = config
        self._scheduler = scheduler
        self._renderer = renderer
        self._on_flush = on_flush
        self._on_flush_failed = on_flush_failed
        self._events = events or EventDispatcher()
        self._groups: Dict[str, BatchGroup] = {}
        self._timers: Dict[str, TimerHandle] = {}
        self._sequence = itertools.count(1)
        self._flushed_groups = 0
        self._lock = threading.Lock()

    def decide(self, message: Message) -> BatchDecision:
        if not self.config.enabled:
            return BatchDecision.IMMEDIATE
        if message.priority is MessagePriority.CRITICAL:
            return BatchDecision.IMMEDIATE
        score = message.score
        if score is not None and score < self.config.min_score_for_batching:
            return BatchDecision.IMMEDIATE
        return BatchDecision.BATCHED

    def grouping_key(self, message: Message, now_ms: int) -> str:
        bucket = now_ms // self.config.batch_timeout_ms
        strategy = self.config.grouping_strategy

        if strategy is GroupingStrategy.TIME:
            return f"time:{bucket}"
        if strategy is GroupingStrategy.ENTITY and message.entity_key:
            return f"entity:{message.entity_key}:{bucket}"
        if strategy is GroupingStrategy.PRIORITY_TIER and message.score is not None:
            tier = "high" if message.score >= HIGH_TIER_SCORE else "medium"
            return f"tier:{tier}:{bucket}"
        return f"kind:{message.kind.value}:{bucket}"

    def submit(self, message: Message) -> BatchDecision:
        """Add a message to its group, or report that it must go out now.

        Returns:
            IMMEDIATE if the caller should enqueue the message directly,
            BATCHED if the grouper took ownership of it
        """
        decision = self.decide(message)
        if decision is BatchDecision.IMMEDIATE:
            return decision

        now_ms = self._scheduler.now_ms()
        now = from_epoch(now_ms / 1000)
        key = self.grouping_key(message, now_ms)

        with self._lock:
            group = self._groups.get(key)
            if group is None:
                group = BatchGroup(
                    id=f"{key}#{next(self._sequence)}",
                    key=key,
                    kind=message.kind,
                    created_at=now,
                    last_updated_at=now,
                    state=BatchGroupState.CREATED,
                )
                self._groups[key] = group
                self._timers[group.id] = self._scheduler.call_later(
                    self.config.batch_timeout_ms / 1000,
                    self._flush,
                    key,
                    group.id,
                    "timeout",
                )
                logger.debug("batch_group_created", group_id=group.id, key=key)
            else:
                group.state = BatchGroupState.ACCUMULATING

            group.messages.append(message)
            group.last_updated_at = now
            group_id = group.id
            size = group.size
            full = size >= self.config.max_batch_size

        logger.debug(
            "message_batched", message_id=message.id, group_id=group_id, group_size=size
        )
        if full:
            self._flush(key, group_id, "size")
        return BatchDecision.BATCHED

    def flush_all(self) -> int:
        """Flush every live group immediately.

        Returns:
            Number of groups flushed
        """
        with self._lock:
            live = [(key, group.id) for key, group in self._groups.items()]
        return sum(1 for key, group_id in live if self._flush(key, group_id, "manual"))

    def clear_all(self) -> int:
        """Drop every live group without delivering it.

        Returns:
            Number of member messages dropped
        """
        with self._lock:
            groups = list(self._groups.values())
            self._groups.clear()
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        dropped = 0
        for group in groups:
            group.state = BatchGroupState.CLEARED
            dropped += group.size
        logger.info("batch_groups_cleared", groups=len(groups), messages=dropped)
        return dropped

    def get_group(self, key: str) -> Optional[BatchGroup]:
        with self._lock:
            return self._groups.get(key)

    def stats(self) -> BatchStats:
        with self._lock:
            groups = list(self._groups.values())
            flushed = self._flushed_groups

        by_kind: Dict[str, int] = {}
        for group in groups:
            by_kind[group.kind.value] = by_kind.get(group.kind.value, 0) + 1

        oldest = min(groups, key=lambda g: g.created_at) if groups else None
        oldest_age_ms = None
        if oldest is not None:
            oldest_age_ms = max(
                0, self._scheduler.now_ms() - int(oldest.created_at.timestamp() * 1000)
            )

        return BatchStats(
            total_groups=len(groups),
            total_pending_messages=sum(group.size for group in groups),
            groups_by_kind=by_kind,
            oldest_group_id=oldest.id if oldest else None,
            oldest_group_age_ms=oldest_age_ms,
            flushed_groups=flushed,
        )

    def _flush(self, key: str, group_id: str, reason: str) -> bool:
        with self._lock:
            group = self._groups.get(key)
            if group is None or group.id != group_id:
                # Already flushed by the other trigger
                return False
            del self._groups[key]
            timer = self._timers.pop(group_id, None)
            if timer is not None:
                timer.cancel()
            group.state = BatchGroupState.FLUSHING
            self._flushed_groups += 1

        try:
            self._deliver(group, reason)
        finally:
            group.state = BatchGroupState.CLEARED
        return True

    def _deliver(self, group: BatchGroup, reason: str) -> None:
        members = list(group.messages)
        try:
            payload = self._renderer.render(members)
        except Exception as e:  # pylint: disable=broad-except
            logger.exception("batch_render_failed", group_id=group.id, error=str(e))
            batch_message = self._build_batch_message(group, members, payload=None)
            self._fail(
                group,
                batch_message,
                DeliveryError(
                    code=DeliveryErrorCode.RENDER_ERROR,
                    message=f"{type(e).__name__}: {e}",
                    retryable=False,
                ),
            )
            return

        batch_message = self._build_batch_message(group, members, payload=payload)
        try:
            accepted = self._on_flush(batch_message)
        except QueueFullError as e:
            logger.warning("batch_rejected_queue_full", group_id=group.id, error=str(e))
            self._fail(
                group,
                batch_message,
                DeliveryError(
                    code=DeliveryErrorCode.QUEUE_FULL, message=str(e), retryable=False
                ),
            )
            return

        logger.info(
            "batch_flushed",
            group_id=group.id,
            key=group.key,
            size=len(members),
            reason=reason,
            batch_message_id=batch_message.id,
            accepted=accepted,
        )
        self._events.emit(
            EventType.BATCH_FLUSHED,
            group_id=group.id,
            message_id=batch_message.id,
            member_ids=group.member_ids,
            reason=reason,
        )

    def _fail(self, group: BatchGroup, batch_message: Message, error: DeliveryError) -> None:
        if self._on_flush_failed is not None:
            try:
                self._on_flush_failed(batch_message, error)
            except Exception as e:  # pylint: disable=broad-except
                logger.exception(
                    "batch_failure_handler_failed", group_id=group.id, error=str(e)
                )
        self._events.emit(
            EventType.BATCH_FAILED,
            group_id=group.id,
            message_id=batch_message.id,
            member_ids=group.member_ids,
            error_code=error.code,
            error=error.message,
        )

    def _build_batch_message(
        self, group: BatchGroup, members: List[Message], payload: Optional[dict]
    ) -> Message:
        priority = max((m.priority for m in members), key=lambda p: p.rank)
        title = f"{len(members)} {group.kind.value} notifications"
        content = ""
        if payload:
            title = str(payload.get("title") or title)
            content = str(payload.get("content") or "")
        return Message(
            kind=group.kind,
            priority=priority,
            title=title,
            content=content,
            metadata={
                "batch": {
                    "group_id": group.id,
                    "key": group.key,
                    "member_ids": group.member_ids,
                }
            },
            max_retries=max(m.max_retries for m in members),
            payload=payload,
        )
