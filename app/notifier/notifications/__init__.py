"""Reliable notification delivery pipeline.

Public API:
    - NotificationPipeline: facade (submit, stats, recovery, shutdown)
    - Message, MessageKind, MessagePriority, SubmitOutcome: producer models
    - DeliveryProvider, DeliveryResult: provider contract
    - Renderer, PlainTextRenderer: payload rendering
    - PipelineConfig and component configs

Example:
    from notifier.notifications import (
        DryRunProvider, Message, MessageKind, NotificationPipeline,
    )

    with NotificationPipeline.from_settings(DryRunProvider()) as pipeline:
        pipeline.submit(Message(kind=MessageKind.SYSTEM_ALERT, title="Deploy done"))
"""

from notifier.notifications.batching import BatchGrouper
from notifier.notifications.config import (
    BatchConfig,
    DeduplicationConfig,
    HistoryConfig,
    PipelineConfig,
    QueueConfig,
)
from notifier.notifications.deduplicator import Deduplicator
from notifier.notifications.errors import (
    NotificationPipelineError,
    ProviderDeliveryError,
    QueueFullError,
    RateLimitedError,
    RenderError,
    UnauthorizedError,
    ValidationFailedError,
    classify_delivery_exception,
)
from notifier.notifications.history import HistoryStore
from notifier.notifications.models import (
    BatchDecision,
    BatchGroup,
    BatchGroupState,
    DeliveryError,
    DeliveryErrorCode,
    DeliveryResult,
    GroupingStrategy,
    HistoryEntry,
    HistoryFilters,
    HistoryStatus,
    Message,
    MessageKind,
    MessagePriority,
    QueuedMessage,
    SubmitOutcome,
)
from notifier.notifications.pipeline import NotificationPipeline
from notifier.notifications.providers import DeliveryProvider, DryRunProvider
from notifier.notifications.queue import DeliveryQueue
from notifier.notifications.rendering import PlainTextRenderer, Renderer

__all__ = [
    "BatchConfig",
    "BatchDecision",
    "BatchGroup",
    "BatchGroupState",
    "BatchGrouper",
    "DeduplicationConfig",
    "Deduplicator",
    "DeliveryError",
    "DeliveryErrorCode",
    "DeliveryProvider",
    "DeliveryQueue",
    "DeliveryResult",
    "DryRunProvider",
    "GroupingStrategy",
    "HistoryConfig",
    "HistoryEntry",
    "HistoryFilters",
    "HistoryStatus",
    "HistoryStore",
    "Message",
    "MessageKind",
    "MessagePriority",
    "NotificationPipeline",
    "NotificationPipelineError",
    "PipelineConfig",
    "PlainTextRenderer",
    "ProviderDeliveryError",
    "QueueConfig",
    "QueueFullError",
    "QueuedMessage",
    "RateLimitedError",
    "RenderError",
    "Renderer",
    "SubmitOutcome",
    "UnauthorizedError",
    "ValidationFailedError",
    "classify_delivery_exception",
]
