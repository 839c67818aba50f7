"""Notification pipeline core models.

Provider-agnostic models shared by the deduplicator, batch grouper,
delivery queue and history store. Producers build ``Message`` objects;
the pipeline owns everything else.

Uses Pydantic BaseModel for:
- Runtime input validation of producer supplied messages
- JSON round-tripping of queue and history snapshots
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MessageKind(Enum):
    """Routing and grouping tag. Opaque to the pipeline."""

    TOKEN_ALERT = "token_alert"
    SYSTEM_ALERT = "system_alert"
    ERROR_ALERT = "error_alert"


class MessagePriority(Enum):
    """Message priority levels.

    CRITICAL messages bypass batching and are queued immediately.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    MessagePriority.LOW: 0,
    MessagePriority.MEDIUM: 1,
    MessagePriority.HIGH: 2,
    MessagePriority.CRITICAL: 3,
}


class HistoryStatus(Enum):
    """Terminal outcome recorded in the history store."""

    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchGroupState(Enum):
    CREATED = "created"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    CLEARED = "cleared"


class BatchDecision(Enum):
    IMMEDIATE = "immediate"
    BATCHED = "batched"


class SubmitOutcome(Enum):
    """What a producer observes when submitting a message.

    REJECTED means the delivery queue was full; the caller owns any retry.
    """

    QUEUED = "queued"
    BATCHED = "batched"
    DEDUPLICATED = "deduplicated"
    REJECTED = "rejected"


class GroupingStrategy(Enum):
    TIME = "time"
    KIND = "kind"
    ENTITY = "entity"
    PRIORITY_TIER = "priority_tier"


class DeliveryErrorCode:
    """Well-known delivery error codes. Providers may report others."""

    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    RENDER_ERROR = "RENDER_ERROR"
    QUEUE_FULL = "QUEUE_FULL"


class Message(BaseModel):
    """Outbound notification message.

    Attributes:
        id: Unique message id (generated when omitted)
        kind: Routing/grouping tag
        priority: Priority level (default: MEDIUM)
        title: Short summary line
        content: Message body
        metadata: Producer owned key-value bag. ``score`` feeds batching;
            ``batch`` is set by the pipeline on rendered batch messages.
        created_at: Creation time (UTC)
        retry_count: Retries performed so far, used for backoff
        max_retries: Retry budget
        entity_key: Stable subject identifier (e.g. a token address)
        payload: Rendered provider payload, filled in before delivery

    Example:
        message = Message(
            kind=MessageKind.TOKEN_ALERT,
            title="TOKEN_X breakout",
            content="Volume up 340% in 5m",
            entity_key="TOKEN_X",
            metadata={"score": 8.5},
        )
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: MessageKind
    priority: MessagePriority = MessagePriority.MEDIUM
    title: str
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    entity_key: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_retry_budget(self) -> "Message":
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count ({self.retry_count}) exceeds max_retries ({self.max_retries})"
            )
        return self

    @property
    def score(self) -> Optional[float]:
        value = self.metadata.get("score")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    @property
    def batch_member_ids(self) -> List[str]:
        batch = self.metadata.get("batch")
        if isinstance(batch, dict):
            return list(batch.get("member_ids", []))
        return []

    @property
    def is_batch(self) -> bool:
        return isinstance(self.metadata.get("batch"), dict)


class QueuedMessage(BaseModel):
    """A message owned by the delivery queue.

    ``attempts`` counts delivery attempts and is independent of the
    message's ``retry_count`` used for backoff.
    """

    message: Message
    enqueued_at: datetime = Field(default_factory=utc_now)
    processing_started_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    attempts: int = 0

    @property
    def id(self) -> str:
        return self.message.id


class BatchGroup(BaseModel):
    """Time-bounded group of messages rendered and delivered as one unit."""

    id: str
    key: str
    kind: MessageKind
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)
    state: BatchGroupState = BatchGroupState.CREATED

    @property
    def size(self) -> int:
        return len(self.messages)

    @property
    def member_ids(self) -> List[str]:
        return [message.id for message in self.messages]


class DeliveryError(BaseModel):
    code: str
    message: str
    retryable: bool
    retry_after_ms: Optional[int] = None


class DeliveryResult(BaseModel):
    """Result of one provider ``send`` call."""

    success: bool
    error: Optional[DeliveryError] = None
    external_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, external_id: Optional[str] = None, **metadata: Any) -> "DeliveryResult":
        return cls(success=True, external_id=external_id, metadata=metadata)

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        retryable: bool,
        retry_after_ms: Optional[int] = None,
    ) -> "DeliveryResult":
        return cls(
            success=False,
            error=DeliveryError(
                code=code,
                message=message,
                retryable=retryable,
                retry_after_ms=retry_after_ms,
            ),
        )

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


class AttemptRecord(BaseModel):
    """Prior outcome of a history entry, kept when it is recovered."""

    status: HistoryStatus
    attempts: int
    error: Optional[str] = None
    error_code: Optional[str] = None
    recorded_at: datetime


class HistoryEntry(BaseModel):
    """Terminal delivery outcome of one queued message.

    A rendered batch produces a single entry whose ``batch_member_ids``
    attribute the outcome back to every original message.
    """

    message_id: str
    kind: MessageKind
    provider: str
    status: HistoryStatus
    sent_at: datetime
    attempts: int = 1
    processing_time_ms: Optional[float] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    entity_key: Optional[str] = None
    priority: MessagePriority = MessagePriority.MEDIUM
    title: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    batch_member_ids: List[str] = Field(default_factory=list)
    recovered_at: Optional[datetime] = None
    attempt_log: List[AttemptRecord] = Field(default_factory=list)

    @field_validator("sent_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @classmethod
    def from_message(
        cls,
        message: Message,
        provider: str,
        status: HistoryStatus,
        sent_at: datetime,
        attempts: int,
        processing_time_ms: Optional[float] = None,
        error: Optional[DeliveryError] = None,
    ) -> "HistoryEntry":
        return cls(
            message_id=message.id,
            kind=message.kind,
            provider=provider,
            status=status,
            sent_at=sent_at,
            attempts=attempts,
            processing_time_ms=processing_time_ms,
            error=error.message if error else None,
            error_code=error.code if error else None,
            entity_key=message.entity_key,
            priority=message.priority,
            title=message.title,
            content=message.content,
            metadata=dict(message.metadata),
            batch_member_ids=message.batch_member_ids,
        )

    def involves(self, message_id: str) -> bool:
        return self.message_id == message_id or message_id in self.batch_member_ids

    def to_message(self) -> Message:
        """Best-effort reconstruction used by the recovery flow."""
        return Message(
            id=self.message_id,
            kind=self.kind,
            priority=self.priority,
            title=self.title or f"{self.kind.value} notification",
            content=self.content or "",
            metadata=dict(self.metadata),
            entity_key=self.entity_key,
        )


class HistoryFilters(BaseModel):
    """Filters accepted by ``HistoryStore.query`` and ``failed_notifications``."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[HistoryStatus] = None
    provider: Optional[str] = None
    kind: Optional[MessageKind] = None
    entity_key: Optional[str] = None
    message_id: Optional[str] = None
    max_retries: Optional[int] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    @field_validator("start", "end")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None


class EntityCount(BaseModel):
    entity_key: str
    count: int


class HistoryStats(BaseModel):
    total: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    success_rate: float = 0.0
    average_processing_time_ms: float = 0.0
    p50_processing_time_ms: float = 0.0
    p95_processing_time_ms: float = 0.0
    p99_processing_time_ms: float = 0.0
    by_kind: Dict[str, int] = Field(default_factory=dict)
    by_hour: Dict[int, int] = Field(default_factory=dict)
    failure_reasons: Dict[str, int] = Field(default_factory=dict)
    top_entities: List[EntityCount] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)


class HourlyTrend(BaseModel):
    hour: int
    total: int
    success_rate: float


class PerformanceIssue(BaseModel):
    issue: str
    severity: str
    count: int


class HistoryInsights(BaseModel):
    lookback_hours: float
    success_trends: List[HourlyTrend] = Field(default_factory=list)
    top_entities: List[EntityCount] = Field(default_factory=list)
    performance_issues: List[PerformanceIssue] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    retrying: int = 0
    completed: int = 0
    failed: int = 0
    total_processed: int = 0
    average_processing_time_ms: float = 0.0
    last_processed_at: Optional[datetime] = None
    paused: bool = False


class BatchStats(BaseModel):
    total_groups: int = 0
    total_pending_messages: int = 0
    groups_by_kind: Dict[str, int] = Field(default_factory=dict)
    oldest_group_id: Optional[str] = None
    oldest_group_age_ms: Optional[int] = None
    flushed_groups: int = 0


class RecoveryReport(BaseModel):
    """Outcome of a ``retry_failed_notifications`` run."""

    attempted: int = 0
    recovered: int = 0
    failed: int = 0
    recovered_ids: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class PipelineStatus(BaseModel):
    """Health snapshot of a running pipeline.

    Healthy when the provider reports healthy and permanently failed
    messages stay under 10% of processed messages.
    """

    healthy: bool
    provider_healthy: bool
    running: bool
    paused: bool
    failure_ratio: float = 0.0
    checked_at: datetime = Field(default_factory=utc_now)


class ServiceStats(BaseModel):
    queue: QueueStats
    batch: BatchStats
    history: HistoryStats
    success_rate: float = 0.0
    uptime_ms: int = 0
    status: PipelineStatus
