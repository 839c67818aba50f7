"""Event models for pipeline lifecycle notifications."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID, uuid4


class EventType:
    """Event type names emitted by the pipeline."""

    MESSAGE_QUEUED = "message.queued"
    MESSAGE_DELIVERED = "message.delivered"
    MESSAGE_RETRY_SCHEDULED = "message.retry_scheduled"
    MESSAGE_FAILED = "message.failed"
    MESSAGE_DEDUPLICATED = "message.deduplicated"
    BATCH_FLUSHED = "batch.flushed"
    BATCH_FAILED = "batch.failed"
    QUEUE_PAUSED = "queue.paused"
    QUEUE_RESUMED = "queue.resumed"
    PIPELINE_HEALTH_CHANGED = "pipeline.health_changed"

    ALL = (
        MESSAGE_QUEUED,
        MESSAGE_DELIVERED,
        MESSAGE_RETRY_SCHEDULED,
        MESSAGE_FAILED,
        MESSAGE_DEDUPLICATED,
        BATCH_FLUSHED,
        BATCH_FAILED,
        QUEUE_PAUSED,
        QUEUE_RESUMED,
        PIPELINE_HEALTH_CHANGED,
    )


@dataclass
class Event:
    """Record of something that happened inside the pipeline."""

    event_type: str
    """The type of event (e.g., 'message.delivered')."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """When the event occurred."""

    correlation_id: UUID = field(default_factory=uuid4)
    """Unique ID to track related events."""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Event specific fields (message_id, group_id, error, ...)."""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary with ISO timestamp and string UUID."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["correlation_id"] = str(self.correlation_id)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize event from dictionary.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        try:
            timestamp = data.get("timestamp")
            if isinstance(timestamp, str):
                timestamp = datetime.fromisoformat(timestamp)
            elif timestamp is None:
                timestamp = datetime.now(timezone.utc)

            correlation_id = data.get("correlation_id")
            if isinstance(correlation_id, str):
                correlation_id = UUID(correlation_id)
            elif correlation_id is None:
                correlation_id = uuid4()

            return cls(
                event_type=data["event_type"],
                timestamp=timestamp,
                correlation_id=correlation_id,
                metadata=data.get("metadata", {}),
            )
        except (KeyError, ValueError) as e:
            raise ValueError(f"Invalid event data: {e}") from e
