"""Renderers turn messages into provider payloads."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence, Union

from notifier.notifications.models import Message

BATCH_PREVIEW_SIZE = 5


class Renderer(ABC):
    """Abstract base class for payload renderers.

    Receives a single message, or the ordered members of a batch group.
    """

    @abstractmethod
    def render(self, messages: Union[Message, Sequence[Message]]) -> Dict[str, Any]:
        pass


class PlainTextRenderer(Renderer):
    """Provider neutral ``{"title", "content", ...}`` payloads.

    Batches render as a summary listing the first five member titles.
    """

    def render(self, messages: Union[Message, Sequence[Message]]) -> Dict[str, Any]:
        if isinstance(messages, Message):
            return self._render_single(messages)
        members = list(messages)
        if not members:
            raise ValueError("Cannot render an empty batch")
        if len(members) == 1:
            return self._render_single(members[0])
        return self._render_batch(members)

    def _render_single(self, message: Message) -> Dict[str, Any]:
        return {
            "title": message.title,
            "content": message.content,
            "kind": message.kind.value,
            "priority": message.priority.value,
            "entity_key": message.entity_key,
        }

    def _render_batch(self, members: Sequence[Message]) -> Dict[str, Any]:
        kinds = {message.kind.value for message in members}
        kind_label = kinds.pop() if len(kinds) == 1 else "mixed"

        first = min(message.created_at for message in members)
        last = max(message.created_at for message in members)
        span_s = int((last - first).total_seconds())

        lines = [f"- {message.title}" for message in members[:BATCH_PREVIEW_SIZE]]
        remaining = len(members) - BATCH_PREVIEW_SIZE
        if remaining > 0:
            lines.append(f"... and {remaining} more")

        return {
            "title": f"{len(members)} {kind_label} notifications ({span_s}s window)",
            "content": "\n".join(lines),
            "kind": kind_label,
            "count": len(members),
            "entity_keys": [m.entity_key for m in members if m.entity_key],
        }
