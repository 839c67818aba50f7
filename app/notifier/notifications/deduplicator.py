"""Duplicate suppression for incoming messages.

A message is a duplicate when, inside the deduplication window, either:
- an earlier message produced the same exact key, or
- it carries no entity key and its word set is similar enough (Jaccard
  index >= threshold) to an earlier message of the same kind.

The exact key is ``(kind, entity_key)`` when the producer supplies an entity
key, otherwise ``(kind, title, content[:100])``.

History is an insertion-ordered map, so expired entries are popped from the
front on each check. It is also capped at ``max_history`` entries.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional

from notifier.idempotency import IdempotencyKeyBuilder
from notifier.logging import get_module_logger
from notifier.notifications.config import DeduplicationConfig
from notifier.notifications.models import Message, MessageKind

logger = get_module_logger()

CONTENT_KEY_LENGTH = 100


def tokenize(text: str) -> FrozenSet[str]:
    return frozenset(text.lower().split())


def jaccard_similarity(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


@dataclass
class _SeenMessage:
    message_id: str
    kind: MessageKind
    entity_key: Optional[str]
    tokens: FrozenSet[str]
    seen_at: float


class Deduplicator:
    """Bounded, time-windowed record of recently seen messages.

    Args:
        config: Deduplication window, similarity threshold and history cap
        clock: Callable returning the current time in seconds
    """

    def __init__(
        self,
        config: Optional[DeduplicationConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or DeduplicationConfig()
        self._clock = clock or time.time
        self._keys = IdempotencyKeyBuilder(namespace="dedup")
        self._history: "OrderedDict[str, _SeenMessage]" = OrderedDict()
        self._lock = threading.Lock()

    def exact_key(self, message: Message) -> str:
        if message.entity_key:
            return self._keys.from_fields("entity", message, ("kind", "entity_key"))
        return self._keys.from_fields(
            "content",
            message,
            ("kind", "title"),
            content=message.content[:CONTENT_KEY_LENGTH],
        )

    def is_duplicate(self, message: Message) -> bool:
        with self._lock:
            self._prune(self._clock())
            return self._find_match(message) is not None

    def remember(self, message: Message) -> None:
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._remember(message, now)

    def check_and_remember(self, message: Message) -> bool:
        """Atomically test a message and remember it when it is new.

        Returns:
            True if the message is a duplicate
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            match = self._find_match(message)
            if match is not None:
                logger.info(
                    "message_deduplicated",
                    message_id=message.id,
                    kind=message.kind.value,
                    entity_key=message.entity_key,
                    original_message_id=match.message_id,
                )
                return True
            self._remember(message, now)
            return False

    def forget(self, message: Message) -> bool:
        """Drop a remembered message so the producer can submit it again."""
        key = self.exact_key(message)
        with self._lock:
            seen = self._history.get(key)
            if seen is None or seen.message_id != message.id:
                return False
            del self._history[key]
            return True

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._history)

    def _find_match(self, message: Message) -> Optional[_SeenMessage]:
        exact = self._history.get(self.exact_key(message))
        if exact is not None:
            return exact

        # Fuzzy matching only applies without a producer supplied identity
        if message.entity_key:
            return None

        tokens = tokenize(f"{message.title} {message.content}")
        threshold = self.config.similarity_threshold
        for seen in self._history.values():
            if seen.kind is not message.kind:
                continue
            if jaccard_similarity(tokens, seen.tokens) >= threshold:
                return seen
        return None

    def _remember(self, message: Message, now: float) -> None:
        key = self.exact_key(message)
        self._history.pop(key, None)
        self._history[key] = _SeenMessage(
            message_id=message.id,
            kind=message.kind,
            entity_key=message.entity_key,
            tokens=tokenize(f"{message.title} {message.content}"),
            seen_at=now,
        )
        while len(self._history) > self.config.max_history:
            self._history.popitem(last=False)

    def _prune(self, now: float) -> None:
        window_s = self.config.deduplication_window_ms / 1000
        while self._history:
            oldest = next(iter(self._history.values()))
            if now - oldest.seen_at <= window_s:
                break
            self._history.popitem(last=False)
