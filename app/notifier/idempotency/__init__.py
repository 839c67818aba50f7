"""Idempotency primitives.

Public API:
    - IdempotencyCache: abstract cache interface
    - InMemoryIdempotencyCache: thread-safe TTL cache
    - IdempotencyKeyBuilder: deterministic namespaced keys
"""

from notifier.idempotency.cache import IdempotencyCache, InMemoryIdempotencyCache
from notifier.idempotency.key_builder import IdempotencyKeyBuilder

__all__ = [
    "IdempotencyCache",
    "InMemoryIdempotencyCache",
    "IdempotencyKeyBuilder",
]
