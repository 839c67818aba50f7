"""Deterministic keys for deduplication and enqueue-time equivalence."""

import hashlib
import json
from enum import Enum
from typing import Any, Iterable

DIGEST_LENGTH = 16


def _canonical(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


class IdempotencyKeyBuilder:
    """Build namespaced keys from message fields.

    Components are encoded as canonical JSON, so nested metadata dicts hash
    the same regardless of insertion order. ``None`` components are left
    out, which lets optional fields such as ``entity_key`` be passed
    unconditionally.

    Example:
        >>> keys = IdempotencyKeyBuilder(namespace="dedup")
        >>> keys.from_fields("entity", message, ("kind", "entity_key"))
        'dedup:entity:...'
    """

    def __init__(self, namespace: str, digest_length: int = DIGEST_LENGTH):
        if not namespace or ":" in namespace:
            raise ValueError("namespace must be non-empty and contain no ':'")
        self.namespace = namespace
        self.digest_length = digest_length

    def build(self, operation: str, **components: Any) -> str:
        present = {k: v for k, v in components.items() if v is not None}
        encoded = json.dumps(
            [self.namespace, operation, present],
            sort_keys=True,
            separators=(",", ":"),
            default=_canonical,
        )
        digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
        return f"{self.namespace}:{operation}:{digest[: self.digest_length]}"

    def from_fields(
        self, operation: str, source: Any, fields: Iterable[str], **overrides: Any
    ) -> str:
        """Build a key from attributes of ``source``.

        Args:
            operation: Key family, e.g. "entity" or "content"
            source: Object the fields are read from, usually a Message
            fields: Attribute names to include
            **overrides: Components that replace or add to the read fields,
                e.g. a truncated ``content``
        """
        components = {name: getattr(source, name) for name in fields}
        components.update(overrides)
        return self.build(operation, **components)
