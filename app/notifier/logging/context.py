"""Delivery context binding for structured logging.

Binds message-scoped context (message id, correlation id, attempt) so that
every log line emitted while a message is being delivered carries it.

Usage:
    from notifier.logging import bind_delivery_context

    with bind_delivery_context(message_id="msg-1", attempt=2):
        logger.info("delivery_attempt_started")
"""

import uuid
from contextlib import contextmanager
from typing import Any, Generator, Optional

import structlog


@contextmanager
def bind_delivery_context(
    message_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra_context: Any,
) -> Generator[None, None, None]:
    """Bind delivery-scoped context to all logs within the block.

    Args:
        message_id: Id of the message being processed.
        correlation_id: Correlation identifier. Auto-generated if not provided.
        **extra_context: Additional key-value pairs to include in logs.

    Yields:
        None - context is bound to structlog's context vars.
    """
    context: dict[str, Any] = {"correlation_id": correlation_id or str(uuid.uuid4())}

    if message_id is not None:
        context["message_id"] = message_id

    context.update(extra_context)

    tokens = structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        # Restores any values bound by an enclosing block
        structlog.contextvars.reset_contextvars(**tokens)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from the logging context."""
    ctx = structlog.contextvars.get_contextvars()
    return ctx.get("correlation_id")


def clear_delivery_context() -> None:
    """Clear all bound context.

    Worker threads call this between messages to prevent context leakage.
    """
    structlog.contextvars.clear_contextvars()
