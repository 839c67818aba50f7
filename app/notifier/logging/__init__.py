"""Structured logging infrastructure.

Centralized structlog configuration for the notifier.

Public API:
    - configure_logging(): Initialize logging
    - get_logger(): Get a logger instance with a specific name
    - get_module_logger(): Get a logger for the calling module
    - bind_delivery_context(): Context manager for message-scoped logging
    - get_correlation_id(): Get current correlation ID from context
    - clear_delivery_context(): Clear all bound context

Example:
    from notifier.logging import configure_logging, get_module_logger

    configure_logging()
    logger = get_module_logger()
    logger.info("pipeline_started")
"""

from notifier.logging.setup import (
    configure_logging,
    get_logger,
    get_module_logger,
)

from notifier.logging.context import (
    bind_delivery_context,
    get_correlation_id,
    clear_delivery_context,
)

from notifier.logging.formatters import (
    add_service_info,
    mask_sensitive_data,
    truncate_large_values,
    SENSITIVE_PATTERNS,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "get_module_logger",
    "bind_delivery_context",
    "get_correlation_id",
    "clear_delivery_context",
    "add_service_info",
    "mask_sensitive_data",
    "truncate_large_values",
    "SENSITIVE_PATTERNS",
]
