"""Structlog configuration for the notifier.

Every component logs snake_case events with keyword context through a
module logger. Delivery workers add ``message_id`` and ``correlation_id``
via ``bind_delivery_context``, which ``merge_contextvars`` folds into each
event. Output is console-rendered in development and JSON in production.

Usage:
    from notifier.logging import get_module_logger

    logger = get_module_logger()
    logger.info("message_enqueued", message_id=message.id, queue_size=3)
"""

import inspect
import logging
import sys
from typing import TYPE_CHECKING, Any, Callable, List, Optional

import structlog
from structlog.stdlib import BoundLogger

from notifier.logging.formatters import (
    add_service_info,
    mask_sensitive_data,
    truncate_large_values,
)

if TYPE_CHECKING:
    from notifier.configuration import Settings

SERVICE_NAME = "notifier"

Processor = Callable[..., Any]


def _is_test_environment() -> bool:
    """True when running under pytest."""
    return "pytest" in sys.modules


def _service_version() -> str:
    from notifier import __version__

    return __version__


def build_processors(
    prod_mode: bool, extra_processors: Optional[List[Processor]] = None
) -> List[Processor]:
    """Processor chain shared by every notifier logger.

    Masking and truncation run after exception formatting so tracebacks are
    bounded too; the renderer is always last.
    """
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_info(SERVICE_NAME, _service_version()),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ]
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        mask_sensitive_data(),
        truncate_large_values(),
    ]
    processors.extend(extra_processors or [])
    if prod_mode:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(
    settings: Optional["Settings"] = None,
    log_level: Optional[str] = None,
    is_production: Optional[bool] = None,
    extra_processors: Optional[List[Processor]] = None,
) -> BoundLogger:
    """Configure structlog and the stdlib root logger.

    Under pytest all output is suppressed and ``settings`` is not read.

    Args:
        settings: Settings instance. Defaults to the cached singleton.
        log_level: Override for ``settings.LOG_LEVEL``.
        is_production: Override for ``settings.is_production`` (JSON output).
        extra_processors: Processors inserted right before the renderer.

    Returns:
        Configured logger instance
    """
    if _is_test_environment():
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        logging.basicConfig(
            format="%(message)s", level=logging.CRITICAL + 1, force=True
        )
        return structlog.stdlib.get_logger()

    if settings is None:
        from notifier.configuration import get_settings

        settings = get_settings()

    prod_mode = settings.is_production if is_production is None else is_production
    level_name = (log_level or settings.LOG_LEVEL).upper()

    structlog.configure(
        processors=build_processors(prod_mode, extra_processors),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )
    return structlog.stdlib.get_logger()


# Module-level logger (auto-configured on import)
logger: BoundLogger = configure_logging()


def _caller_module_name() -> Optional[str]:
    # Two frames up: past this helper and the public function calling it
    frame = inspect.currentframe()
    caller = frame.f_back.f_back if frame and frame.f_back else None
    module = inspect.getmodule(caller) if caller else None
    return module.__name__ if module else None


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Logger bound to ``name``, or to the calling module's name."""
    return logger.bind(logger_name=name or _caller_module_name() or "unknown")


def get_module_logger() -> BoundLogger:
    """Logger for the calling module.

    Example:
        # In notifier/notifications/queue.py
        logger = get_module_logger()
        # context: {"component": "queue", "module_path": "notifier.notifications.queue"}
    """
    module_name = _caller_module_name()
    if module_name is None:
        return logger.bind(component="unknown")
    return logger.bind(component=module_name.rsplit(".", 1)[-1], module_path=module_name)
