"""Notification pipeline errors and provider exception classification.

Converts exceptions raised by a DeliveryProvider into DeliveryResult
objects so the delivery queue can decide between retry and permanent
failure in one place.

Usage:
    from notifier.notifications.errors import classify_delivery_exception

    try:
        result = provider.send(payload)
    except Exception as exc:
        result = classify_delivery_exception(exc)
"""

from typing import Optional

from notifier.notifications.models import DeliveryError, DeliveryErrorCode, DeliveryResult


class NotificationPipelineError(Exception):
    """Base class for pipeline errors."""


class QueueFullError(NotificationPipelineError):
    """Raised by ``DeliveryQueue.enqueue`` when the pending list is at capacity.

    Surfaced synchronously as ``SubmitOutcome.REJECTED``; never retried
    internally.
    """

    def __init__(self, max_size: int):
        super().__init__(f"Delivery queue is full (max_size={max_size})")
        self.max_size = max_size


class ProviderDeliveryError(NotificationPipelineError):
    """Exception carrying an explicit DeliveryError classification.

    Providers raise it when they know whether a failure is retryable.

    Example:
        raise ProviderDeliveryError(
            DeliveryErrorCode.RATE_LIMITED,
            "429 from webhook",
            retryable=True,
            retry_after_ms=2000,
        )
    """

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool,
        retry_after_ms: Optional[int] = None,
    ):
        super().__init__(message)
        self.error = DeliveryError(
            code=code,
            message=message,
            retryable=retryable,
            retry_after_ms=retry_after_ms,
        )


class RateLimitedError(ProviderDeliveryError):
    def __init__(self, message: str = "Rate limited", retry_after_ms: Optional[int] = None):
        super().__init__(
            DeliveryErrorCode.RATE_LIMITED, message, retryable=True, retry_after_ms=retry_after_ms
        )


class ValidationFailedError(ProviderDeliveryError):
    def __init__(self, message: str = "Payload rejected by provider"):
        super().__init__(DeliveryErrorCode.VALIDATION_ERROR, message, retryable=False)


class UnauthorizedError(ProviderDeliveryError):
    def __init__(self, message: str = "Provider authentication failed"):
        super().__init__(DeliveryErrorCode.UNAUTHORIZED, message, retryable=False)


class RenderError(NotificationPipelineError):
    """Raised when a renderer cannot produce a payload."""


def classify_delivery_exception(exc: BaseException) -> DeliveryResult:
    """Classify a provider exception into a failed DeliveryResult.

    Mapping:
    - ProviderDeliveryError: keeps its own classification
    - RenderError: RENDER_ERROR (permanent)
    - TimeoutError: TIMEOUT (retryable)
    - PermissionError: UNAUTHORIZED (permanent)
    - ConnectionError / OSError: NETWORK_ERROR (retryable)
    - ValueError / TypeError: VALIDATION_ERROR (permanent)
    - Other: PROVIDER_ERROR (retryable)

    Args:
        exc: Exception raised while delivering

    Returns:
        DeliveryResult with success=False
    """
    if isinstance(exc, ProviderDeliveryError):
        return DeliveryResult(success=False, error=exc.error)

    description = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, RenderError):
        return DeliveryResult.failure(
            DeliveryErrorCode.RENDER_ERROR, description, retryable=False
        )

    if isinstance(exc, TimeoutError):
        return DeliveryResult.failure(DeliveryErrorCode.TIMEOUT, description, retryable=True)

    # PermissionError is an OSError subclass and must be checked first
    if isinstance(exc, PermissionError):
        return DeliveryResult.failure(
            DeliveryErrorCode.UNAUTHORIZED, description, retryable=False
        )

    if isinstance(exc, (ConnectionError, OSError)):
        return DeliveryResult.failure(
            DeliveryErrorCode.NETWORK_ERROR, description, retryable=True
        )

    if isinstance(exc, (ValueError, TypeError)):
        return DeliveryResult.failure(
            DeliveryErrorCode.VALIDATION_ERROR, description, retryable=False
        )

    return DeliveryResult.failure(DeliveryErrorCode.PROVIDER_ERROR, description, retryable=True)
