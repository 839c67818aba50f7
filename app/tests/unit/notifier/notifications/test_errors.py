"""Unit tests for provider exception classification."""

import pytest

from notifier.notifications.errors import (
    ProviderDeliveryError,
    QueueFullError,
    RateLimitedError,
    RenderError,
    UnauthorizedError,
    ValidationFailedError,
    classify_delivery_exception,
)
from notifier.notifications.models import DeliveryErrorCode


@pytest.mark.unit
class TestClassifyDeliveryException:
    @pytest.mark.parametrize(
        "exc,code,retryable",
        [
            (TimeoutError("slow"), DeliveryErrorCode.TIMEOUT, True),
            (ConnectionResetError("reset"), DeliveryErrorCode.NETWORK_ERROR, True),
            (OSError("unreachable"), DeliveryErrorCode.NETWORK_ERROR, True),
            (PermissionError("denied"), DeliveryErrorCode.UNAUTHORIZED, False),
            (ValueError("bad payload"), DeliveryErrorCode.VALIDATION_ERROR, False),
            (TypeError("bad type"), DeliveryErrorCode.VALIDATION_ERROR, False),
            (RenderError("template"), DeliveryErrorCode.RENDER_ERROR, False),
            (RuntimeError("unknown"), DeliveryErrorCode.PROVIDER_ERROR, True),
        ],
    )
    def test_builtin_exceptions(self, exc, code, retryable):
        result = classify_delivery_exception(exc)

        assert result.success is False
        assert result.error.code == code
        assert result.error.retryable is retryable
        assert type(exc).__name__ in result.error.message

    def test_provider_error_keeps_classification(self):
        exc = ProviderDeliveryError("CUSTOM", "quota exhausted", retryable=False)

        result = classify_delivery_exception(exc)

        assert result.error.code == "CUSTOM"
        assert result.error.message == "quota exhausted"
        assert result.retryable is False

    def test_rate_limited_carries_retry_after(self):
        result = classify_delivery_exception(RateLimitedError(retry_after_ms=2500))

        assert result.error.code == DeliveryErrorCode.RATE_LIMITED
        assert result.retryable is True
        assert result.error.retry_after_ms == 2500

    @pytest.mark.parametrize(
        "exc,code",
        [
            (ValidationFailedError(), DeliveryErrorCode.VALIDATION_ERROR),
            (UnauthorizedError(), DeliveryErrorCode.UNAUTHORIZED),
        ],
    )
    def test_permanent_provider_errors(self, exc, code):
        result = classify_delivery_exception(exc)

        assert result.error.code == code
        assert result.retryable is False


@pytest.mark.unit
class TestQueueFullError:
    def test_message_includes_capacity(self):
        exc = QueueFullError(max_size=10)

        assert exc.max_size == 10
        assert "max_size=10" in str(exc)
