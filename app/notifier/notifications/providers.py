"""Delivery provider abstract base class and built-in providers.

The pipeline is provider agnostic. Webhook or chat specifics live entirely
in a DeliveryProvider implementation.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from notifier.logging import get_module_logger
from notifier.notifications.models import DeliveryResult

logger = get_module_logger()


class DeliveryProvider(ABC):
    """Abstract base class for delivery providers.

    ``send`` is called from executor threads, at most ``concurrency`` calls
    at a time. It may return a failed DeliveryResult or raise; raised
    exceptions are classified by ``classify_delivery_exception``.

    Example Implementation:
        class WebhookProvider(DeliveryProvider):

            @property
            def name(self) -> str:
                return "webhook"

            def send(self, payload):
                response = self._session.post(self._url, json=payload)
                if response.status_code == 429:
                    raise RateLimitedError(retry_after_ms=...)
                return DeliveryResult.ok(external_id=response.json()["id"])
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier recorded in history entries."""
        pass

    @abstractmethod
    def send(self, payload: Dict[str, Any]) -> DeliveryResult:
        """Transmit a rendered payload.

        Args:
            payload: Rendered payload produced by a Renderer

        Returns:
            DeliveryResult describing the outcome
        """
        pass

    def health_check(self) -> bool:
        """Check provider health. Providers without a health endpoint report healthy."""
        return True


class DryRunProvider(DeliveryProvider):
    """Provider that logs payloads instead of sending them.

    Used for local runs. Sent payloads are kept for inspection.
    """

    def __init__(self, name: str = "dry_run"):
        self._name = name
        self._lock = threading.Lock()
        self.sent: List[Dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    def send(self, payload: Dict[str, Any]) -> DeliveryResult:
        external_id = f"dry-run-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self.sent.append(payload)
        logger.info(
            "dry_run_delivery",
            provider=self._name,
            external_id=external_id,
            title=payload.get("title"),
        )
        return DeliveryResult.ok(external_id=external_id, dry_run=True)
