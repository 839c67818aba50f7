"""Test doubles for the notifier: inline executor and scripted provider."""

from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, List, Optional, Union

from notifier.notifications.models import DeliveryResult
from notifier.notifications.providers import DeliveryProvider

# 2023-11-14T22:13:20Z, aligned to every batch window used in tests
START_TIME = 1_700_000_000.0


class InlineExecutor(Executor):
    """Executor that runs submitted work immediately on the caller's thread."""

    def __init__(self):
        self.submitted = 0
        self.shutdown_called = False

    def submit(self, fn, /, *args, **kwargs):
        if self.shutdown_called:
            raise RuntimeError("cannot schedule new futures after shutdown")
        self.submitted += 1
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:  # pylint: disable=broad-except
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.shutdown_called = True


Outcome = Union[DeliveryResult, BaseException]


class ScriptedProvider(DeliveryProvider):
    """Provider returning scripted outcomes, then succeeding.

    Each scripted item is a DeliveryResult to return or an exception to
    raise. ``on_send`` runs before the outcome is produced, which lets a
    test move the virtual clock while a call is "in flight".
    """

    def __init__(self, outcomes: Optional[List[Outcome]] = None, name: str = "scripted"):
        self._name = name
        self.outcomes: List[Outcome] = list(outcomes or [])
        self.payloads: List[Dict[str, Any]] = []
        self.healthy = True
        self.on_send: Optional[Callable[[Dict[str, Any]], None]] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        return len(self.payloads)

    def script(self, *outcomes: Outcome) -> "ScriptedProvider":
        self.outcomes.extend(outcomes)
        return self

    def send(self, payload: Dict[str, Any]) -> DeliveryResult:
        self.payloads.append(payload)
        if self.on_send is not None:
            self.on_send(payload)
        if not self.outcomes:
            return DeliveryResult.ok(external_id=f"ext-{len(self.payloads)}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def health_check(self) -> bool:
        return self.healthy


def retryable_failure(
    code: str = "NETWORK_ERROR", retry_after_ms: Optional[int] = None
) -> DeliveryResult:
    return DeliveryResult.failure(
        code, "temporary failure", retryable=True, retry_after_ms=retry_after_ms
    )


def permanent_failure(code: str = "VALIDATION_ERROR") -> DeliveryResult:
    return DeliveryResult.failure(code, "rejected", retryable=False)
