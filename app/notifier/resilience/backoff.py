"""Exponential backoff policy for delivery retries."""

from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff.

    The delay before retry ``n`` (zero-based, i.e. the number of retries
    already performed) is ``base_delay_ms * multiplier ** n`` capped at
    ``max_delay_ms``. A provider supplied ``retry_after_ms`` always wins.

    Attributes:
        base_delay_ms: Delay before the first retry
        multiplier: Growth factor between successive retries
        max_delay_ms: Upper bound for any computed delay

    Example:
        policy = BackoffPolicy(base_delay_ms=5000, multiplier=2.0, max_delay_ms=60000)
        policy.delay_for(0)  # 5000
        policy.delay_for(3)  # 40000
        policy.delay_for(4)  # 60000 (capped)
    """

    base_delay_ms: int = 5000
    multiplier: float = 2.0
    max_delay_ms: int = 60000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")

    def delay_for(self, retry_count: int, retry_after_ms: Optional[int] = None) -> int:
        """Delay in milliseconds before the next attempt.

        Args:
            retry_count: Retries already performed for the message
            retry_after_ms: Provider hint, used verbatim when given

        Returns:
            Delay in milliseconds
        """
        if retry_after_ms is not None:
            return max(0, int(retry_after_ms))
        if retry_count < 0:
            raise ValueError("retry_count must be non-negative")

        delay = self.base_delay_ms * (self.multiplier**retry_count)
        return int(min(delay, self.max_delay_ms))

    def schedule(self, max_retries: int) -> Iterator[int]:
        """Yield the delays for retries ``0 .. max_retries - 1``."""
        for retry_count in range(max_retries):
            yield self.delay_for(retry_count)
