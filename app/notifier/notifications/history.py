"""Delivery history store.

Keeps one HistoryEntry per terminal delivery outcome, bounded by entry count
and by age. Retention is enforced after every ``record``: the oldest entries
by ``sent_at`` go first when the count cap is exceeded, and any entry older
than ``retention_days`` is dropped.

Analytics from ``stats`` are cached per time range and invalidated on every
write. The recovery surface (``failed_notifications`` and
``mark_recovered``) updates entries in place, keeping the previous outcomes
in ``attempt_log``.
"""

import csv
import io
import json
import math
import threading
import time
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from notifier.logging import get_module_logger
from notifier.notifications.config import HistoryConfig
from notifier.notifications.models import (
    AttemptRecord,
    DeliveryResult,
    EntityCount,
    HistoryEntry,
    HistoryFilters,
    HistoryInsights,
    HistoryStats,
    HistoryStatus,
    HourlyTrend,
    PerformanceIssue,
    from_epoch,
)
from notifier.notifications.persistence import SnapshotStore

logger = get_module_logger()

TOP_ENTITIES = 10
SLOW_PROCESSING_MS = 5000

CSV_COLUMNS = [
    "message_id",
    "kind",
    "provider",
    "status",
    "sent_at",
    "attempts",
    "processing_time_ms",
    "error_code",
    "error",
    "entity_key",
    "batch_member_ids",
    "recovered_at",
]

TimeRange = Tuple[Optional[datetime], Optional[datetime]]


def nearest_rank(sorted_values: List[float], percentile: float) -> float:
    """Nearest-rank percentile of an ascending list (0 for an empty list)."""
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(percentile / 100 * len(sorted_values)))
    return sorted_values[rank - 1]


class HistoryStore:
    """Bounded, queryable record of delivery outcomes.

    Args:
        config: Retention, cache and persistence settings
        clock: Callable returning the current time in seconds
    """

    def __init__(
        self,
        config: Optional[HistoryConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or HistoryConfig()
        self._clock = clock or time.time
        self._entries: "OrderedDict[str, HistoryEntry]" = OrderedDict()
        self._stats_cache: Dict[Any, Tuple[float, HistoryStats]] = {}
        self._snapshot = SnapshotStore(self.config.persistence_path, name="history")
        self._lock = threading.RLock()

    def _now(self) -> datetime:
        return from_epoch(self._clock())

    def record(self, entry: HistoryEntry) -> None:
        """Record a terminal outcome and enforce retention."""
        with self._lock:
            self._insert(entry)
            evicted = self._enforce_retention()
            self._stats_cache.clear()

        logger.debug(
            "history_entry_recorded",
            message_id=entry.message_id,
            status=entry.status.value,
            attempts=entry.attempts,
            evicted=evicted,
        )

    def get(self, message_id: str) -> Optional[HistoryEntry]:
        with self._lock:
            entry = self._entries.get(message_id)
            return entry.model_copy(deep=True) if entry else None

    def query(
        self, filters: Optional[HistoryFilters] = None, **criteria: Any
    ) -> List[HistoryEntry]:
        """Entries matching the filters, newest first.

        Filters may be given as a HistoryFilters or as keyword arguments.
        """
        filters = filters or HistoryFilters(**criteria)
        with self._lock:
            matched = [
                entry
                for entry in reversed(self._entries.values())
                if self._matches(entry, filters)
            ]
            end = None if filters.limit is None else filters.offset + filters.limit
            return [entry.model_copy(deep=True) for entry in matched[filters.offset : end]]

    def failed_notifications(
        self, filters: Optional[HistoryFilters] = None, **criteria: Any
    ) -> List[HistoryEntry]:
        """Failed entries eligible for recovery.

        ``max_retries`` excludes entries whose attempts already reached it.
        """
        filters = filters or HistoryFilters(**criteria)
        return self.query(filters.model_copy(update={"status": HistoryStatus.FAILED}))

    def mark_recovered(
        self, message_id: str, result: DeliveryResult
    ) -> Optional[HistoryEntry]:
        """Apply the outcome of a recovery attempt to the existing entry.

        The entry is updated in place; its previous outcome is appended to
        ``attempt_log``. No new entry is created.

        Returns:
            The updated entry, or None if the message id is unknown
        """
        with self._lock:
            entry = self._entries.get(message_id)
            if entry is None:
                logger.warning("history_entry_not_found", message_id=message_id)
                return None

            entry.attempt_log.append(
                AttemptRecord(
                    status=entry.status,
                    attempts=entry.attempts,
                    error=entry.error,
                    error_code=entry.error_code,
                    recorded_at=entry.recovered_at or entry.sent_at,
                )
            )
            entry.attempts += 1
            if result.success:
                entry.status = HistoryStatus.SENT
                entry.error = None
                entry.error_code = None
            else:
                entry.status = HistoryStatus.FAILED
                entry.error = result.error.message if result.error else "Unknown error"
                entry.error_code = result.error.code if result.error else None
            entry.recovered_at = self._now()
            self._stats_cache.clear()
            updated = entry.model_copy(deep=True)

        logger.info(
            "history_entry_recovered",
            message_id=message_id,
            status=updated.status.value,
            attempts=updated.attempts,
        )
        return updated

    def stats(self, time_range: Optional[TimeRange] = None) -> HistoryStats:
        """Analytics over all entries, or over ``(start, end)``."""
        cache_key = None
        window = None
        if time_range is not None:
            window = HistoryFilters(start=time_range[0], end=time_range[1])
            cache_key = (
                window.start.isoformat() if window.start else None,
                window.end.isoformat() if window.end else None,
            )

        now = self._clock()
        with self._lock:
            cached = self._stats_cache.get(cache_key)
            if cached is not None and cached[0] > now:
                return cached[1].model_copy(deep=True)

            if window is None:
                entries = list(self._entries.values())
            else:
                entries = [
                    entry
                    for entry in self._entries.values()
                    if self._matches(entry, window)
                ]
            stats = self._compute_stats(entries)
            self._stats_cache[cache_key] = (
                now + self.config.stats_cache_ttl_ms / 1000,
                stats,
            )
            return stats.model_copy(deep=True)

    def insights(self, lookback_hours: float = 24) -> HistoryInsights:
        """Success trend by hour, busiest entities and performance issues."""
        start = self._now() - timedelta(hours=lookback_hours)
        entries = self.query(start=start)
        insights = HistoryInsights(lookback_hours=lookback_hours)
        if not entries:
            return insights

        hourly: Dict[int, List[int]] = {}
        for entry in entries:
            bucket = hourly.setdefault(entry.sent_at.hour, [0, 0])
            bucket[0] += 1
            if entry.status is HistoryStatus.SENT:
                bucket[1] += 1
        insights.success_trends = [
            HourlyTrend(hour=hour, total=total, success_rate=sent / total)
            for hour, (total, sent) in sorted(hourly.items())
        ]
        insights.top_entities = self._top_entities(entries)

        total = len(entries)
        failed = sum(1 for e in entries if e.status is HistoryStatus.FAILED)
        slow = sum(1 for e in entries if (e.processing_time_ms or 0) > SLOW_PROCESSING_MS)
        retried = sum(1 for e in entries if e.attempts > 1)

        if failed > total * 0.1:
            insights.performance_issues.append(
                PerformanceIssue(
                    issue="High failure rate detected",
                    severity="high" if failed > total * 0.2 else "medium",
                    count=failed,
                )
            )
        if slow > total * 0.05:
            insights.performance_issues.append(
                PerformanceIssue(
                    issue="Slow processing times detected",
                    severity="medium" if slow > total * 0.1 else "low",
                    count=slow,
                )
            )
        if retried > total * 0.15:
            insights.performance_issues.append(
                PerformanceIssue(issue="High retry rate detected", severity="medium", count=retried)
            )

        issues = " ".join(issue.issue.lower() for issue in insights.performance_issues)
        if "failure" in issues:
            insights.recommendations.append("Check provider credentials and connectivity")
        if "slow" in issues:
            insights.recommendations.append(
                "Reduce payload size or enable batching for peak periods"
            )
        if "retry" in issues:
            insights.recommendations.append("Review provider rate limits and retry delays")
        if insights.top_entities:
            busiest = ", ".join(e.entity_key for e in insights.top_entities[:3])
            insights.recommendations.append(f"Most notified entities: {busiest}")
        return insights

    def export(self, fmt: str = "json", filters: Optional[HistoryFilters] = None) -> str:
        """Export entries (newest first) as a JSON array or CSV text."""
        entries = self.query(filters)
        if fmt == "json":
            return json.dumps([entry.model_dump(mode="json") for entry in entries])
        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for entry in entries:
                row = entry.model_dump(mode="json", include=set(CSV_COLUMNS))
                row["batch_member_ids"] = ";".join(entry.batch_member_ids)
                writer.writerow(row)
            return buffer.getvalue()
        raise ValueError(f"Unsupported export format: {fmt}")

    def clear_older_than(self, days: float) -> int:
        """Remove entries older than ``days``.

        Returns:
            Number of entries removed
        """
        cutoff = self._now() - timedelta(days=days)
        with self._lock:
            removed = self._evict_before(cutoff)
            if removed:
                self._stats_cache.clear()
        logger.info("history_entries_cleared", days=days, removed=removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._stats_cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def persist(self) -> bool:
        """Write the ``{entries, timestamp, version}`` snapshot."""
        with self._lock:
            entries = [entry.model_dump(mode="json") for entry in self._entries.values()]
        return self._snapshot.save({"entries": entries})

    def load(self) -> int:
        """Restore entries from the snapshot.

        Returns:
            Number of entries restored
        """
        document = self._snapshot.load()
        if not document:
            return 0

        restored = 0
        with self._lock:
            for raw in document.get("entries", []):
                try:
                    self._insert(HistoryEntry.model_validate(raw))
                    restored += 1
                except ValidationError as e:
                    logger.warning("history_entry_invalid", error=str(e))
            self._enforce_retention()
            self._stats_cache.clear()

        logger.info("history_loaded", entries=restored)
        return restored

    def _insert(self, entry: HistoryEntry) -> None:
        self._entries.pop(entry.message_id, None)
        newest = next(reversed(self._entries.values()), None)
        self._entries[entry.message_id] = entry
        if newest is not None and entry.sent_at < newest.sent_at:
            ordered = sorted(self._entries.values(), key=lambda e: e.sent_at)
            self._entries = OrderedDict((e.message_id, e) for e in ordered)

    def _enforce_retention(self) -> int:
        evicted = 0
        while len(self._entries) > self.config.max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        cutoff = self._now() - timedelta(days=self.config.retention_days)
        return evicted + self._evict_before(cutoff)

    def _evict_before(self, cutoff: datetime) -> int:
        evicted = 0
        while self._entries:
            oldest = next(iter(self._entries.values()))
            if oldest.sent_at >= cutoff:
                break
            self._entries.popitem(last=False)
            evicted += 1
        return evicted

    @staticmethod
    def _matches(entry: HistoryEntry, filters: HistoryFilters) -> bool:
        if filters.start is not None and entry.sent_at < filters.start:
            return False
        if filters.end is not None and entry.sent_at > filters.end:
            return False
        if filters.status is not None and entry.status is not filters.status:
            return False
        if filters.provider is not None and entry.provider != filters.provider:
            return False
        if filters.kind is not None and entry.kind is not filters.kind:
            return False
        if filters.entity_key is not None and entry.entity_key != filters.entity_key:
            return False
        if filters.message_id is not None and not entry.involves(filters.message_id):
            return False
        if filters.max_retries is not None and entry.attempts >= filters.max_retries:
            return False
        return True

    @staticmethod
    def _top_entities(entries: List[HistoryEntry]) -> List[EntityCount]:
        counts = Counter(entry.entity_key for entry in entries if entry.entity_key)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [EntityCount(entity_key=key, count=count) for key, count in ranked[:TOP_ENTITIES]]

    def _compute_stats(self, entries: List[HistoryEntry]) -> HistoryStats:
        total = len(entries)
        by_status = Counter(entry.status for entry in entries)
        by_kind = Counter(entry.kind.value for entry in entries)
        by_hour = Counter(entry.sent_at.hour for entry in entries)
        failure_reasons = Counter(
            entry.error_code or entry.error or "UNKNOWN"
            for entry in entries
            if entry.status is HistoryStatus.FAILED
        )
        durations = sorted(
            entry.processing_time_ms
            for entry in entries
            if entry.processing_time_ms is not None
        )

        sent = by_status.get(HistoryStatus.SENT, 0)
        return HistoryStats(
            total=total,
            sent=sent,
            failed=by_status.get(HistoryStatus.FAILED, 0),
            cancelled=by_status.get(HistoryStatus.CANCELLED, 0),
            success_rate=sent / total if total else 0.0,
            average_processing_time_ms=sum(durations) / len(durations) if durations else 0.0,
            p50_processing_time_ms=nearest_rank(durations, 50),
            p95_processing_time_ms=nearest_rank(durations, 95),
            p99_processing_time_ms=nearest_rank(durations, 99),
            by_kind=dict(by_kind),
            by_hour=dict(by_hour),
            failure_reasons=dict(failure_reasons),
            top_entities=self._top_entities(entries),
            generated_at=self._now(),
        )
