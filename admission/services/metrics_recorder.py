"""Best-effort, non-blocking recording of admission outcomes.

Recording is scheduled on the running event loop and happens after the
decision has been returned. Failures are logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from admission.schemas.decision import MetricsReport, MetricsSummary

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, int] = {
    "1h": 3600,
    "24h": 86_400,
    "7d": 604_800,
}
DEFAULT_TIME_RANGE = "1h"


@dataclass(frozen=True)
class MetricEvent:
    limit_key: str
    limited: bool
    processing_time_ms: float
    recorded_at: float
    user_id: str | None = None
    ip: str | None = None


class MetricsRecorder:
    """Keeps a bounded buffer of recent outcomes and aggregates on demand."""

    def __init__(
        self,
        *,
        buffer_size: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._events: deque[MetricEvent] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._clock = clock
        self._dropped = 0

    def record(
        self,
        limit_key: str,
        *,
        limited: bool,
        processing_time_ms: float,
        user_id: str | None = None,
        ip: str | None = None,
    ) -> None:
        """Schedule recording of one outcome without blocking the caller."""

        event = MetricEvent(
            limit_key=limit_key,
            limited=limited,
            processing_time_ms=processing_time_ms,
            recorded_at=self._clock(),
            user_id=user_id,
            ip=ip,
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._store(event)
            return
        loop.call_soon(self._store, event)

    def _store(self, event: MetricEvent) -> None:
        try:
            with self._lock:
                if len(self._events) == self._events.maxlen:
                    self._dropped += 1
                self._events.append(event)
        except Exception as exc:  # noqa: BLE001 - metrics must never break admission
            logger.warning(
                "metrics.record_failed",
                extra={"limit_key": event.limit_key, "error_type": type(exc).__name__},
            )

    def summarize(
        self,
        limit_key: str | None = None,
        time_range: str = DEFAULT_TIME_RANGE,
    ) -> MetricsReport:
        """Aggregate recorded outcomes per limit key.

        Args:
            limit_key: Restrict to one limit key (all when None).
            time_range: One of ``1h``, ``24h``, ``7d``; unknown values mean ``1h``.

        Returns:
            Report with one summary per limit key, busiest first.
        """

        if time_range not in TIME_RANGES:
            time_range = DEFAULT_TIME_RANGE
        end = self._clock()
        start = end - TIME_RANGES[time_range]

        with self._lock:
            events = [
                e for e in self._events
                if e.recorded_at >= start and (limit_key is None or e.limit_key == limit_key)
            ]

        grouped: dict[str, list[MetricEvent]] = {}
        for event in events:
            grouped.setdefault(event.limit_key, []).append(event)

        summaries = [
            MetricsSummary(
                limit_key=key,
                total=len(items),
                limited=sum(1 for e in items if e.limited),
                avg_latency_ms=round(sum(e.processing_time_ms for e in items) / len(items), 3),
                max_latency_ms=round(max(e.processing_time_ms for e in items), 3),
            )
            for key, items in grouped.items()
        ]
        summaries.sort(key=lambda s: s.total, reverse=True)

        return MetricsReport(time_range=time_range, start=start, end=end, metrics=summaries)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"buffered": len(self._events), "dropped": self._dropped}
