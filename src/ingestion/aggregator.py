"""
Rolling aggregates and bucketed time series over the ingestion buffer.
"""

from collections.abc import Iterable
from datetime import datetime

import pandas as pd
import structlog

from .models import (
    CustomerUsage,
    MetricEvent,
    TimeBucket,
    WindowSnapshot,
    from_epoch_ms,
    to_epoch_ms,
    utc_now,
)

logger = structlog.get_logger(__name__)

FRAME_COLUMNS = ["timestamp_ms", "customer_id", "tokens", "cost", "calls", "latency"]


def events_to_frame(events: Iterable[MetricEvent]) -> pd.DataFrame:
    """Flatten events into a DataFrame with one row per event"""
    rows = [
        (
            event.timestamp_ms,
            event.customer_id,
            event.metrics.total_tokens,
            event.metrics.total_cost,
            event.metrics.total_calls,
            event.metrics.avg_latency_ms,
        )
        for event in events
    ]
    return pd.DataFrame.from_records(rows, columns=FRAME_COLUMNS)


class WindowedAggregator:
    """Recomputes window totals and the time series from the full buffer

    Only events whose timestamp lies in ``[now - window, now]`` contribute;
    older events may remain buffered but are ignored here.
    """

    def __init__(self, window_seconds: float = 300.0, bucket_ms: int = 5000, max_buckets: int = 60):
        self.window_ms = int(window_seconds * 1000)
        self.bucket_ms = bucket_ms
        self.max_buckets = max_buckets
        self._snapshot = WindowSnapshot()

    @property
    def snapshot(self) -> WindowSnapshot:
        return self._snapshot

    def reset(self) -> None:
        self._snapshot = WindowSnapshot()

    def recompute(
        self, events: Iterable[MetricEvent], now: datetime | None = None
    ) -> WindowSnapshot:
        """Recompute aggregates at wall-clock ``now``

        Args:
            events: Every buffered event, in any timestamp order
            now: End of the window. Defaults to the current UTC time.

        Returns:
            The new snapshot, also kept as ``self.snapshot``
        """
        frame = events_to_frame(events)
        if frame.empty:
            self._snapshot = WindowSnapshot()
            return self._snapshot

        now_ms = to_epoch_ms(now or utc_now())
        recent = frame.loc[frame["timestamp_ms"].between(now_ms - self.window_ms, now_ms)]
        count = len(recent)

        if count == 0:
            self._snapshot = WindowSnapshot()
            return self._snapshot

        self._snapshot = WindowSnapshot(
            total_cost=float(recent["cost"].sum()),
            total_tokens=int(recent["tokens"].sum()),
            total_calls=int(recent["calls"].sum()),
            avg_latency=float(recent["latency"].sum()) / count,
            event_count=count,
            time_series=self._bucketize(recent),
        )

        logger.debug(
            "Aggregates recomputed",
            buffered=len(frame),
            recent=count,
            buckets=len(self._snapshot.time_series),
        )
        return self._snapshot

    def _bucketize(self, recent: pd.DataFrame) -> tuple[TimeBucket, ...]:
        """Sum events per fixed-width slot, keeping the newest ``max_buckets`` slots"""
        keys = ((recent["timestamp_ms"] // self.bucket_ms) * self.bucket_ms).rename("bucket")
        grouped = (
            recent.groupby(keys)[["tokens", "cost", "calls"]]
            .sum()
            .sort_index()
            .tail(self.max_buckets)
        )
        return tuple(
            TimeBucket(
                bucket_start=from_epoch_ms(row.Index),
                tokens=int(row.tokens),
                cost=float(row.cost),
                calls=int(row.calls),
            )
            for row in grouped.itertuples()
        )


def top_customers(events: Iterable[MetricEvent], limit: int = 10) -> list[CustomerUsage]:
    """Rank customers by total cost over the given events (highest first)"""
    frame = events_to_frame(events)
    if frame.empty:
        return []

    totals = (
        frame.groupby("customer_id")[["cost", "tokens", "calls"]]
        .sum()
        .sort_values("cost", ascending=False, kind="stable")
        .head(limit)
    )
    return [
        CustomerUsage(
            customer_id=str(row.Index),
            total_cost=float(row.cost),
            total_tokens=int(row.tokens),
            total_calls=int(row.calls),
        )
        for row in totals.itertuples()
    ]
