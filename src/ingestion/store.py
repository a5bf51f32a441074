"""
Shared dashboard state: buffer, aggregates, anomalies, status and config.
"""

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

import structlog

from .aggregator import WindowedAggregator, top_customers
from .buffer import IngestionBuffer
from .detector import AnomalyDetector
from .models import (
    Anomaly,
    ConnectionStatus,
    CustomerUsage,
    IngestionConfig,
    MetricEvent,
    PollingConfig,
    TimeBucket,
    WindowSnapshot,
    utc_now,
)

logger = structlog.get_logger(__name__)

ConfigListener = Callable[[PollingConfig], None]


class MetricsStore:
    """Single state object shared by the transport and its readers

    Readers only get immutable views. Mutation goes through the command
    methods: ``append``, ``set_connection_status``, ``set_polling_config``,
    ``acknowledge_anomaly`` and ``clear_metrics``.
    """

    def __init__(
        self,
        config: IngestionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or IngestionConfig()
        self.clock = clock

        self._buffer = IngestionBuffer(self.config.buffer_size)
        self._aggregator = WindowedAggregator(
            window_seconds=self.config.window_seconds,
            bucket_ms=self.config.bucket_ms,
            max_buckets=self.config.max_buckets,
        )
        self._detector = AnomalyDetector(
            threshold=self.config.anomaly_threshold,
            capacity=self.config.max_anomalies,
        )
        self._status = ConnectionStatus()
        self._polling_config = self.config.polling
        self._config_listeners: list[ConfigListener] = []

    # Read accessors

    @property
    def buffer(self) -> tuple[MetricEvent, ...]:
        return self._buffer.snapshot()

    @property
    def snapshot(self) -> WindowSnapshot:
        return self._aggregator.snapshot

    @property
    def time_series(self) -> tuple[TimeBucket, ...]:
        return self._aggregator.snapshot.time_series

    @property
    def anomalies(self) -> tuple[Anomaly, ...]:
        return self._detector.anomalies

    @property
    def unacknowledged_anomalies(self) -> tuple[Anomaly, ...]:
        return self._detector.unacknowledged()

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def polling_config(self) -> PollingConfig:
        return self._polling_config

    def top_customers(self, limit: int | None = None) -> list[CustomerUsage]:
        return top_customers(self._buffer, limit or self.config.top_customers_limit)

    # Commands

    def append(self, events: Iterable[MetricEvent]) -> list[Anomaly]:
        """Ingest a batch: buffer, recompute aggregates, then detect on the new events

        Returns:
            Anomalies raised by this batch
        """
        batch = list(events)
        if not batch:
            return []

        evicted = self._buffer.append(batch)
        snapshot = self._aggregator.recompute(self._buffer, now=self.clock())
        created = self._detector.evaluate(batch, snapshot)

        logger.debug(
            "Batch ingested",
            events=len(batch),
            evicted=evicted,
            buffered=len(self._buffer),
            anomalies=len(created),
        )
        return created

    def set_connection_status(self, status: ConnectionStatus) -> None:
        self._status = status

    def set_polling_config(self, **changes) -> PollingConfig:
        """Merge a partial update into the polling config and notify listeners on change"""
        updated = replace(self._polling_config, **changes)
        if updated == self._polling_config:
            return updated

        previous, self._polling_config = self._polling_config, updated
        logger.info(
            "Polling config changed",
            interval_ms=updated.interval_ms,
            is_paused=updated.is_paused,
            use_streaming=updated.use_streaming,
            previous_use_streaming=previous.use_streaming,
        )
        for listener in list(self._config_listeners):
            listener(updated)
        return updated

    def subscribe_config(self, listener: ConfigListener) -> Callable[[], None]:
        """Register a config listener; returns a callable that removes it"""
        self._config_listeners.append(listener)

        def unsubscribe():
            if listener in self._config_listeners:
                self._config_listeners.remove(listener)

        return unsubscribe

    def acknowledge_anomaly(self, anomaly_id: str) -> bool:
        return self._detector.acknowledge(anomaly_id)

    def clear_metrics(self) -> None:
        """Reset buffer, aggregates and anomalies together; status and config are kept"""
        self._buffer.clear()
        self._aggregator.reset()
        self._detector.reset()
        logger.info("Metrics cleared")
