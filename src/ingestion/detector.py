"""
Threshold-based spike detection against the rolling window averages.

Each newly ingested event is compared, metric by metric, with the averages of
the recent window *after* the event itself has been aggregated. A value is
flagged when it is strictly greater than ``threshold`` times the average.
"""

from collections.abc import Iterable
from dataclasses import replace

import structlog

from .models import Anomaly, AnomalyMetric, MetricEvent, WindowSnapshot, format_timestamp

logger = structlog.get_logger(__name__)


def is_anomaly(value: float, average: float, threshold: float = 2.0) -> bool:
    """Return True when ``value`` exceeds ``threshold * average`` (strictly)"""
    return value > threshold * average


def anomaly_key(event: MetricEvent) -> str:
    """Base identifier shared by all anomalies raised for one event"""
    return f"{format_timestamp(event.timestamp)}-{event.customer_id}"


class AnomalyDetector:
    """Evaluates new events and keeps a bounded list of alerts"""

    def __init__(self, threshold: float = 2.0, capacity: int = 50):
        self.threshold = threshold
        self.capacity = capacity
        self._anomalies: list[Anomaly] = []

    @property
    def anomalies(self) -> tuple[Anomaly, ...]:
        return tuple(self._anomalies)

    def unacknowledged(self) -> tuple[Anomaly, ...]:
        return tuple(a for a in self._anomalies if not a.acknowledged)

    def reset(self) -> None:
        self._anomalies = []

    def evaluate(self, new_events: Iterable[MetricEvent], snapshot: WindowSnapshot) -> list[Anomaly]:
        """Check each new event against the snapshot averages

        An event whose base key is already present (from any metric) is skipped
        entirely, so a prior cost alert also suppresses token and latency alerts
        for the same timestamp and customer. Ids created earlier in the same
        batch count as present too, so a repeated event within one batch never
        yields duplicate ids.

        Returns:
            The anomalies created by this call (possibly evicted right away
            if more than ``capacity`` were produced)
        """
        averages = {
            AnomalyMetric.COST: snapshot.average_cost,
            AnomalyMetric.TOKENS: snapshot.average_tokens,
            AnomalyMetric.LATENCY: snapshot.avg_latency,
        }
        known_ids = {a.id for a in self._anomalies}
        created: list[Anomaly] = []

        for event in new_events:
            base_id = anomaly_key(event)
            if base_id in known_ids:
                continue

            values = {
                AnomalyMetric.COST: event.metrics.total_cost,
                AnomalyMetric.TOKENS: event.metrics.total_tokens,
                AnomalyMetric.LATENCY: event.metrics.avg_latency_ms,
            }
            for metric, value in values.items():
                average = averages[metric]
                if not is_anomaly(value, average, self.threshold):
                    continue

                anomaly_id = base_id if metric is AnomalyMetric.COST else f"{base_id}-{metric.value}"
                anomaly = Anomaly(
                    id=anomaly_id,
                    timestamp=event.timestamp,
                    customer_id=event.customer_id,
                    metric=metric,
                    value=value,
                    average=average,
                )
                created.append(anomaly)
                known_ids.add(anomaly_id)

                logger.info(
                    "Anomaly detected",
                    customer_id=event.customer_id,
                    metric=metric.value,
                    value=round(value, 6),
                    average=round(average, 6),
                )

        if created:
            self._anomalies = (self._anomalies + created)[-self.capacity :]
        return created

    def acknowledge(self, anomaly_id: str) -> bool:
        """Mark one anomaly as acknowledged; returns False when the id is unknown"""
        for index, anomaly in enumerate(self._anomalies):
            if anomaly.id == anomaly_id:
                self._anomalies[index] = replace(anomaly, acknowledged=True)
                return True
        return False
