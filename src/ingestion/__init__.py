"""
Real-time usage ingestion engine

Client-side core of the usage/cost monitoring dashboard.

Architecture:
- Transport Manager: one active channel (interval polling or persistent stream)
  with exponential backoff and a one-way stream-to-polling fallback
- Ingestion Buffer: bounded FIFO of raw usage events
- Windowed Aggregator: 5-minute rolling totals and a 5-second bucketed series
- Anomaly Detector: flags values above 2x the rolling average

Usage:
    # Follow the metrics API with interval polling
    python -m src.ingestion.watch --api-url http://localhost:3001/api

    # Follow a Kafka topic as a persistent stream
    python -m src.ingestion.watch --streaming --stream-backend kafka
"""

from .aggregator import WindowedAggregator, top_customers
from .buffer import IngestionBuffer
from .detector import AnomalyDetector, is_anomaly
from .errors import IngestionError, ParseError, TransportError
from .models import (
    Anomaly,
    AnomalyMetric,
    ConnectionState,
    ConnectionStatus,
    IngestionConfig,
    MetricEvent,
    PollingConfig,
    TimeBucket,
    UsageMetrics,
    WindowSnapshot,
)
from .store import MetricsStore
from .transport import MetricsAPIClient, TransportManager, TransportState

__all__ = [
    "Anomaly",
    "AnomalyDetector",
    "AnomalyMetric",
    "ConnectionState",
    "ConnectionStatus",
    "IngestionBuffer",
    "IngestionConfig",
    "IngestionError",
    "MetricEvent",
    "MetricsAPIClient",
    "MetricsStore",
    "ParseError",
    "PollingConfig",
    "TimeBucket",
    "TransportError",
    "TransportManager",
    "TransportState",
    "UsageMetrics",
    "WindowSnapshot",
    "WindowedAggregator",
    "is_anomaly",
    "top_customers",
]
