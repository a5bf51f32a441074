"""
Data models and configuration for the real-time ingestion engine.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from .errors import ParseError

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime (naive input is taken as UTC)"""
    if not isinstance(value, str):
        raise ParseError(f"Timestamp must be an ISO-8601 string, got {type(value).__name__}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ParseError(f"Invalid timestamp '{value}'") from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Format as ISO-8601 with millisecond precision and a Z suffix"""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(value: datetime) -> int:
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=int(value))


def _non_negative(payload: dict[str, Any], key: str) -> float:
    if key not in payload:
        raise ParseError(f"Missing metric '{key}'")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"Metric '{key}' must be numeric")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        raise ParseError(f"Metric '{key}' is out of range") from None
    if not finite or value < 0:
        raise ParseError(f"Metric '{key}' must be a finite non-negative number, got {value}")
    return value


def _non_negative_int(payload: dict[str, Any], key: str) -> int:
    value = _non_negative(payload, key)
    if isinstance(value, float) and not value.is_integer():
        raise ParseError(f"Metric '{key}' must be an integer, got {value}")
    return int(value)


def _identifier(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ParseError(f"Field '{key}' must be a non-empty string")
    return value


@dataclass(frozen=True)
class UsageMetrics:
    """Usage counters carried by one metric event"""

    total_calls: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_latency_ms: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> "UsageMetrics":
        if not isinstance(data, dict):
            raise ParseError("Field 'metrics' must be an object")
        return cls(
            total_calls=_non_negative_int(data, "totalCalls"),
            total_tokens=_non_negative_int(data, "totalTokens"),
            total_cost=float(_non_negative(data, "totalCost")),
            avg_latency_ms=_non_negative(data, "avgLatencyMs"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCalls": self.total_calls,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "avgLatencyMs": self.avg_latency_ms,
        }


@dataclass(frozen=True)
class MetricEvent:
    """One usage/cost observation tagged by tenant and customer"""

    timestamp: datetime
    tenant_id: str
    customer_id: str
    metrics: UsageMetrics

    @property
    def timestamp_ms(self) -> int:
        return to_epoch_ms(self.timestamp)

    @classmethod
    def from_dict(cls, data: Any) -> "MetricEvent":
        """Build an event from its wire representation

        Raises:
            ParseError: If a field is missing, mistyped or negative
        """
        if not isinstance(data, dict):
            raise ParseError("Metric event must be a JSON object")
        return cls(
            timestamp=parse_timestamp(data.get("timestamp")),
            tenant_id=_identifier(data, "tenantId"),
            customer_id=_identifier(data, "customerId"),
            metrics=UsageMetrics.from_dict(data.get("metrics")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_timestamp(self.timestamp),
            "tenantId": self.tenant_id,
            "customerId": self.customer_id,
            "metrics": self.metrics.to_dict(),
        }


def parse_event(raw: str | bytes) -> MetricEvent:
    """Decode a single JSON-encoded event as pushed over a stream"""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid JSON payload: {e}") from e
    return MetricEvent.from_dict(data)


@dataclass(frozen=True)
class PollResponse:
    """Decoded body of a polling request"""

    metrics: list[MetricEvent]
    next_poll_after: int | None = None  # advisory only
    dropped: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "PollResponse":
        if not isinstance(data, dict) or not isinstance(data.get("metrics"), list):
            raise ParseError("Poll response must contain a 'metrics' list")

        events: list[MetricEvent] = []
        dropped = 0
        for item in data["metrics"]:
            try:
                events.append(MetricEvent.from_dict(item))
            except ParseError:
                dropped += 1

        next_poll_after = data.get("nextPollAfter")
        if isinstance(next_poll_after, bool) or not isinstance(next_poll_after, (int, float)):
            next_poll_after = None

        return cls(
            metrics=events,
            next_poll_after=int(next_poll_after) if next_poll_after is not None else None,
            dropped=dropped,
        )


@dataclass(frozen=True)
class TimeBucket:
    """Sums of one fixed-width slot of the time series"""

    bucket_start: datetime
    tokens: int = 0
    cost: float = 0.0
    calls: int = 0


@dataclass(frozen=True)
class WindowSnapshot:
    """Rolling aggregates over the recent window"""

    total_cost: float = 0.0
    total_tokens: int = 0
    total_calls: int = 0
    avg_latency: float = 0.0
    event_count: int = 0
    time_series: tuple[TimeBucket, ...] = ()

    @property
    def average_cost(self) -> float:
        return self.total_cost / (self.event_count or 1)

    @property
    def average_tokens(self) -> float:
        return self.total_tokens / (self.event_count or 1)


@dataclass(frozen=True)
class CustomerUsage:
    """Per-customer totals over the buffered events"""

    customer_id: str
    total_cost: float = 0.0
    total_tokens: int = 0
    total_calls: int = 0


class AnomalyMetric(Enum):
    """Metrics checked by the anomaly detector"""

    COST = "cost"
    TOKENS = "tokens"
    LATENCY = "latency"


@dataclass(frozen=True)
class Anomaly:
    """A metric value that exceeded the threshold against the recent average"""

    id: str
    timestamp: datetime
    customer_id: str
    metric: AnomalyMetric
    value: float
    average: float
    acknowledged: bool = False


class ConnectionState(Enum):
    """Connection states reported by the transport manager"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """Current state of the acquisition channel"""

    status: ConnectionState = ConnectionState.DISCONNECTED
    last_update: datetime | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class PollingConfig:
    """Transport settings owned by the control surface"""

    interval_ms: int = 2000
    is_paused: bool = False
    use_streaming: bool = False

    def __post_init__(self):
        if self.interval_ms <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.interval_ms}")

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000


@dataclass
class IngestionConfig:
    """Configuration for the ingestion engine"""

    # HTTP API settings
    api_base_url: str = "http://localhost:3001/api"
    request_timeout_seconds: float = 10.0

    # Streaming backend: "sse" (HTTP server-sent events) or "kafka"
    stream_backend: str = "sse"

    # Kafka settings (for the kafka stream backend)
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "usage-metrics"
    kafka_group_id: str = "usage-dashboard"
    kafka_auto_offset_reset: str = "latest"
    kafka_poll_timeout_ms: int = 500

    # Capacities
    buffer_size: int = 1000
    max_buckets: int = 60
    max_anomalies: int = 50
    top_customers_limit: int = 10

    # Aggregation
    window_seconds: float = 300.0  # 5 minutes
    bucket_ms: int = 5000

    # Anomaly detection
    anomaly_threshold: float = 2.0

    # Retry behavior
    max_retries: int = 5
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000

    # Initial transport settings
    polling: PollingConfig = field(default_factory=PollingConfig)
