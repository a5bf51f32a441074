"""
Acquisition channels: HTTP polling, persistent streams and their manager.
"""

from .client import MetricsAPIClient
from .manager import CancellationToken, TransportManager, TransportState, retry_delay_ms
from .streams import (
    STREAM_REGISTRY,
    KafkaStream,
    SSEStream,
    StreamChannel,
    get_stream,
    list_streams,
)

__all__ = [
    "MetricsAPIClient",
    "TransportManager",
    "TransportState",
    "CancellationToken",
    "retry_delay_ms",
    "StreamChannel",
    "SSEStream",
    "KafkaStream",
    "STREAM_REGISTRY",
    "get_stream",
    "list_streams",
]
