"""
Persistent stream channels delivering one JSON-encoded event per message.

Both implementations wrap blocking libraries; their blocking calls run in a
worker thread so the event loop stays responsive. ``close()`` may be called
from the loop at any time, including while a worker call is in flight.
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import requests
import structlog
from kafka import KafkaConsumer
from kafka.errors import KafkaError

from ..errors import TransportError
from ..models import IngestionConfig
from .client import MetricsAPIClient

logger = structlog.get_logger(__name__)


class StreamChannel(ABC):
    """Abstract long-lived connection

    Lifecycle: ``open()`` once, iterate ``messages()`` until it ends or raises
    ``TransportError``, then ``close()``. ``close()`` is idempotent.
    """

    @abstractmethod
    async def open(self) -> None:
        """Establish the connection

        Raises:
            TransportError: If the connection cannot be established
        """

    @abstractmethod
    def messages(self) -> AsyncIterator[str | bytes]:
        """Yield raw message payloads; ends when the server closes the stream"""

    @abstractmethod
    def close(self) -> None:
        """Release the connection"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the stream backend"""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class SSEStream(StreamChannel):
    """Server-sent events read from the metrics API ``/stream`` endpoint"""

    def __init__(self, config: IngestionConfig, client: MetricsAPIClient):
        self.client = client
        self._response: requests.Response | None = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "sse"

    async def open(self) -> None:
        await asyncio.to_thread(self._connect_blocking)

    def _connect_blocking(self) -> None:
        response = self.client.open_stream()
        # SSE payloads are always UTF-8
        response.encoding = "utf-8"
        with self._lock:
            if not self._closed:
                self._response = response
                return
        response.close()
        raise TransportError("Stream closed while connecting")

    async def messages(self) -> AsyncIterator[str]:
        if self._response is None:
            raise TransportError("Stream is not open")

        lines = self._response.iter_lines(decode_unicode=True)
        data_lines: list[str] = []

        while True:
            try:
                line = await asyncio.to_thread(next, lines, None)
            except requests.RequestException as e:
                raise TransportError(f"Stream read failed: {e}") from e

            if line is None:
                return

            if not line:
                # Blank line dispatches the pending event
                if data_lines:
                    yield "\n".join(data_lines)
                    data_lines = []
                continue

            if line.startswith(":"):
                continue

            field_name, _, value = line.partition(":")
            if field_name == "data":
                data_lines.append(value[1:] if value.startswith(" ") else value)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            response, self._response = self._response, None
        if response is not None:
            response.close()
            logger.debug("SSE stream closed")


class KafkaStream(StreamChannel):
    """Usage events consumed from a Kafka topic"""

    def __init__(self, config: IngestionConfig, client: MetricsAPIClient | None = None):
        self.config = config
        self._consumer: KafkaConsumer | None = None
        self._closed = False
        self._polling = False
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "kafka"

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self._connect_blocking)
        except KafkaError as e:
            raise TransportError(f"Kafka connection failed: {e}") from e

    def _connect_blocking(self) -> None:
        consumer = KafkaConsumer(
            self.config.kafka_topic,
            bootstrap_servers=self.config.kafka_bootstrap_servers,
            group_id=self.config.kafka_group_id,
            auto_offset_reset=self.config.kafka_auto_offset_reset,
            enable_auto_commit=True,
        )
        with self._lock:
            if not self._closed:
                self._consumer = consumer
                logger.info(
                    "Kafka stream connected",
                    bootstrap_servers=self.config.kafka_bootstrap_servers,
                    topic=self.config.kafka_topic,
                    group_id=self.config.kafka_group_id,
                )
                return
        consumer.close()
        raise TransportError("Stream closed while connecting")

    async def messages(self) -> AsyncIterator[bytes]:
        while True:
            try:
                batches = await asyncio.to_thread(self._poll_blocking)
            except KafkaError as e:
                raise TransportError(f"Kafka poll failed: {e}") from e

            if batches is None:
                return

            for records in batches.values():
                for record in records:
                    yield record.value

    def _poll_blocking(self):
        """Poll once; returns None once the stream has been closed"""
        with self._lock:
            if self._closed or self._consumer is None:
                return None
            self._polling = True
            consumer = self._consumer

        try:
            return consumer.poll(timeout_ms=self.config.kafka_poll_timeout_ms)
        finally:
            with self._lock:
                self._polling = False
                deferred_close = self._closed and self._consumer is not None
                if deferred_close:
                    self._consumer = None
            if deferred_close:
                consumer.close()
                logger.debug("Kafka stream closed after in-flight poll")

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._polling or self._consumer is None:
                # An in-flight poll closes the consumer when it returns
                return
            consumer, self._consumer = self._consumer, None
        consumer.close()
        logger.debug("Kafka stream closed")


# Registry of available stream backends
STREAM_REGISTRY = {
    "sse": SSEStream,
    "kafka": KafkaStream,
}


def get_stream(
    backend: str, config: IngestionConfig, client: MetricsAPIClient | None = None
) -> StreamChannel:
    """Factory to create a stream channel

    Raises:
        ValueError: If backend is not registered
    """
    if backend not in STREAM_REGISTRY:
        available = ", ".join(STREAM_REGISTRY.keys())
        raise ValueError(f"Unknown stream backend '{backend}'. Available backends: {available}")

    if backend == "sse" and client is None:
        client = MetricsAPIClient(config)
    return STREAM_REGISTRY[backend](config, client)


def list_streams() -> list[str]:
    return list(STREAM_REGISTRY.keys())
