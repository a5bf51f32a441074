"""
Tests for SSE and Kafka stream channels.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
import requests
from kafka.errors import KafkaError, NoBrokersAvailable

from src.ingestion.errors import TransportError
from src.ingestion.models import IngestionConfig
from src.ingestion.transport.streams import (
    STREAM_REGISTRY,
    KafkaStream,
    SSEStream,
    get_stream,
    list_streams,
)


def collect(stream, open_first=True):
    """Open the stream and gather every message until it ends"""

    async def run():
        if open_first:
            await stream.open()
        return [message async for message in stream.messages()]

    return asyncio.run(run())


@pytest.fixture
def sse_response():
    response = MagicMock()
    response.iter_lines.return_value = iter([])
    return response


@pytest.fixture
def sse_client(sse_response):
    client = MagicMock()
    client.open_stream.return_value = sse_response
    return client


class TestSSEStream:
    """Tests for SSEStream"""

    def test_name(self, sse_client):
        assert SSEStream(IngestionConfig(), sse_client).name == "sse"

    def test_messages(self, sse_client, sse_response):
        """Test event framing: data lines, comments and blank-line dispatch"""
        sse_response.iter_lines.return_value = iter(
            [
                'data: {"a": 1}',
                "",
                ": keepalive",
                "",
                "data: part1",
                "data: part2",
                "",
                "event: usage",
                "data:nospace",
                "",
                "data: incomplete",
            ]
        )
        stream = SSEStream(IngestionConfig(), sse_client)

        messages = collect(stream)

        assert messages == ['{"a": 1}', "part1\npart2", "nospace"]
        assert sse_response.encoding == "utf-8"

    def test_messages_before_open(self, sse_client):
        """Test that reading an unopened stream fails"""
        with pytest.raises(TransportError, match="not open"):
            collect(SSEStream(IngestionConfig(), sse_client), open_first=False)

    def test_read_failure(self, sse_client, sse_response):
        """Test that a broken connection raises TransportError"""

        def lines():
            yield 'data: {"a": 1}'
            raise requests.ConnectionError("connection reset")

        sse_response.iter_lines.return_value = lines()

        with pytest.raises(TransportError, match="Stream read failed"):
            collect(SSEStream(IngestionConfig(), sse_client))

    def test_open_failure(self, sse_client):
        """Test that connection errors propagate as TransportError"""
        sse_client.open_stream.side_effect = TransportError("Stream connection failed: HTTP 503")

        with pytest.raises(TransportError):
            collect(SSEStream(IngestionConfig(), sse_client))

    def test_close_releases_response(self, sse_client, sse_response):
        """Test that close releases the response once"""
        stream = SSEStream(IngestionConfig(), sse_client)
        asyncio.run(stream.open())

        stream.close()
        stream.close()

        sse_response.close.assert_called_once()

    def test_closed_before_connect(self, sse_client, sse_response):
        """Test that a connection completing after close is discarded"""
        stream = SSEStream(IngestionConfig(), sse_client)
        stream.close()

        with pytest.raises(TransportError, match="closed while connecting"):
            asyncio.run(stream.open())

        sse_response.close.assert_called_once()


@pytest.fixture
def consumer():
    return MagicMock()


@pytest.fixture
def consumer_class(consumer):
    with patch("src.ingestion.transport.streams.KafkaConsumer") as mock_class:
        mock_class.return_value = consumer
        yield mock_class


class TestKafkaStream:
    """Tests for KafkaStream"""

    def test_name(self):
        assert KafkaStream(IngestionConfig()).name == "kafka"

    def test_open_creates_consumer(self, consumer_class):
        """Test the consumer settings"""
        stream = KafkaStream(IngestionConfig())

        asyncio.run(stream.open())

        consumer_class.assert_called_once_with(
            "usage-metrics",
            bootstrap_servers="localhost:9092",
            group_id="usage-dashboard",
            auto_offset_reset="latest",
            enable_auto_commit=True,
        )

    def test_open_failure(self, consumer_class):
        """Test that broker errors raise TransportError"""
        consumer_class.side_effect = NoBrokersAvailable()

        with pytest.raises(TransportError, match="Kafka connection failed"):
            asyncio.run(KafkaStream(IngestionConfig()).open())

    def test_messages_until_closed(self, consumer_class, consumer):
        """Test that record values are yielded and a close during poll is deferred"""
        stream = KafkaStream(IngestionConfig())
        polls = []

        def poll(timeout_ms):
            polls.append(timeout_ms)
            if len(polls) == 1:
                return {"partition-0": [MagicMock(value=b"one"), MagicMock(value=b"two")]}
            stream.close()
            # Consumer stays open until this poll returns
            assert not consumer.close.called
            return {}

        consumer.poll.side_effect = poll

        messages = collect(stream)

        assert messages == [b"one", b"two"]
        assert polls == [500, 500]
        consumer.close.assert_called_once()

    def test_poll_failure(self, consumer_class, consumer):
        """Test that poll errors raise TransportError"""
        consumer.poll.side_effect = KafkaError("broker went away")

        with pytest.raises(TransportError, match="Kafka poll failed"):
            collect(KafkaStream(IngestionConfig()))

    def test_close_when_idle(self, consumer_class, consumer):
        """Test that closing an idle stream closes the consumer once"""
        stream = KafkaStream(IngestionConfig())
        asyncio.run(stream.open())

        stream.close()
        stream.close()

        consumer.close.assert_called_once()
        assert collect(stream, open_first=False) == []


class TestStreamRegistry:
    """Tests for backend lookup"""

    def test_list_streams(self):
        assert list_streams() == ["sse", "kafka"]
        assert STREAM_REGISTRY["kafka"] is KafkaStream

    def test_get_sse_stream_uses_client(self, sse_client):
        stream = get_stream("sse", IngestionConfig(), sse_client)

        assert isinstance(stream, SSEStream)
        assert stream.client is sse_client

    def test_get_sse_stream_creates_client(self):
        stream = get_stream("sse", IngestionConfig(api_base_url="http://example:1/api"))

        assert stream.client.base_url == "http://example:1/api"

    def test_get_kafka_stream(self):
        assert isinstance(get_stream("kafka", IngestionConfig()), KafkaStream)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown stream backend"):
            get_stream("websocket", IngestionConfig())
