"""
Tests for UsageGenerator class.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.generator.generator import UsageGenerator
from src.generator.models import GeneratorConfig, SpikeType
from src.ingestion.models import MetricEvent


class TestUsageGenerator:
    """Tests for UsageGenerator class."""

    @patch("src.generator.generator.KafkaProducer")
    def test_initialization(self, mock_producer, basic_config):
        """Test generator initialization."""
        generator = UsageGenerator(basic_config)

        # Verify producer was created
        mock_producer.assert_called_once()
        _, kwargs = mock_producer.call_args
        assert kwargs["bootstrap_servers"] == "localhost:9092"
        assert kwargs["compression_type"] == "gzip"

        assert [c.customer_id for c in generator.customers] == basic_config.customers
        assert generator.models == list(basic_config.model_pricing)

    @patch("src.generator.generator.KafkaProducer")
    def test_customers_belong_to_tenants(self, mock_producer, basic_config):
        """Test that each customer is bound to a configured tenant."""
        generator = UsageGenerator(basic_config)

        for customer in generator.customers:
            assert customer.tenant_id in basic_config.tenants

    @patch("src.generator.generator.KafkaProducer")
    def test_generate_batch_sends_events(self, mock_producer, basic_config):
        """Test that a batch sends between min and max events and flushes."""
        mock_producer_instance = MagicMock()
        mock_producer.return_value = mock_producer_instance

        generator = UsageGenerator(basic_config)
        sent = generator.generate_batch()

        assert basic_config.min_batch_size <= sent <= basic_config.max_batch_size
        assert mock_producer_instance.send.call_count == sent
        mock_producer_instance.flush.assert_called_once()
        assert generator.stats["events_sent"] == sent
        assert generator.stats["batches_sent"] == 1

    @patch("src.generator.generator.KafkaProducer")
    def test_events_sent_to_topic_in_wire_shape(self, mock_producer, basic_config):
        """Test the topic and payload of sent events."""
        mock_producer_instance = MagicMock()
        mock_producer.return_value = mock_producer_instance

        generator = UsageGenerator(basic_config)
        generator.generate_batch()

        for call in mock_producer_instance.send.call_args_list:
            assert call[0][0] == basic_config.kafka_topic
            event = MetricEvent.from_dict(call.kwargs["value"])
            assert event.customer_id in basic_config.customers

    @patch("src.generator.generator.KafkaProducer")
    def test_value_serializer(self, mock_producer, minimal_config):
        """Test that payloads are serialized as UTF-8 JSON."""
        UsageGenerator(minimal_config)

        serializer = mock_producer.call_args.kwargs["value_serializer"]
        assert serializer({"customerId": "Customer A"}) == b'{"customerId": "Customer A"}'

    @patch("src.generator.generator.KafkaProducer")
    def test_spike_injection_uses_enabled_types(self, mock_producer):
        """Test that only enabled spike types are injected."""
        config = GeneratorConfig(
            num_customers=2,
            min_batch_size=5,
            max_batch_size=5,
            spike_probability=1.0,  # Always inject
            enabled_spikes=[SpikeType.LATENCY_SPIKE],
        )
        generator = UsageGenerator(config)
        customer = generator.customers[0]
        fake = MagicMock(customer_id=customer.customer_id, tenant_id=customer.tenant_id)
        fake.generate_event.return_value = customer.generate_event(cost_per_token=0.000001)
        generator.customers = [fake]

        generator.generate_batch()

        assert fake.generate_event.call_count == 5
        for call in fake.generate_event.call_args_list:
            assert call.kwargs["inject_spike"] == SpikeType.LATENCY_SPIKE

    @patch("src.generator.generator.KafkaProducer")
    def test_no_spikes_when_probability_zero(self, mock_producer, minimal_config):
        """Test that no spikes are injected when probability is 0."""
        generator = UsageGenerator(minimal_config)
        fake = MagicMock(customer_id="Customer A", tenant_id="Tenant 1")
        fake.generate_event.return_value = generator.customers[0].generate_event(0.000001)
        generator.customers = [fake]

        for _ in range(10):
            generator.generate_batch()

        for call in fake.generate_event.call_args_list:
            assert call.kwargs["inject_spike"] is None

    @patch("src.generator.generator.KafkaProducer")
    def test_run_stops_after_duration(self, mock_producer, minimal_config):
        """Test that run stops when duration is specified."""
        mock_producer_instance = MagicMock()
        mock_producer.return_value = mock_producer_instance

        generator = UsageGenerator(minimal_config)

        # Run for a very short duration
        generator.run(duration_seconds=0.1)

        # Producer should be closed after run completes
        assert mock_producer_instance.send.call_count > 0
        mock_producer_instance.close.assert_called_once()

    @patch("src.generator.generator.KafkaProducer")
    def test_run_closes_producer_on_error(self, mock_producer, minimal_config):
        """Test that send failures propagate and still close the producer."""
        mock_producer_instance = MagicMock()
        mock_producer_instance.send.side_effect = RuntimeError("broker unavailable")
        mock_producer.return_value = mock_producer_instance

        generator = UsageGenerator(minimal_config)

        with pytest.raises(RuntimeError, match="broker unavailable"):
            generator.run(duration_seconds=1)

        mock_producer_instance.close.assert_called_once()

    @patch("src.generator.generator.KafkaProducer")
    def test_kafka_connection_error_handling(self, mock_producer):
        """Test that Kafka connection errors are handled properly."""
        # Make KafkaProducer raise an exception
        mock_producer.side_effect = Exception("Connection failed")

        # Should raise the exception (not swallow it)
        with pytest.raises(Exception, match="Connection failed"):
            UsageGenerator(GeneratorConfig())
