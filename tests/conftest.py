"""
Pytest configuration and shared fixtures.
"""

from datetime import UTC, datetime, timedelta

import pytest

from src.generator.models import GeneratorConfig, SpikeType
from src.ingestion.models import IngestionConfig, MetricEvent, PollingConfig, UsageMetrics
from src.ingestion.store import MetricsStore

# Aligned on a 5-second bucket boundary
NOW = datetime(2025, 10, 2, 12, 0, 0, tzinfo=UTC)


# Ingestion fixtures
@pytest.fixture
def now():
    """Fixed wall-clock instant used by the store."""
    return NOW


@pytest.fixture
def make_event():
    """Factory for events offset (in seconds) from NOW."""

    def _make(
        offset_seconds: float = 0.0,
        customer_id: str = "Customer A",
        cost: float = 0.01,
        tokens: int = 100,
        calls: int = 1,
        latency: float = 100,
        tenant_id: str = "Tenant 1",
    ) -> MetricEvent:
        return MetricEvent(
            timestamp=NOW + timedelta(seconds=offset_seconds),
            tenant_id=tenant_id,
            customer_id=customer_id,
            metrics=UsageMetrics(
                total_calls=calls,
                total_tokens=tokens,
                total_cost=cost,
                avg_latency_ms=latency,
            ),
        )

    return _make


@pytest.fixture
def ingestion_config():
    """Ingestion configuration with fast retries for testing."""
    return IngestionConfig(
        api_base_url="http://testserver/api",
        request_timeout_seconds=1.0,
        retry_base_delay_ms=1,
        retry_max_delay_ms=20,
        polling=PollingConfig(interval_ms=20),
    )


@pytest.fixture
def store(ingestion_config):
    """Store whose clock is frozen at NOW."""
    return MetricsStore(ingestion_config, clock=lambda: NOW)


@pytest.fixture
def wire_event():
    """A valid event in its JSON wire shape."""
    return {
        "timestamp": "2025-10-02T11:59:58.250Z",
        "tenantId": "Tenant 2",
        "customerId": "Customer B",
        "metrics": {
            "totalCalls": 1,
            "totalTokens": 812,
            "totalCost": 0.02436,
            "avgLatencyMs": 240,
        },
    }


# Generator fixtures
@pytest.fixture
def basic_config():
    """Basic generator configuration for testing."""
    return GeneratorConfig(
        kafka_bootstrap_servers="localhost:9092",
        kafka_topic="test-topic",
        num_customers=3,
        num_tenants=2,
        event_interval_seconds=0.01,
        spike_probability=0.1,
    )


@pytest.fixture
def minimal_config():
    """Minimal configuration for fast tests."""
    return GeneratorConfig(
        num_customers=1,
        num_tenants=1,
        event_interval_seconds=0.01,
        spike_probability=0.0,  # No spikes for predictable tests
    )


@pytest.fixture
def all_spike_types():
    """List of all spike types."""
    return list(SpikeType)
