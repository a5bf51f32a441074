"""
Data models and enums for the usage event generator.
"""

from dataclasses import dataclass
from enum import Enum


class SpikeType(Enum):
    """Types of usage spikes that can be injected"""

    TOKEN_BURST = "token_burst"  # tokens (and cost) x5-10, latency x2
    LATENCY_SPIKE = "latency_spike"  # latency x3-6 only
    CALL_STORM = "call_storm"  # many calls in one event


# Price per token for each model (USD)
DEFAULT_MODEL_PRICING = {
    "gpt-4": 0.00003,
    "gpt-3.5-turbo": 0.000001,
    "claude-3-opus": 0.000001,
    "gemini-pro": 0.000001,
}


@dataclass
class GeneratorConfig:
    """Configuration for the usage event generator"""

    # Kafka settings
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "usage-metrics"

    # Generation settings
    num_customers: int = 5
    num_tenants: int = 3
    event_interval_seconds: float = 0.05
    min_batch_size: int = 1
    max_batch_size: int = 5
    stats_log_interval_seconds: float = 10.0

    # Spike settings
    spike_probability: float = 0.05  # 5% chance of a spike per event
    enabled_spikes: list[SpikeType] | None = None

    # Model catalog (model name -> price per token)
    model_pricing: dict[str, float] | None = None

    def __post_init__(self):
        if self.enabled_spikes is None:
            self.enabled_spikes = [SpikeType.TOKEN_BURST]
        if self.model_pricing is None:
            self.model_pricing = dict(DEFAULT_MODEL_PRICING)
        if self.min_batch_size > self.max_batch_size:
            raise ValueError(
                f"min_batch_size ({self.min_batch_size}) exceeds max_batch_size ({self.max_batch_size})"
            )

    @property
    def customers(self) -> list[str]:
        """Customer ids: "Customer A" to "Customer Z", then numbered"""
        return [
            f"Customer {chr(ord('A') + i)}" if i < 26 else f"Customer {i + 1}"
            for i in range(self.num_customers)
        ]

    @property
    def tenants(self) -> list[str]:
        return [f"Tenant {i + 1}" for i in range(self.num_tenants)]
