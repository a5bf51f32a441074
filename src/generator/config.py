"""
Predefined configurations for different traffic scenarios.
"""

from .models import GeneratorConfig, SpikeType

# Steady traffic: 1-5 events every 50ms, 5% spikes
NORMAL_CONFIG = GeneratorConfig()


# Frequent spikes of every kind
SPIKY_CONFIG = GeneratorConfig(
    num_customers=8,
    spike_probability=0.15,
    enabled_spikes=list(SpikeType),
)


# Sustained overload: large batches to exercise buffer eviction
FLOOD_CONFIG = GeneratorConfig(
    num_customers=20,
    num_tenants=5,
    event_interval_seconds=0.01,
    min_batch_size=20,
    max_batch_size=50,
    spike_probability=0.02,
)


# Latency regressions only
LATENCY_FOCUS_CONFIG = GeneratorConfig(
    spike_probability=0.05,
    enabled_spikes=[SpikeType.LATENCY_SPIKE],
)


# Development/Testing (slow and small)
DEV_CONFIG = GeneratorConfig(
    num_customers=2, num_tenants=1, event_interval_seconds=1.0, max_batch_size=2
)
