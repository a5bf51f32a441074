"""
Synthetic Usage Event Generator for Kafka
Simulates per-call AI usage (tokens, cost, latency) with configurable spikes.
"""

from .config import (
    DEV_CONFIG,
    FLOOD_CONFIG,
    LATENCY_FOCUS_CONFIG,
    NORMAL_CONFIG,
    SPIKY_CONFIG,
)
from .customer_state import CustomerState
from .generator import UsageGenerator
from .models import GeneratorConfig, SpikeType

__all__ = [
    "SpikeType",
    "GeneratorConfig",
    "CustomerState",
    "UsageGenerator",
    "NORMAL_CONFIG",
    "SPIKY_CONFIG",
    "FLOOD_CONFIG",
    "LATENCY_FOCUS_CONFIG",
    "DEV_CONFIG",
]

__version__ = "1.0.0"
