"""
Customer state management and usage event generation.
"""

import random
from datetime import UTC, datetime

from src.ingestion.models import MetricEvent, UsageMetrics

from .models import SpikeType


class CustomerState:
    """Tracks a customer's usage profile so spikes persist over a few events"""

    def __init__(self, customer_id: str, tenant_id: str):
        self.customer_id = customer_id
        self.tenant_id = tenant_id

        # Base values
        self.base_tokens = random.uniform(200, 800)
        self.base_latency = random.uniform(50, 550)

        # Active spike
        self.active_spike: SpikeType | None = None
        self.spike_duration: int = 0
        self.spike_multiplier: float = 1.0

    def generate_event(
        self,
        cost_per_token: float,
        inject_spike: SpikeType | None = None,
        timestamp: datetime | None = None,
    ) -> MetricEvent:
        """Generate one usage event with optional spike injection

        Args:
            cost_per_token: Price of the model serving this call
            inject_spike: Optional spike type to start
            timestamp: Optional custom timestamp
        """

        if inject_spike:
            self.active_spike = inject_spike
            self.spike_duration = random.randint(1, 3)  # spike lasts 1-3 events
            self.spike_multiplier = random.uniform(5.0, 10.0)

        token_mult = 1.0
        latency_mult = 1.0
        calls = 1

        if self.active_spike:
            if self.active_spike == SpikeType.TOKEN_BURST:
                token_mult = self.spike_multiplier
                latency_mult = 2.0
            elif self.active_spike == SpikeType.LATENCY_SPIKE:
                latency_mult = random.uniform(3.0, 6.0)
            elif self.active_spike == SpikeType.CALL_STORM:
                calls = random.randint(10, 50)
                token_mult = float(calls)

            self.spike_duration -= 1
            if self.spike_duration <= 0:
                self.active_spike = None

        total_tokens = max(1, int(self.base_tokens * random.uniform(0.25, 1.75) * token_mult))
        latency = int(self.base_latency * random.uniform(0.8, 1.2) * latency_mult)

        return MetricEvent(
            timestamp=timestamp or datetime.now(UTC),
            tenant_id=self.tenant_id,
            customer_id=self.customer_id,
            metrics=UsageMetrics(
                total_calls=calls,
                total_tokens=total_tokens,
                total_cost=total_tokens * cost_per_token,
                avg_latency_ms=latency,
            ),
        )
