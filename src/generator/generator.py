"""
Synthetic usage event source publishing to Kafka.
"""

import json
import random
import time

import structlog
from kafka import KafkaProducer

from .customer_state import CustomerState
from .models import GeneratorConfig, SpikeType

logger = structlog.get_logger(__name__)


class UsageGenerator:
    """Publishes batches of per-call usage events with occasional spikes"""

    def __init__(self, config: GeneratorConfig):
        self.config = config
        logger.info("Initializing usage generator", config=config)

        self.producer = self._create_producer()

        # Each customer is bound to one tenant for its whole lifetime
        tenants = config.tenants
        self.customers: list[CustomerState] = [
            CustomerState(customer_id, random.choice(tenants)) for customer_id in config.customers
        ]
        self.models = list(config.model_pricing)

        self.stats = {"events_sent": 0, "batches_sent": 0, "spikes_injected": 0}

        logger.info(
            "Customers initialized",
            count=len(self.customers),
            tenants=tenants,
            models=self.models,
            spike_probability=config.spike_probability,
            enabled_spikes=[s.value for s in config.enabled_spikes],
        )

    def _create_producer(self) -> KafkaProducer:
        try:
            producer = KafkaProducer(
                bootstrap_servers=self.config.kafka_bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                compression_type="gzip",
            )
        except Exception as e:
            logger.error(
                "Failed to connect Kafka producer",
                bootstrap_servers=self.config.kafka_bootstrap_servers,
                error=str(e),
            )
            raise

        logger.info("Kafka producer ready", topic=self.config.kafka_topic)
        return producer

    def _pick_spike(self) -> SpikeType | None:
        if not self.config.enabled_spikes:
            return None
        if random.random() >= self.config.spike_probability:
            return None
        return random.choice(self.config.enabled_spikes)

    def generate_batch(self) -> int:
        """Send between min_batch_size and max_batch_size events, then flush

        Returns:
            Number of events sent
        """
        batch_size = random.randint(self.config.min_batch_size, self.config.max_batch_size)

        for _ in range(batch_size):
            customer = random.choice(self.customers)
            model = random.choice(self.models)
            spike = self._pick_spike()

            event = customer.generate_event(
                cost_per_token=self.config.model_pricing[model],
                inject_spike=spike,
            )
            self.producer.send(self.config.kafka_topic, value=event.to_dict())

            if spike:
                self.stats["spikes_injected"] += 1
                logger.warning(
                    "Spike injected",
                    spike_type=spike.value,
                    customer_id=customer.customer_id,
                    tenant_id=customer.tenant_id,
                    model=model,
                    tokens=event.metrics.total_tokens,
                    latency_ms=event.metrics.avg_latency_ms,
                )

        self.producer.flush()
        self.stats["events_sent"] += batch_size
        self.stats["batches_sent"] += 1
        return batch_size

    def _log_stats(self, elapsed: float, message: str = "Generator stats") -> None:
        sent = self.stats["events_sent"]
        logger.info(
            message,
            **self.stats,
            rate_per_sec=round(sent / elapsed, 1) if elapsed > 0 else 0,
            elapsed_sec=round(elapsed, 1),
        )

    def run(self, duration_seconds: float | None = None):
        """Publish batches every event_interval_seconds until interrupted

        Args:
            duration_seconds: Stop after this many seconds (runs forever when None)
        """
        logger.info(
            "Starting generator",
            topic=self.config.kafka_topic,
            interval_sec=self.config.event_interval_seconds,
            duration=duration_seconds or "indefinite",
        )

        started = time.monotonic()
        next_stats = started + self.config.stats_log_interval_seconds

        try:
            while True:
                self.generate_batch()

                now = time.monotonic()
                if now >= next_stats:
                    self._log_stats(now - started)
                    next_stats = now + self.config.stats_log_interval_seconds

                if duration_seconds and now - started >= duration_seconds:
                    logger.info("Duration limit reached", duration_seconds=duration_seconds)
                    break

                time.sleep(self.config.event_interval_seconds)

        except KeyboardInterrupt:
            logger.info("Received interrupt signal, stopping generator")

        except Exception as e:
            logger.error("Generator error", error=str(e), exc_info=True)
            raise

        finally:
            self.producer.close()
            self._log_stats(time.monotonic() - started, message="Generator stopped")
