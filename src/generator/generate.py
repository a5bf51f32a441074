"""
Usage Event Generator - CLI Entry Point
Publishes synthetic per-call usage events to Kafka with configurable spikes
"""

import argparse
import logging
import os
import sys
from dataclasses import replace

import structlog

from src.core.logger import LOG_LEVELS, setup_logging
from src.generator import (
    DEV_CONFIG,
    FLOOD_CONFIG,
    LATENCY_FOCUS_CONFIG,
    NORMAL_CONFIG,
    SPIKY_CONFIG,
    GeneratorConfig,
    SpikeType,
    UsageGenerator,
)

logger = structlog.get_logger(__name__)


PRESETS = {
    "normal": NORMAL_CONFIG,
    "spiky": SPIKY_CONFIG,
    "flood": FLOOD_CONFIG,
    "latency": LATENCY_FOCUS_CONFIG,
    "dev": DEV_CONFIG,
}

# CLI option -> GeneratorConfig field, applied when the option is given
OVERRIDES = {
    "kafka_servers": "kafka_bootstrap_servers",
    "topic": "kafka_topic",
    "customers": "num_customers",
    "tenants": "num_tenants",
    "interval": "event_interval_seconds",
    "min_batch": "min_batch_size",
    "max_batch": "max_batch_size",
    "spike_prob": "spike_probability",
}


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Publish synthetic AI usage events to Kafka",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
            Examples:
            # Steady traffic with the default profile
            python -m src.generator.generate --config normal

            # All spike types, for five minutes
            python -m src.generator.generate --config spiky --duration 300

            # Ten customers, token bursts on 10% of events
            python -m src.generator.generate --customers 10 --spike-prob 0.1 --spikes token_burst

            # Large batches against a remote broker
            python -m src.generator.generate --config flood --kafka-servers kafka:9092
        """,
    )
    parser.add_argument("--config", choices=list(PRESETS), help="Start from a preset profile")

    kafka = parser.add_argument_group("kafka")
    kafka.add_argument(
        "--kafka-servers",
        default=os.getenv("KAFKA_BOOTSTRAP_SERVERS"),
        help="Bootstrap servers (env: KAFKA_BOOTSTRAP_SERVERS, default: localhost:9092)",
    )
    kafka.add_argument(
        "--topic",
        default=os.getenv("KAFKA_TOPIC"),
        help="Topic to publish to (env: KAFKA_TOPIC, default: usage-metrics)",
    )

    traffic = parser.add_argument_group("traffic")
    traffic.add_argument("--customers", type=int, help="Number of simulated customers")
    traffic.add_argument("--tenants", type=int, help="Number of tenants customers belong to")
    traffic.add_argument("--interval", type=float, help="Seconds between batches")
    traffic.add_argument("--min-batch", type=int, help="Minimum events per batch")
    traffic.add_argument("--max-batch", type=int, help="Maximum events per batch")

    spikes = parser.add_argument_group("spikes")
    spikes.add_argument("--spike-prob", type=float, help="Spike probability per event (0.0-1.0)")
    spikes.add_argument(
        "--spikes",
        nargs="+",
        choices=[s.value for s in SpikeType],
        help="Spike types to inject",
    )

    parser.add_argument("--duration", type=float, help="Stop after N seconds (default: never)")
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config_from_args(args) -> GeneratorConfig:
    """Start from the chosen preset (or the defaults) and apply explicit options

    Raises:
        ValueError: If the resulting batch bounds are inconsistent
    """
    base = PRESETS[args.config] if args.config else GeneratorConfig()
    changes = {
        field: getattr(args, option)
        for option, field in OVERRIDES.items()
        if getattr(args, option) is not None
    }
    if args.spikes:
        changes["enabled_spikes"] = [SpikeType(s) for s in args.spikes]

    # replace() re-runs __post_init__ validation
    config = replace(base, **changes)
    logger.info(
        "Generator configuration", preset=args.config or "default", overrides=sorted(changes)
    )
    return config


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)
    setup_logging(level=getattr(logging, args.log_level))

    logger.info("Starting usage event generator")

    try:
        generator = UsageGenerator(build_config_from_args(args))
        generator.run(duration_seconds=args.duration)
        logger.info("Generator completed successfully")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Generator failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
