"""
CLI for following a usage metrics feed and logging dashboard state.

Usage:
    python -m src.ingestion.watch [options]
"""

import argparse
import asyncio
import logging
import os
import sys

import structlog

from src.core.logger import setup_logging

from .models import IngestionConfig, PollingConfig
from .store import MetricsStore
from .transport import MetricsAPIClient, TransportManager, list_streams

logger = structlog.get_logger(__name__)


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Real-time usage metrics monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Poll the API every 2 seconds
        python -m src.ingestion.watch --api-url http://localhost:3001/api

        # Server-sent events, falling back to polling after 5 failures
        python -m src.ingestion.watch --streaming

        # Consume the Kafka topic fed by the generator for 5 minutes
        python -m src.ingestion.watch --streaming --stream-backend kafka --duration 300
        """,
    )

    # API settings
    parser.add_argument(
        "--api-url",
        default=os.getenv("USAGE_API_URL", "http://localhost:3001/api"),
        help="Base URL of the metrics API (default: http://localhost:3001/api)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds (default: 10)",
    )

    # Transport settings
    parser.add_argument(
        "--interval",
        type=int,
        default=int(os.getenv("POLL_INTERVAL_MS", "2000")),
        help="Polling interval in milliseconds (default: 2000)",
    )
    parser.add_argument(
        "--streaming",
        action="store_true",
        help="Use a persistent stream instead of polling",
    )
    parser.add_argument(
        "--stream-backend",
        choices=list_streams(),
        default=os.getenv("STREAM_BACKEND", "sse"),
        help="Stream backend (default: sse)",
    )

    # Kafka settings
    parser.add_argument(
        "--kafka-servers",
        default=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        help="Kafka bootstrap servers (default: localhost:9092)",
    )
    parser.add_argument(
        "--topic",
        default=os.getenv("KAFKA_TOPIC", "usage-metrics"),
        help="Kafka topic (default: usage-metrics)",
    )
    parser.add_argument(
        "--group-id",
        default="usage-dashboard",
        help="Kafka consumer group ID",
    )

    # Detection
    parser.add_argument(
        "--threshold",
        type=float,
        default=2.0,
        help="Anomaly threshold as a multiple of the rolling average (default: 2.0)",
    )

    # Runtime settings
    parser.add_argument(
        "--duration",
        type=int,
        help="Run for N seconds then stop (default: infinite)",
    )
    parser.add_argument(
        "--stats-interval",
        type=float,
        default=10.0,
        help="Seconds between dashboard stats log lines (default: 10)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args) -> IngestionConfig:
    """Build configuration from arguments"""
    return IngestionConfig(
        api_base_url=args.api_url,
        request_timeout_seconds=args.timeout,
        stream_backend=args.stream_backend,
        kafka_bootstrap_servers=args.kafka_servers,
        kafka_topic=args.topic,
        kafka_group_id=args.group_id,
        anomaly_threshold=args.threshold,
        polling=PollingConfig(interval_ms=args.interval, use_streaming=args.streaming),
    )


def log_dashboard(store: MetricsStore, manager: TransportManager) -> None:
    """Log one line summarizing what the dashboard would display"""
    snapshot = store.snapshot
    status = store.connection_status
    leaders = store.top_customers(limit=1)

    logger.info(
        "Dashboard stats",
        status=status.status.value,
        transport=manager.state.value,
        last_update=status.last_update.isoformat() if status.last_update else None,
        error=status.error_message,
        total_cost=round(snapshot.total_cost, 4),
        total_tokens=snapshot.total_tokens,
        total_calls=snapshot.total_calls,
        avg_latency_ms=round(snapshot.avg_latency, 1),
        buckets=len(snapshot.time_series),
        buffered=len(store.buffer),
        open_anomalies=len(store.unacknowledged_anomalies),
        top_customer=leaders[0].customer_id if leaders else None,
    )


async def watch(
    config: IngestionConfig,
    duration_seconds: int | None = None,
    stats_interval_seconds: float = 10.0,
) -> dict:
    """Run the ingestion engine until the duration elapses

    Returns:
        The transport manager's stats
    """
    store = MetricsStore(config)
    client = MetricsAPIClient(config)
    manager = TransportManager(store, client, config)

    loop = asyncio.get_running_loop()
    start_time = loop.time()
    last_log_time = start_time

    logger.info(
        "Starting usage monitor",
        api_url=config.api_base_url,
        streaming=config.polling.use_streaming,
        stream_backend=config.stream_backend,
        interval_ms=config.polling.interval_ms,
        duration=duration_seconds if duration_seconds else "indefinite",
    )

    manager.start()
    try:
        while True:
            await asyncio.sleep(min(1.0, stats_interval_seconds))
            now = loop.time()

            if now - last_log_time >= stats_interval_seconds:
                log_dashboard(store, manager)
                last_log_time = now

            if duration_seconds and now - start_time >= duration_seconds:
                logger.info("Duration limit reached", duration_seconds=duration_seconds)
                break
    finally:
        manager.stop()
        client.close()

        elapsed = loop.time() - start_time
        logger.info(
            "Usage monitor stopped",
            elapsed_sec=round(elapsed, 1),
            events_ingested=manager.stats["events_ingested"],
            anomalies=len(store.anomalies),
        )

    return dict(manager.stats)


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)

    # Setup logging
    log_level = getattr(logging, args.log_level)
    setup_logging(level=log_level)

    try:
        config = build_config(args)
        asyncio.run(
            watch(
                config,
                duration_seconds=args.duration,
                stats_interval_seconds=args.stats_interval,
            )
        )
        logger.info("Monitor completed successfully")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Monitor failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
