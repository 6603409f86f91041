"""Main entry point for the RDS metrics exporter."""
import argparse
import json
import logging
import sys
import threading
import signal
from datetime import datetime, timezone
from typing import List, Tuple

from rds_exporter.config import Config, load_config
from rds_exporter.aws import CloudWatchTimeSeries, RdsInstanceDirectory, create_session
from rds_exporter.directory import InstanceDirectoryClient
from rds_exporter.engine import CollectionOrchestrator, run_collector_thread
from rds_exporter.control_api import ControlAPI
from rds_exporter.prom_exporter import PrometheusPublisher, SelfMetrics
from rds_exporter.publishers import LogPublisher, MetricPublisher
from rds_exporter.timeseries import TimeSeriesClient


class JsonFormatter(logging.Formatter):
    """One JSON object per line; tracebacks go in the "exc_info" field."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_publishers(config: Config) -> Tuple[PrometheusPublisher, List[MetricPublisher]]:
    """Create the registry-backed publisher plus any optional ones."""
    prometheus = PrometheusPublisher(prefix=config.exporter.prefix)
    publishers: List[MetricPublisher] = [prometheus]
    if config.exporter.log_publisher:
        publishers.append(LogPublisher())
    return prometheus, publishers


def build_orchestrator(config: Config) -> Tuple[CollectionOrchestrator, PrometheusPublisher]:
    """Wire AWS clients, publishers and the orchestrator together."""
    session = create_session(config.aws)

    directory = InstanceDirectoryClient(
        RdsInstanceDirectory.from_config(config.aws, session),
        config.rds,
        target=config.target,
    )
    timeseries = TimeSeriesClient(
        CloudWatchTimeSeries.from_config(config.aws, session),
        config.cloudwatch,
    )

    prometheus, publishers = build_publishers(config)
    self_metrics = SelfMetrics(registry=prometheus.registry, prefix=config.exporter.prefix)

    orchestrator = CollectionOrchestrator(
        config,
        directory,
        timeseries,
        publishers,
        self_metrics=self_metrics,
    )
    return orchestrator, prometheus


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="RDS Metrics Exporter - CloudWatch metrics for RDS in Prometheus format"
    )
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to configuration YAML file (defaults are used if omitted)"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("RDS Metrics Exporter")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config or '<defaults>'}")
    logger.info(f"Region: {config.aws.region}")
    logger.info(f"Target filter: {config.target.tag_key}={config.target.tag_value}")
    logger.info(f"Collection interval: {config.exporter.collection_interval_s}s")

    try:
        orchestrator, prometheus = build_orchestrator(config)
    except Exception as e:
        logger.error(f"Failed to initialize collector: {e}", exc_info=True)
        sys.exit(1)

    control_api = ControlAPI(orchestrator, prometheus)

    # Start collection in separate thread
    collector_thread = threading.Thread(
        target=run_collector_thread,
        args=(orchestrator,),
        daemon=True
    )
    collector_thread.start()
    logger.info("Collection loop started")

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        orchestrator.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run HTTP server (blocking)
    logger.info(f"Serving metrics on {config.exporter.host}:{config.exporter.port}/metrics")
    try:
        control_api.run(
            host=config.exporter.host,
            port=config.exporter.port
        )
    except Exception as e:
        logger.error(f"HTTP server error: {e}", exc_info=True)
        orchestrator.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
