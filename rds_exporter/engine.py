"""Collection orchestrator and scheduler."""
import threading
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from rds_exporter.config import Config
from rds_exporter.directory import InstanceDirectoryClient
from rds_exporter.errors import ExporterError
from rds_exporter.metric_sets import select_metrics
from rds_exporter.models import DataPoint, Instance
from rds_exporter.prom_exporter import SelfMetrics
from rds_exporter.publishers import MetricPublisher
from rds_exporter.timeseries import TimeSeriesClient

logger = logging.getLogger(__name__)


class CollectionOrchestrator:
    """Runs poll cycles: discover, query, assemble and publish."""

    def __init__(
        self,
        config: Config,
        directory: InstanceDirectoryClient,
        timeseries: TimeSeriesClient,
        publishers: Sequence[MetricPublisher],
        self_metrics: Optional[SelfMetrics] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config
        self.directory = directory
        self.timeseries = timeseries
        self.publishers: List[MetricPublisher] = list(publishers)
        self.self_metrics = self_metrics
        self.now = now

        self.running = False
        self.collecting = False
        self.cycle_count = 0
        self.start_time = time.time()
        self.last_cycle_at: Optional[float] = None
        self.last_cycle_duration: Optional[float] = None
        self.last_cycle_points = 0
        self.last_cycle_instances = 0
        self.last_error: Optional[str] = None
        self._stop_event = threading.Event()

        logger.info(f"Collection orchestrator initialized with {len(self.publishers)} publishers")

    def collect_once(self) -> List[DataPoint]:
        """Execute one poll cycle and return the published batch.

        A directory listing failure propagates; per-instance query
        failures and publisher failures are logged and contained.
        """
        cycle_start = time.time()
        self.collecting = True
        try:
            try:
                instances = self.directory.list_target_instances()
            except Exception:
                self._record_error("directory")
                raise

            if self.self_metrics:
                self.self_metrics.set_instances(len(instances))

            end_time = self.now()
            start_time = end_time - timedelta(seconds=self.config.cloudwatch.window_s)

            batch: List[DataPoint] = []
            for instance in instances:
                batch.extend(self._collect_instance(instance, start_time, end_time))

            self._publish(batch)

            if self.self_metrics:
                self.self_metrics.record_points(len(batch))

            self.last_cycle_points = len(batch)
            self.last_cycle_instances = len(instances)
            self.last_error = None
            return batch
        finally:
            self.collecting = False
            self.cycle_count += 1
            self.last_cycle_at = time.time()
            self.last_cycle_duration = self.last_cycle_at - cycle_start
            if self.self_metrics:
                self.self_metrics.record_cycle(self.last_cycle_duration)

    def _collect_instance(
        self, instance: Instance, start_time: datetime, end_time: datetime
    ) -> List[DataPoint]:
        """Query one instance's metric set and build its data points."""
        metric_names = select_metrics(instance.engine)
        cw = self.config.cloudwatch
        metric_specs = [
            (cw.namespace, metric_name, cw.dimension_name, instance.identifier)
            for metric_name in metric_names
        ]

        try:
            results = self.timeseries.query(metric_specs, start_time, end_time)
        except ExporterError as e:
            logger.warning(f"Metric collection failed for instance {instance.identifier}: {e}")
            self._record_error("query")
            return []

        tags = instance.labels()
        points = []
        # Query ids are positional, so m{idx} belongs to metric_names[idx]
        for idx, metric_name in enumerate(metric_names):
            for value in results.get(f"m{idx}", []):
                points.append(DataPoint(
                    value=float(value),
                    metric_name=metric_name,
                    tags=dict(tags),
                ))

        logger.debug(f"Collected {len(points)} points for instance {instance.identifier}")
        return points

    def _publish(self, batch: List[DataPoint]):
        """Hand the batch to every publisher, isolating their failures."""
        for publisher in self.publishers:
            try:
                written = publisher.publish(batch)
                logger.debug(f"Publisher {publisher.name} wrote {written} points")
            except Exception as e:
                logger.error(f"Publisher {publisher.name} failed: {e}", exc_info=True)
                self._record_error("publish")

    def _record_error(self, stage: str):
        if self.self_metrics:
            self.self_metrics.record_error(stage)

    def run(self):
        """Run poll cycles until stopped."""
        self.running = True
        self._stop_event.clear()
        self.start_time = time.time()

        logger.info("Starting collection loop")

        interval = self.config.exporter.collection_interval_s

        while self.running:
            cycle_start = time.time()

            try:
                batch = self.collect_once()
                logger.info(
                    f"Cycle {self.cycle_count}: published {len(batch)} points "
                    f"from {self.last_cycle_instances} instances"
                )
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Error in poll cycle: {e}", exc_info=True)

            # Sleep for remaining time in the interval
            cycle_duration = time.time() - cycle_start
            sleep_time = max(0, interval - cycle_duration)

            if sleep_time == 0:
                logger.warning(
                    f"Cycle took {cycle_duration:.3f}s, longer than interval {interval}s"
                )

            if self._stop_event.wait(sleep_time):
                break

        self.running = False
        logger.info("Collection loop stopped")

    def stop(self):
        """Stop the loop after the current cycle."""
        logger.info("Stopping collection loop")
        self.running = False
        self._stop_event.set()

    def status(self) -> Dict[str, Any]:
        """Summary of the loop state for the status endpoint."""
        return {
            "state": "collecting" if self.collecting else "idle",
            "running": self.running,
            "uptime_seconds": time.time() - self.start_time,
            "cycle_count": self.cycle_count,
            "last_cycle_at": self.last_cycle_at,
            "last_cycle_duration_seconds": self.last_cycle_duration,
            "last_cycle_points": self.last_cycle_points,
            "last_cycle_instances": self.last_cycle_instances,
            "last_error": self.last_error,
            "publishers": [p.name for p in self.publishers],
            "config": {
                "collection_interval_s": self.config.exporter.collection_interval_s,
                "target": f"{self.config.target.tag_key}={self.config.target.tag_value}",
                "region": self.config.aws.region,
            },
        }


def run_collector_thread(orchestrator: CollectionOrchestrator):
    """Run the orchestrator in a separate thread."""
    try:
        orchestrator.run()
    except Exception as e:
        logger.error(f"Collector thread error: {e}", exc_info=True)
        orchestrator.stop()
