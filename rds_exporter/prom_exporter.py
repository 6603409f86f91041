"""Prometheus gauge registry publisher using prometheus_client."""
from typing import Dict, List, Sequence, Set, Tuple
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, generate_latest
)
import logging
import threading

from rds_exporter.errors import RegistrationConflictError
from rds_exporter.models import DataPoint
from rds_exporter.publishers import MetricPublisher

logger = logging.getLogger(__name__)


class PrometheusPublisher(MetricPublisher):
    """Maintains one labelled gauge per metric name for pull-based scraping."""

    name = "prometheus"

    def __init__(self, registry: CollectorRegistry = None, prefix: str = "rds_"):
        # Use a dedicated registry to avoid exporting default Python/process metrics
        self.registry = registry if registry is not None else CollectorRegistry()
        self.prefix = prefix

        # series name -> (gauge, label names fixed at first observation)
        self.series: Dict[str, Tuple[Gauge, Tuple[str, ...]]] = {}
        # series name -> label-value tuples exported by the last publish
        self.cells: Dict[str, Set[Tuple[str, ...]]] = {}
        self._lock = threading.Lock()

    def series_name(self, metric_name: str) -> str:
        """Derive the exported series name from a metric name."""
        return f"{self.prefix}{metric_name.lower()}"

    def _get_or_create_gauge(self, name: str, metric_name: str, label_names: Tuple[str, ...]) -> Gauge:
        """Return the gauge for a series, creating it on first observation."""
        with self._lock:
            existing = self.series.get(name)
            if existing is not None:
                gauge, registered = existing
                if registered != label_names:
                    raise RegistrationConflictError(
                        f"Series {name} registered with labels {list(registered)}, "
                        f"got {list(label_names)}"
                    )
                return gauge

            try:
                gauge = Gauge(
                    name,
                    f"RDS metric: {metric_name}",
                    label_names,
                    registry=self.registry
                )
            except ValueError as e:
                raise RegistrationConflictError(f"Failed to register series {name}: {e}") from e

            self.series[name] = (gauge, label_names)
            logger.info(f"Registered Prometheus gauge: {name} with labels {list(label_names)}")
            return gauge

    def set_point(self, point: DataPoint) -> Tuple[str, Tuple[str, ...]]:
        """Set the gauge cell for one point, overwriting its previous value.

        Returns the series name and the label values of the cell written.
        """
        name = self.series_name(point.metric_name)
        label_names = tuple(sorted(point.tags.keys()))
        gauge = self._get_or_create_gauge(name, point.metric_name, label_names)

        values = tuple(str(point.tags[k]) for k in label_names)
        if label_names:
            gauge.labels(*values).set(point.value)
        else:
            gauge.set(point.value)
        return name, values

    def publish(self, batch: Sequence[DataPoint]) -> int:
        """Set every point in the batch, dropping points that conflict.

        Each batch is a full cycle: cells written by the previous batch
        but absent from this one are removed, so instances that left the
        fleet or returned no data stop being exported.
        """
        written = 0
        refreshed: Dict[str, Set[Tuple[str, ...]]] = {}
        for point in batch:
            try:
                name, values = self.set_point(point)
                refreshed.setdefault(name, set()).add(values)
                written += 1
            except RegistrationConflictError as e:
                logger.warning(f"Dropping point for {point.metric_name}: {e}")

        self._remove_stale(refreshed)
        logger.debug(f"Published {written}/{len(batch)} points to Prometheus registry")
        return written

    def _remove_stale(self, refreshed: Dict[str, Set[Tuple[str, ...]]]):
        """Remove labelled cells that the latest batch did not refresh."""
        with self._lock:
            removed = 0
            for name, previous in self.cells.items():
                gauge, label_names = self.series[name]
                if not label_names:
                    continue
                for values in previous - refreshed.get(name, set()):
                    gauge.remove(*values)
                    removed += 1
            self.cells = refreshed

        if removed:
            logger.info(f"Removed {removed} stale series cells")

    def snapshot(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    def label_names(self, metric_name: str) -> List[str]:
        """Label names registered for a metric, empty if not yet seen."""
        entry = self.series.get(self.series_name(metric_name))
        return list(entry[1]) if entry else []


class SelfMetrics:
    """Self-monitoring metrics for the collector."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()

        self.cycles_total = Counter(
            f"{prefix}exporter_cycles_total",
            "Total number of completed poll cycles",
            registry=registry
        )

        self.cycle_duration_seconds = Histogram(
            f"{prefix}exporter_cycle_duration_seconds",
            "Duration of each poll cycle in seconds",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=registry
        )

        self.instances = Gauge(
            f"{prefix}exporter_instances",
            "Number of instances discovered in the last cycle",
            registry=registry
        )

        self.points_total = Counter(
            f"{prefix}exporter_points_total",
            "Total number of data points collected",
            registry=registry
        )

        self.errors_total = Counter(
            f"{prefix}exporter_errors_total",
            "Total number of collection errors",
            ["stage"],
            registry=registry
        )

    def record_cycle(self, duration: float):
        """Record a finished cycle."""
        self.cycles_total.inc()
        self.cycle_duration_seconds.observe(duration)

    def set_instances(self, count: int):
        """Set the discovered instance count."""
        self.instances.set(count)

    def record_points(self, count: int):
        """Record collected points."""
        self.points_total.inc(count)

    def record_error(self, stage: str):
        """Record an error in the given stage (directory, query or publish)."""
        self.errors_total.labels(stage=stage).inc()
