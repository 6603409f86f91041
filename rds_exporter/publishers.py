"""Publisher capability and a log-based implementation."""
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Sequence

from rds_exporter.models import DataPoint

logger = logging.getLogger(__name__)


class MetricPublisher(ABC):
    """Consumes one batch of data points per poll cycle."""

    name = "publisher"

    @abstractmethod
    def publish(self, batch: Sequence[DataPoint]) -> int:
        """Publish a batch and return the number of points written."""
        pass

    @abstractmethod
    def snapshot(self) -> bytes:
        """Render the currently exported state."""
        pass


class LogPublisher(MetricPublisher):
    """Writes a per-cycle summary of each batch to the log."""

    name = "log"

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self._last_batch: List[DataPoint] = []
        self._lock = threading.Lock()

    def publish(self, batch: Sequence[DataPoint]) -> int:
        instances = {p.tags.get("instance_id", "") for p in batch}
        metrics = {p.metric_name for p in batch}
        logger.log(
            self.level,
            f"Batch: {len(batch)} points, {len(instances)} instances, {len(metrics)} metrics"
        )
        for point in batch:
            logger.debug(f"{point.metric_name}{{{point.label_key()}}} = {point.value}")

        with self._lock:
            self._last_batch = list(batch)
        return len(batch)

    def snapshot(self) -> bytes:
        with self._lock:
            lines = [
                f"{p.metric_name}{{{p.label_key()}}} {p.value}"
                for p in self._last_batch
            ]
        return ("\n".join(lines) + "\n").encode("utf-8") if lines else b""
