"""Batched time-series retrieval with timeout and bounded retry."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime
from typing import Callable, Dict, List, Protocol, Sequence, Tuple

from rds_exporter.config import CloudWatchConfig
from rds_exporter.errors import (
    CallTimeoutError,
    ExporterError,
    ServiceError,
    ValidationError,
)
from rds_exporter.models import MetricQuery
from rds_exporter.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

# (namespace, metric_name, dimension_name, dimension_value)
MetricSpec = Tuple[str, str, str, str]


class TimeSeriesService(Protocol):
    """Remote service answering batched metric queries."""

    def get_metric_data(
        self, queries: Sequence[MetricQuery], start: datetime, end: datetime
    ) -> Dict[str, List[float]]:
        ...


class TimeSeriesClient:
    """Issues one batched query per call and correlates results by query id."""

    def __init__(
        self,
        service: TimeSeriesService,
        config: CloudWatchConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.config = config
        self.sleep = sleep
        self.retry_policy = RetryPolicy(
            max_attempts=config.retry_attempts,
            delay_s=config.retry_delay_s,
            backoff=1.0,
        )

    def build_queries(self, metrics: Sequence[MetricSpec]) -> List[MetricQuery]:
        """Build one query per metric, with ids derived from position."""
        queries = []
        for idx, (namespace, metric_name, dimension_name, dimension_value) in enumerate(metrics):
            if not namespace or not metric_name:
                raise ValidationError(
                    f"namespace and metric_name must not be empty (query m{idx}: "
                    f"namespace={namespace!r}, metric_name={metric_name!r})"
                )
            queries.append(MetricQuery(
                id=f"m{idx}",
                namespace=namespace,
                metric_name=metric_name,
                dimension_name=dimension_name,
                dimension_value=dimension_value,
                period=self.config.period,
                statistic=self.config.stat,
            ))
        return queries

    def query(
        self, metrics: Sequence[MetricSpec], start: datetime, end: datetime
    ) -> Dict[str, List[float]]:
        """Fetch samples for every metric in a single batched call.

        Raises ValidationError before any network call for empty names,
        CallTimeoutError on the first timeout, and RetryExhaustedError
        once every attempt has failed with a service error.
        """
        queries = self.build_queries(metrics)
        if not queries:
            return {}

        return call_with_retry(
            lambda: self._execute(queries, start, end),
            self.retry_policy,
            description=f"get_metric_data({len(queries)} queries)",
            sleep=self.sleep,
        )

    def _execute(
        self, queries: List[MetricQuery], start: datetime, end: datetime
    ) -> Dict[str, List[float]]:
        """Run one attempt under the hard timeout."""
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.service.get_metric_data, queries, start, end)
            return future.result(timeout=self.config.timeout_s)
        except FuturesTimeoutError:
            logger.warning(f"get_metric_data timed out after {self.config.timeout_s}s")
            raise CallTimeoutError(f"get_metric_data timed out after {self.config.timeout_s}s")
        except ExporterError:
            raise
        except Exception as e:
            raise ServiceError(f"get_metric_data failed: {e}") from e
        finally:
            # A timed out call keeps its worker thread; never wait on it.
            executor.shutdown(wait=False)
