"""Instance discovery with tag filtering and a time-bounded cache."""
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from rds_exporter.config import RDSConfig, TargetConfig
from rds_exporter.errors import DirectoryError, RetryExhaustedError
from rds_exporter.models import Instance, Tag
from rds_exporter.retry import RetryPolicy, call_with_retry
from rds_exporter.tags import TagFilter, matches_all

logger = logging.getLogger(__name__)


class InstanceDirectory(Protocol):
    """Remote service listing database instances and their tags."""

    def list_instances(
        self, page_token: Optional[str], page_size: int
    ) -> Tuple[List[Instance], Optional[str]]:
        ...

    def list_tags(self, resource_id: str) -> List[Tag]:
        ...


@dataclass(frozen=True)
class CacheEntry:
    """Filtered instances and the clock reading they were fetched at."""
    instances: Tuple[Instance, ...]
    fetched_at: float


class InstanceDirectoryClient:
    """Lists the fleet through an InstanceDirectory, caching per filter set."""

    def __init__(
        self,
        service: InstanceDirectory,
        config: RDSConfig,
        target: Optional[TargetConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.config = config
        self.target = target or TargetConfig()
        self.clock = clock
        self.sleep = sleep
        self.retry_policy = RetryPolicy(
            max_attempts=config.max_retries,
            delay_s=config.retry_delay_s,
            backoff=2.0,
        )
        self._cache: Dict[FrozenSet[TagFilter], CacheEntry] = {}

    def target_filters(self) -> FrozenSet[TagFilter]:
        """The configured fleet-wide filter set."""
        return frozenset([TagFilter(self.target.tag_key, self.target.tag_value)])

    def list_target_instances(self) -> List[Instance]:
        """List instances matching the configured fleet filter."""
        return self.list(self.target_filters())

    def list(self, filters: Iterable[TagFilter]) -> List[Instance]:
        """List instances whose tags satisfy every filter.

        Results are served from the cache while younger than the TTL.
        Raises DirectoryError if a listing page cannot be fetched.
        """
        key = frozenset(filters)
        now = self.clock()

        entry = self._cache.get(key)
        if entry is not None:
            age = now - entry.fetched_at
            if age < self.config.cache_ttl_s:
                logger.debug(f"Returning {len(entry.instances)} cached instances (age {age:.1f}s)")
                return list(entry.instances)
            logger.debug(f"Cache entry expired (age {age:.1f}s)")

        instances = self._fetch_filtered_instances(key)
        self._cache[key] = CacheEntry(instances=tuple(instances), fetched_at=self.clock())
        return instances

    def invalidate(self):
        """Drop every cached entry."""
        self._cache.clear()

    def _fetch_filtered_instances(self, filters: FrozenSet[TagFilter]) -> List[Instance]:
        """Page through the directory and keep instances matching the filters."""
        filtered: List[Instance] = []
        listed = 0
        page_token = None

        while True:
            instances, page_token = self._list_page(page_token)
            listed += len(instances)

            for instance in instances:
                tags = self._instance_tags(instance)
                if tags is None:
                    continue
                if matches_all(filters, tags):
                    filtered.append(dataclasses.replace(instance, tags=tuple(tags)))

            if not page_token:
                break

        logger.info(f"Discovered {len(filtered)} of {listed} instances matching {sorted(filters, key=str)}")
        return filtered

    def _list_page(self, page_token: Optional[str]) -> Tuple[List[Instance], Optional[str]]:
        try:
            return call_with_retry(
                lambda: self.service.list_instances(page_token, self.config.page_size),
                self.retry_policy,
                description="list_instances",
                sleep=self.sleep,
            )
        except RetryExhaustedError as e:
            raise DirectoryError(f"Instance listing failed: {e}") from e

    def _instance_tags(self, instance: Instance) -> Optional[List[Tag]]:
        """Fetch tags for one instance, or None if the lookup failed."""
        try:
            return call_with_retry(
                lambda: self.service.list_tags(instance.resource_id),
                self.retry_policy,
                description=f"list_tags({instance.identifier})",
                sleep=self.sleep,
            )
        except RetryExhaustedError as e:
            logger.warning(f"Skipping instance {instance.identifier}: tag lookup failed: {e}")
            return None
