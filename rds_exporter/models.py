"""Data structures shared by discovery, querying and publishing."""
from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class Tag:
    """A key/value tag attached to a directory resource."""
    key: str
    value: str


@dataclass(frozen=True)
class Instance:
    """A managed database instance as seen in one poll cycle."""
    identifier: str
    resource_id: str
    engine: str = ""
    engine_version: str = ""
    instance_class: str = ""
    availability_zone: str = ""
    tags: Tuple[Tag, ...] = ()

    def labels(self) -> Dict[str, str]:
        """Label set attached to every data point of this instance.

        Missing attributes are rendered as empty strings so that every
        instance yields the same label names.
        """
        return {
            "engine": self.engine,
            "engine_version": self.engine_version,
            "class": self.instance_class,
            "availability_zone": self.availability_zone,
            "instance_id": self.identifier,
        }


@dataclass(frozen=True)
class MetricQuery:
    """One metric/dimension pair inside a batched time-series call."""
    id: str
    namespace: str
    metric_name: str
    dimension_name: str
    dimension_value: str
    period: int
    statistic: str


@dataclass
class DataPoint:
    """A single sample with its metric name and tags."""
    value: float
    metric_name: str
    tags: Dict[str, str] = field(default_factory=dict)

    def label_key(self) -> str:
        """Generate a stable key from sorted tags."""
        items = sorted(self.tags.items())
        return ",".join(f"{k}={v}" for k, v in items)
