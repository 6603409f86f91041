"""Shared fakes and fixtures for the collection pipeline tests."""
from typing import Dict, List, Optional, Sequence

import pytest

from rds_exporter.config import Config
from rds_exporter.errors import ServiceError
from rds_exporter.models import Instance, Tag


def make_instance(identifier: str, engine: str = "mysql", **kwargs) -> Instance:
    """Build an instance with a predictable ARN."""
    return Instance(
        identifier=identifier,
        resource_id=f"arn:aws:rds:ap-northeast-2:123456789012:db:{identifier}",
        engine=engine,
        engine_version=kwargs.pop("engine_version", "8.0.35"),
        instance_class=kwargs.pop("instance_class", "db.r6g.large"),
        availability_zone=kwargs.pop("availability_zone", "ap-northeast-2a"),
        **kwargs,
    )


class FakeDirectory:
    """In-memory instance directory that records every call."""

    def __init__(self, pages: List[List[Instance]], tags: Dict[str, object]):
        self.pages = pages
        # resource id -> list of Tag, or an exception to raise
        self.tags = tags
        self.list_calls: List[Optional[str]] = []
        self.tag_calls: List[str] = []
        self.list_failures = 0

    def list_instances(self, page_token, page_size):
        self.list_calls.append(page_token)
        if self.list_failures > 0:
            self.list_failures -= 1
            raise ServiceError("describe_db_instances throttled")

        index = int(page_token) if page_token else 0
        next_token = str(index + 1) if index + 1 < len(self.pages) else None
        return list(self.pages[index]), next_token

    def list_tags(self, resource_id):
        self.tag_calls.append(resource_id)
        tags = self.tags.get(resource_id, [])
        if isinstance(tags, Exception):
            raise tags
        return list(tags)

    @property
    def call_count(self) -> int:
        return len(self.list_calls) + len(self.tag_calls)


class FakeTimeSeries:
    """Time-series service replaying scripted outcomes.

    Each outcome is an exception to raise or a callable receiving the
    queries. Once the script runs out every query returns ``[1.0]``.
    """

    def __init__(self, outcomes: Sequence[object] = ()):
        self.outcomes = list(outcomes)
        self.calls: List[list] = []

    def get_metric_data(self, queries, start, end):
        self.calls.append(list(queries))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome(queries)
        return {q.id: [1.0] for q in queries}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def tag_list(**pairs) -> List[Tag]:
    return [Tag(key=k, value=v) for k, v in pairs.items()]


@pytest.fixture
def config() -> Config:
    """Config with zero retry delays so tests never sleep."""
    return Config(
        aws={"read_timeout_s": 1},
        cloudwatch={"retry_delay_s": 0, "timeout_s": 2},
        rds={"retry_delay_s": 0},
        exporter={"collection_interval_s": 1},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> List[float]:
    """Records requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def mixed_fleet():
    """One production MySQL instance and one development Postgres instance."""
    prd = make_instance("orders-db", engine="aurora-mysql")
    dev = make_instance("analytics-db", engine="postgres", engine_version="15.4")
    directory = FakeDirectory(
        pages=[[prd, dev]],
        tags={
            prd.resource_id: tag_list(env="prd", team="orders"),
            dev.resource_id: tag_list(env="dev", team="data"),
        },
    )
    return directory, prd, dev
