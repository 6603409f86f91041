"""boto3-backed implementations of the directory and time-series services."""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError
)

from rds_exporter.config import AWSConfig
from rds_exporter.errors import CallTimeoutError, ServiceError
from rds_exporter.models import Instance, MetricQuery, Tag

logger = logging.getLogger(__name__)


def create_session(config: AWSConfig) -> boto3.session.Session:
    """Create a boto3 session for the configured region and profile."""
    if config.profile:
        logger.info(f"Using AWS profile '{config.profile}' in {config.region}")
        return boto3.session.Session(profile_name=config.profile, region_name=config.region)
    return boto3.session.Session(region_name=config.region)


def client_config(config: AWSConfig) -> BotoConfig:
    """botocore client settings; retries are handled by the exporter."""
    return BotoConfig(
        connect_timeout=config.connect_timeout_s,
        read_timeout=config.read_timeout_s,
        retries={"max_attempts": 1, "mode": "standard"},
    )


class RdsInstanceDirectory:
    """Instance directory backed by the RDS API."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_config(cls, config: AWSConfig, session: boto3.session.Session = None):
        session = session or create_session(config)
        return cls(session.client("rds", config=client_config(config)))

    def list_instances(
        self, page_token: Optional[str], page_size: int
    ) -> Tuple[List[Instance], Optional[str]]:
        params = {"MaxRecords": page_size}
        if page_token:
            params["Marker"] = page_token

        try:
            response = self.client.describe_db_instances(**params)
        except (ClientError, BotoCoreError) as e:
            raise ServiceError(f"describe_db_instances failed: {e}") from e

        instances = [
            Instance(
                identifier=db.get("DBInstanceIdentifier", ""),
                resource_id=db.get("DBInstanceArn", ""),
                engine=db.get("Engine", ""),
                engine_version=db.get("EngineVersion", ""),
                instance_class=db.get("DBInstanceClass", ""),
                availability_zone=db.get("AvailabilityZone", ""),
            )
            for db in response.get("DBInstances", [])
            if db.get("DBInstanceArn")
        ]
        return instances, response.get("Marker")

    def list_tags(self, resource_id: str) -> List[Tag]:
        try:
            response = self.client.list_tags_for_resource(ResourceName=resource_id)
        except (ClientError, BotoCoreError) as e:
            raise ServiceError(f"list_tags_for_resource({resource_id}) failed: {e}") from e

        return [
            Tag(key=t.get("Key", ""), value=t.get("Value", ""))
            for t in response.get("TagList", [])
        ]


class CloudWatchTimeSeries:
    """Time-series service backed by CloudWatch GetMetricData."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_config(cls, config: AWSConfig, session: boto3.session.Session = None):
        session = session or create_session(config)
        return cls(session.client("cloudwatch", config=client_config(config)))

    @staticmethod
    def to_request(query: MetricQuery) -> dict:
        """Convert a MetricQuery into a GetMetricData query structure."""
        return {
            "Id": query.id,
            "MetricStat": {
                "Metric": {
                    "Namespace": query.namespace,
                    "MetricName": query.metric_name,
                    "Dimensions": [
                        {"Name": query.dimension_name, "Value": query.dimension_value}
                    ],
                },
                "Period": query.period,
                "Stat": query.statistic,
            },
            "ReturnData": True,
        }

    def get_metric_data(
        self, queries: Sequence[MetricQuery], start: datetime, end: datetime
    ) -> Dict[str, List[float]]:
        """Fetch all pages and return values per query id, oldest first."""
        params = {
            "MetricDataQueries": [self.to_request(q) for q in queries],
            "StartTime": start,
            "EndTime": end,
            # Oldest first, so the last value set on a gauge is the newest
            "ScanBy": "TimestampAscending",
        }
        results: Dict[str, List[float]] = {q.id: [] for q in queries}

        while True:
            try:
                response = self.client.get_metric_data(**params)
            except (ConnectTimeoutError, ReadTimeoutError) as e:
                raise CallTimeoutError(f"get_metric_data timed out: {e}") from e
            except (ClientError, BotoCoreError) as e:
                raise ServiceError(f"get_metric_data failed: {e}") from e

            for result in response.get("MetricDataResults", []):
                results.setdefault(result["Id"], []).extend(
                    float(v) for v in result.get("Values", [])
                )

            next_token = response.get("NextToken")
            if not next_token:
                break
            params["NextToken"] = next_token

        return results
