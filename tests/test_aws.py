"""Tests for the boto3 service adapters using botocore's Stubber."""
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from botocore.exceptions import ConnectTimeoutError, ReadTimeoutError
from botocore.stub import Stubber

from rds_exporter.aws import CloudWatchTimeSeries, RdsInstanceDirectory
from rds_exporter.errors import CallTimeoutError, ServiceError
from rds_exporter.models import MetricQuery, Tag
from rds_exporter.timeseries import TimeSeriesClient

END = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
START = END - timedelta(minutes=5)


def make_client(service):
    return boto3.client(
        service,
        region_name="ap-northeast-2",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def db_instance(identifier, engine="mysql"):
    return {
        "DBInstanceIdentifier": identifier,
        "DBInstanceArn": f"arn:aws:rds:ap-northeast-2:123456789012:db:{identifier}",
        "Engine": engine,
        "EngineVersion": "8.0.35",
        "DBInstanceClass": "db.r6g.large",
        "AvailabilityZone": "ap-northeast-2a",
    }


@pytest.fixture
def rds():
    client = make_client("rds")
    with Stubber(client) as stubber:
        yield RdsInstanceDirectory(client), stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def cloudwatch():
    client = make_client("cloudwatch")
    with Stubber(client) as stubber:
        yield CloudWatchTimeSeries(client), stubber
        stubber.assert_no_pending_responses()


def test_list_instances_maps_fields_and_marker(rds):
    directory, stubber = rds
    stubber.add_response(
        "describe_db_instances",
        {"DBInstances": [db_instance("orders-db", "aurora-mysql")], "Marker": "page-2"},
        {"MaxRecords": 100},
    )

    instances, token = directory.list_instances(None, 100)

    assert token == "page-2"
    assert len(instances) == 1
    instance = instances[0]
    assert instance.identifier == "orders-db"
    assert instance.resource_id.endswith(":db:orders-db")
    assert instance.engine == "aurora-mysql"
    assert instance.instance_class == "db.r6g.large"


def test_list_instances_passes_marker(rds):
    directory, stubber = rds
    stubber.add_response(
        "describe_db_instances",
        {"DBInstances": []},
        {"MaxRecords": 50, "Marker": "page-2"},
    )

    instances, token = directory.list_instances("page-2", 50)

    assert instances == []
    assert token is None


def test_list_tags(rds):
    directory, stubber = rds
    arn = db_instance("orders-db")["DBInstanceArn"]
    stubber.add_response(
        "list_tags_for_resource",
        {"TagList": [{"Key": "env", "Value": "prd"}, {"Key": "team", "Value": "orders"}]},
        {"ResourceName": arn},
    )

    assert directory.list_tags(arn) == [Tag("env", "prd"), Tag("team", "orders")]


def test_client_errors_become_service_errors(rds):
    directory, stubber = rds
    stubber.add_client_error("describe_db_instances", service_error_code="Throttling")

    with pytest.raises(ServiceError, match="Throttling"):
        directory.list_instances(None, 100)


def test_metric_request_structure():
    query = MetricQuery("m0", "AWS/RDS", "CPUUtilization", "DBInstanceIdentifier", "orders-db", 60, "Average")

    assert CloudWatchTimeSeries.to_request(query) == {
        "Id": "m0",
        "MetricStat": {
            "Metric": {
                "Namespace": "AWS/RDS",
                "MetricName": "CPUUtilization",
                "Dimensions": [{"Name": "DBInstanceIdentifier", "Value": "orders-db"}],
            },
            "Period": 60,
            "Stat": "Average",
        },
        "ReturnData": True,
    }


def test_get_metric_data_follows_next_token(cloudwatch):
    timeseries, stubber = cloudwatch
    queries = [
        MetricQuery("m0", "AWS/RDS", "CPUUtilization", "DBInstanceIdentifier", "orders-db", 60, "Average"),
        MetricQuery("m1", "AWS/RDS", "FreeableMemory", "DBInstanceIdentifier", "orders-db", 60, "Average"),
    ]
    stubber.add_response(
        "get_metric_data",
        {
            "MetricDataResults": [
                {"Id": "m1", "Label": "FreeableMemory", "Timestamps": [END], "Values": [2048.0], "StatusCode": "Complete"},
                {"Id": "m0", "Label": "CPUUtilization", "Timestamps": [START], "Values": [30.0], "StatusCode": "PartialData"},
            ],
            "NextToken": "token-2",
        },
    )
    stubber.add_response(
        "get_metric_data",
        {
            "MetricDataResults": [
                {"Id": "m0", "Label": "CPUUtilization", "Timestamps": [END], "Values": [35.0], "StatusCode": "Complete"},
            ],
        },
    )

    result = timeseries.get_metric_data(queries, START, END)

    assert result == {"m0": [30.0, 35.0], "m1": [2048.0]}


def test_get_metric_data_error(cloudwatch):
    timeseries, stubber = cloudwatch
    stubber.add_client_error("get_metric_data", service_error_code="InternalServiceError", http_status_code=500)
    query = MetricQuery("m0", "AWS/RDS", "CPUUtilization", "DBInstanceIdentifier", "orders-db", 60, "Average")

    with pytest.raises(ServiceError):
        timeseries.get_metric_data([query], START, END)


class TimingOutClient:
    """CloudWatch client whose socket never delivers a response."""

    def __init__(self, error):
        self.error = error
        self.calls = 0

    def get_metric_data(self, **params):
        self.calls += 1
        raise self.error


@pytest.mark.parametrize("error", [
    ReadTimeoutError(endpoint_url="https://monitoring.ap-northeast-2.amazonaws.com/"),
    ConnectTimeoutError(endpoint_url="https://monitoring.ap-northeast-2.amazonaws.com/"),
])
def test_socket_timeouts_are_reported_once_without_retry(config, error):
    client = TimingOutClient(error)
    sleeps = []
    timeseries = TimeSeriesClient(CloudWatchTimeSeries(client), config.cloudwatch, sleep=sleeps.append)
    query = ("AWS/RDS", "CPUUtilization", "DBInstanceIdentifier", "orders-db")

    with pytest.raises(CallTimeoutError, match="timed out"):
        timeseries.query([query], START, END)

    assert client.calls == 1
    assert sleeps == []
