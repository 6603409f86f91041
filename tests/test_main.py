"""Tests for bootstrap helpers."""
import json
import logging
import sys

from rds_exporter.config import Config
from rds_exporter.main import JsonFormatter, build_publishers, setup_logging
from rds_exporter.prom_exporter import PrometheusPublisher
from rds_exporter.publishers import LogPublisher


def test_prometheus_publisher_only_by_default():
    prometheus, publishers = build_publishers(Config())

    assert isinstance(prometheus, PrometheusPublisher)
    assert publishers == [prometheus]
    assert prometheus.prefix == "rds_"


def test_log_publisher_is_optional():
    config = Config(exporter={"log_publisher": True, "prefix": "aws_rds_"})

    prometheus, publishers = build_publishers(config)

    assert [type(p) for p in publishers] == [PrometheusPublisher, LogPublisher]
    assert prometheus.series_name("CPUUtilization") == "aws_rds_cpuutilization"


def test_setup_logging_quiets_noisy_libraries():
    setup_logging("DEBUG", "text")

    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


def make_record(message, exc_info=None):
    return logging.LogRecord(
        "rds_exporter.directory", logging.WARNING, __file__, 1, message, None, exc_info
    )


def test_json_lines_survive_quotes_in_messages():
    line = JsonFormatter().format(
        make_record('Skipping instance "orders-db": tag lookup failed')
    )

    entry = json.loads(line)
    assert entry["message"] == 'Skipping instance "orders-db": tag lookup failed'
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "rds_exporter.directory"


def test_json_lines_carry_tracebacks_on_one_line():
    try:
        raise RuntimeError('sink "prometheus" unavailable')
    except RuntimeError:
        line = JsonFormatter().format(make_record("Publisher failed", sys.exc_info()))

    assert "\n" not in line
    entry = json.loads(line)
    assert entry["exc_info"].startswith("Traceback")
    assert 'RuntimeError: sink "prometheus" unavailable' in entry["exc_info"]
