"""Engine-aware selection of the CloudWatch metrics to request."""
import enum
from typing import List


class EngineFamily(enum.Enum):
    """Database engine families with distinct metric sets."""
    COMMON = "common"
    MYSQL = "mysql"
    POSTGRES = "postgres"

    @classmethod
    def from_engine(cls, engine: str) -> "EngineFamily":
        """Map a raw engine identifier (e.g. ``aurora-mysql``) to its family."""
        engine = (engine or "").strip().lower()
        if engine in MYSQL_ENGINES:
            return cls.MYSQL
        if engine in POSTGRES_ENGINES:
            return cls.POSTGRES
        return cls.COMMON


MYSQL_ENGINES = frozenset(["mysql", "aurora-mysql", "aurora"])
POSTGRES_ENGINES = frozenset(["postgres", "aurora-postgresql"])

COMMON_METRICS = (
    "CPUUtilization",
    "FreeableMemory",
    "FreeStorageSpace",
    "DatabaseConnections",
    "ReadIOPS",
    "WriteIOPS",
    "ReadLatency",
    "WriteLatency",
    "DiskQueueDepth",
    "ReadThroughput",
    "WriteThroughput",
    "NetworkReceiveThroughput",
    "NetworkTransmitThroughput",
    "LockWaitTime",
    "LockContention",
    "QueryExecutionTime",
    "QueryCount",
    "SlowQueries",
    "BackupStatus",
    "SnapshotAge",
)

MYSQL_METRICS = (
    "Queries",
    "ThreadsRunning",
    "InnodbBufferPoolHits",
    "InnodbBufferPoolReadRequests",
    "InnodbBufferPoolReads",
    "DeadlocksCount",
)

POSTGRES_METRICS = (
    "ActiveTransactions",
    "BufferCacheHitRatio",
    "IndexHitRatio",
    "Deadlocks",
    "TemporaryTables",
    "ReplicationLag",
    "CheckpointDuration",
    "WALWriteLatency",
)

_FAMILY_METRICS = {
    EngineFamily.COMMON: (),
    EngineFamily.MYSQL: MYSQL_METRICS,
    EngineFamily.POSTGRES: POSTGRES_METRICS,
}


def metrics_for_family(family: EngineFamily) -> List[str]:
    """Ordered metric names for a family: the common set, then its extras.

    Query ids are assigned by position in this list, so the order must
    stay stable.
    """
    return list(COMMON_METRICS) + list(_FAMILY_METRICS[family])


def select_metrics(engine: str) -> List[str]:
    """Ordered metric names to request for a raw engine identifier."""
    return metrics_for_family(EngineFamily.from_engine(engine))
