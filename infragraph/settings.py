import os

STATE_FORMAT_VERSION = 1

ID_KEY = "id"

STATE_PATH = os.getenv("INFRAGRAPH_STATE_PATH") or "infragraph.state"
LOCK_SUFFIX = ".lock"

PARALLELISM = int(os.getenv("INFRAGRAPH_PARALLELISM") or 10)

# Readiness polling, in seconds
POLL_INITIAL_INTERVAL = float(os.getenv("INFRAGRAPH_POLL_INITIAL_INTERVAL") or 0.5)
POLL_MAX_INTERVAL = float(os.getenv("INFRAGRAPH_POLL_MAX_INTERVAL") or 30.0)
POLL_BACKOFF_FACTOR = 2.0

DEFAULT_TIMEOUT = float(os.getenv("INFRAGRAPH_DEFAULT_TIMEOUT") or 10 * 60)

# Long-latency resource types get their own bound
TYPE_TIMEOUTS = {
    "aws_lb": 15 * 60,
    "aws_rds_cluster": 60 * 60,
    "aws_rds_cluster_instance": 60 * 60,
    "aws_elasticache_replication_group": 45 * 60,
    "aws_efs_file_system": 15 * 60,
    "aws_autoscaling_group": 20 * 60,
}

LOG_LEVEL = os.getenv("INFRAGRAPH_LOG_LEVEL") or "WARNING"


def timeout_for(type_name: str) -> float:
    return TYPE_TIMEOUTS.get(type_name, DEFAULT_TIMEOUT)
