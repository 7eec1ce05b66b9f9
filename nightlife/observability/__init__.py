"""Logging, request metrics and health probes shared by the web app and services."""

from .health import check_database_health, check_qr_key
from .logging_config import configure_logging, ensure_request_id
from .metrics import (
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
    record_event,
    reset_metrics,
    set_gauge,
)

__all__ = [
    "check_database_health",
    "check_qr_key",
    "configure_logging",
    "ensure_request_id",
    "get_metrics_snapshot",
    "increment_counter",
    "observe_latency",
    "record_event",
    "reset_metrics",
    "set_gauge",
]
