"""Shared utilities for the metadata exchange service."""

from shared.utils.logging import configure_logging, get_correlation_id, set_correlation_id
from shared.utils.db import close_db, create_schema, get_db_session, init_db
from shared.utils.metrics import MetricsMiddleware, create_counter, create_histogram

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "set_correlation_id",
    "close_db",
    "create_schema",
    "get_db_session",
    "init_db",
    "MetricsMiddleware",
    "create_counter",
    "create_histogram",
]
