"""Utility modules."""

from .logging import LogContext, configure_logging, get_logger, log_operation, snapshot_context

__all__ = ["LogContext", "configure_logging", "get_logger", "log_operation", "snapshot_context"]
