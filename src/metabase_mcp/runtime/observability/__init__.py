"""Observability: structured logging."""

from .logging import (
    BoundLogger,
    CaptureRenderer,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    NoOpRenderer,
    configure_logging,
    get_logger,
    log_context,
)

__all__ = [
    "BoundLogger", "CaptureRenderer", "ConsoleRenderer", "JsonRenderer", "LogEntry",
    "LogRenderer", "NoOpRenderer", "configure_logging", "get_logger", "log_context",
]
