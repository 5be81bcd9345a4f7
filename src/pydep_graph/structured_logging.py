"""
Structured logging configuration for pydep-graph.

Provides consistent, machine-readable logging of the resolution process:
install-log correlation, requested-by propagation and command execution.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ResolverLogger:
    """Structured logger for resolution events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"pydep_graph.{name}")
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False
            self.logger.setLevel(logging.WARNING)

    def set_context(
        self, tool: Optional[str] = None, module_name: Optional[str] = None
    ) -> None:
        """Set resolution context attached to every event."""
        self.context = {}
        if tool:
            self.context["tool"] = tool
        if module_name:
            self.context["module_name"] = module_name

    def clear_context(self) -> None:
        self.context.clear()

    def debug(self, event_type: str, **kwargs) -> None:
        """Log a resolution event with the current context attached."""
        log_data = {"event_type": event_type, **self.context, **kwargs}
        self.logger.debug(event_type, extra=log_data)


_correlator_logger = ResolverLogger("correlator")
_propagator_logger = ResolverLogger("propagator")
_command_logger = ResolverLogger("command")

_ALL_LOGGERS = [_correlator_logger, _propagator_logger, _command_logger]


def get_correlator_logger() -> ResolverLogger:
    """Get install-log correlation logger."""
    return _correlator_logger


def get_propagator_logger() -> ResolverLogger:
    """Get requested-by propagation logger."""
    return _propagator_logger


def get_command_logger() -> ResolverLogger:
    """Get command execution logger."""
    return _command_logger


def set_resolution_context(
    tool: Optional[str] = None, module_name: Optional[str] = None
) -> None:
    """Set context for all loggers."""
    for logger in _ALL_LOGGERS:
        logger.set_context(tool, module_name)


def clear_resolution_context() -> None:
    for logger in _ALL_LOGGERS:
        logger.clear_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
