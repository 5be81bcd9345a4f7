"""
Error handling for pydep-graph.

Provides the exception hierarchy raised to callers, plus structured,
credential-sanitizing logging of the errors that are reported on the way.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class PyDepGraphError(Exception):
    """Base exception for all pydep-graph errors."""


class UnsupportedToolError(PyDepGraphError):
    """Raised when an operation is requested for an unknown package manager."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} commands are not supported.")


class CommandFailedError(PyDepGraphError):
    """Raised when a package manager command exits with a non-zero status."""

    def __init__(self, tool: str, reason: str, error_output: str = ""):
        self.tool = tool
        self.reason = reason
        self.error_output = error_output
        super().__init__(
            f"failed running {tool} command with error: '{reason} - {error_output}'"
        )


class DependencyTreeParseError(PyDepGraphError):
    """Raised when a dependency tree listing cannot be decoded."""


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    PARSING = "PARSING"
    COMMAND = "COMMAND"
    VALIDATION = "VALIDATION"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Index URLs in install output may carry credentials
_SENSITIVE_PATTERNS = [
    (r"(https?://[^@\s/]+:)[^@\s]+@", r"\1[REDACTED]@"),
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
    (r'password["\s]*[:=]["\s]*([^\s"\']+)', 'password="[REDACTED]"'),
    (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
]


def sanitize_message(message: str) -> str:
    """
    Remove credentials from a message before it is logged or displayed.

    Args:
        message: Original message

    Returns:
        str: Sanitized message
    """
    sanitized = message
    for pattern, replacement in _SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
    return sanitized


class SecureLogger:
    """Logger that sanitizes sensitive information."""

    def __init__(
        self,
        name: str,
        level: int = logging.WARNING,
        log_format: str = DEFAULT_LOG_FORMAT,
        mask_sensitive_data: bool = True,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.mask_sensitive_data = mask_sensitive_data

        if not self.logger.handlers:
            self.logger.addHandler(logging.StreamHandler(sys.stderr))
        for handler in self.logger.handlers:
            handler.setFormatter(logging.Formatter(log_format))

    def _mask(self, message: str) -> str:
        return sanitize_message(message) if self.mask_sensitive_data else message

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.mask_sensitive_data:
            return data

        sanitized = {}
        sensitive_keys = {"token", "password", "secret", "credential", "auth"}

        for key, value in data.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized

    def log_error_context(self, context: ErrorContext):
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{self._mask(context.message)} | {log_data}"
        self.logger.log(getattr(logging, context.level.value), log_message)


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler.

    Every reported error is logged, counted, and passed to registered callbacks.
    """

    def __init__(
        self,
        logger_name: str = "pydep_graph",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
        log_format: str = DEFAULT_LOG_FORMAT,
        mask_sensitive_data: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level, log_format, mask_sensitive_data)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            callbacks = self.error_callbacks.get(category, []) + self.global_callbacks
            for callback in callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    # Callback errors must not break the main flow
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def debug(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle debug level condition."""
        return self.handle_error(
            ErrorLevel.DEBUG, category, message, module, function, **kwargs
        )

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "pydep_graph",
    log_format: str = DEFAULT_LOG_FORMAT,
    mask_sensitive_data: bool = True,
) -> ErrorHandler:
    """
    Setup global error handling configuration.

    Args:
        log_level: Logging level
        enable_callbacks: Whether to enable callbacks
        logger_name: Logger name
        log_format: Format of the handler log lines
        mask_sensitive_data: Whether credentials are redacted from logged errors

    Returns:
        ErrorHandler: Configured error handler
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(
        logger_name, log_level, enable_callbacks, log_format, mask_sensitive_data
    )
    return _global_error_handler


def log_command_failure(
    tool: str,
    message: str,
    module: str,
    function: str,
    return_code: Optional[int] = None,
    exception: Optional[Exception] = None,
):
    """
    Convenience function for reporting a failed package manager command.

    Args:
        tool: Package manager that was run
        message: Error message
        module: Module name
        function: Function name
        return_code: Exit status of the command, if it ran at all
        exception: Optional exception
    """
    details: Dict[str, Any] = {"tool": tool}
    if return_code is not None:
        details["return_code"] = return_code

    get_error_handler().error(
        ErrorCategory.COMMAND,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            f"Run '{tool} install' manually to inspect the failure",
            "Check that the project's requirements can be resolved",
        ],
    )
