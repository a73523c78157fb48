"""
Shared Error Handling Utilities - Centralized error reporting for the engine.

Gives extractors, the IOC store and the orchestrator one way to report a
failure with its component/operation metadata. Failures are logged and
re-raised; only conditions explicitly marked non-fatal (a skipped backup
file, an unreadable snapshot) go through ``log_and_continue``.
"""

import logging
import threading
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from orbguard_core.logic.models.errors import ForensicError


class ErrorSeverity(Enum):
    """Severity levels for reported errors."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Where an error happened: component, operation and free-form metadata."""
    operation: str
    component: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorInfo:
    """A single reported error."""
    severity: ErrorSeverity
    message: str
    context: ErrorContext
    exception: Optional[BaseException] = None
    stack_trace: Optional[str] = None

    def __post_init__(self):
        if self.exception is not None and not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            ))

    @property
    def error_type(self) -> str:
        if isinstance(self.exception, ForensicError):
            return self.exception.error_type
        if self.exception is not None:
            return type(self.exception).__name__
        return "condition"


class ErrorReporter:
    """
    Logs reported errors and keeps per-component counters.

    The counters back ``ForensicEngine.error_stats``: the number of
    conditions seen in a session per component and severity.
    """

    def __init__(self, logger_name: str = "error.reporter"):
        self.logger = logging.getLogger(logger_name)
        self.error_stats: Dict[str, int] = {}
        self._lock = threading.Lock()

    def report(self, error_info: ErrorInfo) -> None:
        key = f"{error_info.context.component}_{error_info.severity.value}"
        with self._lock:
            self.error_stats[key] = self.error_stats.get(key, 0) + 1

        message = f"[{error_info.context.component}] {error_info.context.operation}: {error_info.message}"
        if error_info.context.metadata:
            message += f" | Metadata: {error_info.context.metadata}"

        # Tracebacks only for unexpected failures; taxonomy errors are self-describing
        exc_info = None
        if error_info.exception is not None and not isinstance(error_info.exception, ForensicError):
            exc_info = error_info.exception

        if error_info.severity == ErrorSeverity.DEBUG:
            self.logger.debug(message)
        elif error_info.severity == ErrorSeverity.INFO:
            self.logger.info(message)
        elif error_info.severity == ErrorSeverity.WARNING:
            self.logger.warning(message)
        elif error_info.severity == ErrorSeverity.ERROR:
            self.logger.error(message, exc_info=exc_info)
        else:
            self.logger.critical(message, exc_info=exc_info)

    def get_error_stats(self) -> Dict[str, int]:
        with self._lock:
            return self.error_stats.copy()

    def reset_error_stats(self) -> None:
        with self._lock:
            self.error_stats.clear()


# Global reporter instance
_reporter = ErrorReporter()


def get_error_reporter() -> ErrorReporter:
    """Get the global error reporter."""
    return _reporter


@contextmanager
def error_context(operation: str, component: str, **metadata) -> Iterator[ErrorContext]:
    """
    Context manager that reports any failure inside the block and re-raises it.

    Recoverable taxonomy errors (``ExtractError``) are reported at WARNING,
    everything else at ERROR.
    """
    context = ErrorContext(operation=operation, component=component, metadata=dict(metadata))

    try:
        yield context
    except Exception as e:
        recoverable = isinstance(e, ForensicError) and e.recoverable
        _reporter.report(ErrorInfo(
            severity=ErrorSeverity.WARNING if recoverable else ErrorSeverity.ERROR,
            message=str(e),
            context=context,
            exception=e
        ))
        raise


def log_and_continue(message: str,
                     component: str = "unknown_component",
                     severity: ErrorSeverity = ErrorSeverity.WARNING,
                     **metadata) -> None:
    """Report a non-fatal condition and continue execution."""
    _reporter.report(ErrorInfo(
        severity=severity,
        message=message,
        context=ErrorContext(operation="log_and_continue", component=component, metadata=dict(metadata))
    ))
