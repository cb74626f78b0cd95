"""Logging configuration for the workflow canvas."""

import logging
import sys
import json
import traceback
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Dict, Any, Iterator


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


_log_context: ContextVar[Dict[str, Any]] = ContextVar("workflow_canvas_log_context", default={})


class CanvasContextFilter(logging.Filter):
    """Filter that stamps workflow/execution context onto log records.

    Context lives in a context variable, so each thread and each request
    task sees only the fields it set itself.
    """

    def set_context(self, **kwargs) -> Token:
        return _log_context.set({**_log_context.get(), **kwargs})

    def reset_context(self, token: Token):
        _log_context.reset(token)

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'extra_fields'):
            record.extra_fields = {}
        for key, value in _log_context.get().items():
            record.extra_fields.setdefault(key, value)
        return True


# Shared by every handler installed through setup_logging
_context_filter = CanvasContextFilter()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure logging for the workflow canvas.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        log_format: Custom log format string
        structured: Whether to emit structured JSON lines
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter = StructuredFormatter()
    else:
        if log_format is None:
            log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"
        formatter = logging.Formatter(fmt=log_format, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

    # Canvas events are chatty; keep them at INFO unless DEBUG was asked for
    logging.getLogger("workflow_canvas.core").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)
    logging.getLogger("workflow_canvas.api").setLevel(logging.INFO)
    logging.getLogger("workflow_canvas.storage").setLevel(logging.INFO)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs) -> Token:
    """Set context fields for subsequent log messages in the current context.

    Returns:
        Token for :func:`reset_logging_context`
    """
    return _context_filter.set_context(**kwargs)


def reset_logging_context(token: Token):
    """Restore the logging context that was active before ``token`` was set."""
    _context_filter.reset_context(token)


@contextmanager
def logging_context(**kwargs) -> Iterator[None]:
    """Attach context fields for the duration of a ``with`` block."""
    token = _context_filter.set_context(**kwargs)
    try:
        yield
    finally:
        _context_filter.reset_context(token)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context fields."""
    logger.log(level, message, extra={"extra_fields": context})


class ErrorRecoveryLogger:
    """Logger for retry and recovery of collaborator calls."""

    def __init__(self, component_name: str):
        self.logger = get_logger(f"workflow_canvas.recovery.{component_name}")
        self.component_name = component_name

    def log_recovery_attempt(self, operation: str, error: Exception, attempt: int, max_attempts: int):
        log_with_context(
            self.logger, logging.WARNING,
            f"Recovery attempt {attempt}/{max_attempts} for {operation}",
            component=self.component_name,
            operation=operation,
            error_type=type(error).__name__,
            error_message=str(error),
            attempt=attempt,
            max_attempts=max_attempts
        )

    def log_recovery_success(self, operation: str, attempts_used: int):
        log_with_context(
            self.logger, logging.INFO,
            f"Recovered {operation} after {attempts_used} attempts",
            component=self.component_name,
            operation=operation,
            attempts_used=attempts_used,
            recovery_status="success"
        )

    def log_recovery_failure(self, operation: str, final_error: Exception, attempts_used: int):
        log_with_context(
            self.logger, logging.ERROR,
            f"Giving up on {operation} after {attempts_used} attempts",
            component=self.component_name,
            operation=operation,
            error_type=type(final_error).__name__,
            error_message=str(final_error),
            attempts_used=attempts_used,
            recovery_status="failed"
        )
