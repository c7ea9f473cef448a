"""
Logging configuration for the operations simulation core
JSON logs in production, human-readable logs in development.
Records are tagged with the API request id and the simulation step/stage/problem being run.
"""

import logging
import sys
import json
import uuid
from typing import Any, Dict, Iterator, Optional
from logging.handlers import RotatingFileHandler
from contextlib import contextmanager
from contextvars import ContextVar
import os

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
run_context: ContextVar[Dict[str, Any]] = ContextVar("run_context", default={})

# LogRecord attributes that are never copied into the JSON payload
_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "request_id",
}


def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    request_id = request_id_context.get() or getattr(record, "request_id", None)
    if request_id:
        fields["request_id"] = request_id
    fields.update(run_context.get())
    return fields


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_context_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter with request and simulation context"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string"""
        context = _context_fields(record)

        base_format = "%(asctime)s - %(name)s - %(levelname)s"
        if context:
            tags = " ".join(f"{key}={value}" for key, value in context.items())
            base_format += f" - [{tags}]"
        base_format += " - %(message)s"

        formatter = logging.Formatter(base_format, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Setup logging configuration

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (for production)
        log_file: Optional log file path
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep
    """
    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet third-party loggers
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.WARNING)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request ID in context

    Args:
        request_id: Optional request ID. If None, generates a new UUID.

    Returns:
        The request ID (generated or provided)
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_context.set(request_id)
    return request_id


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Tag every log record emitted inside the block with extra fields

    Nested blocks merge their fields with the enclosing ones.

    Example:
        >>> with log_context(step=1, stage=2):
        ...     logger.info("solving")
    """
    token = run_context.set({**run_context.get(), **fields})
    try:
        yield
    finally:
        run_context.reset(token)


@contextmanager
def file_logging(
    log_file: str, level: int = logging.INFO, logger_name: str = "opsim"
) -> Iterator[None]:
    """
    Copy records of `logger_name` into a file for the duration of the block

    Used to keep one log per problem build next to its outputs.
    """
    handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(HumanReadableFormatter())
    target = logging.getLogger(logger_name)
    target.addHandler(handler)
    try:
        yield
    finally:
        target.removeHandler(handler)
        handler.close()


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
