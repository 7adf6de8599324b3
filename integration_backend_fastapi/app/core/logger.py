"""
Structured logging for the integration backend.
Supports JSON and text formats, with different log levels for dev/uat vs prod.
Request context (request_id, method, path, tenant) and job context (job_id,
tenant, entity type) are merged into every record emitted while they are set.
"""
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from app.core.config import settings

# Context variables are per-thread/per-task, so the scheduler thread and
# request handlers never see each other's context.
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("request_context", default=None)
_job_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("job_context", default=None)


def _current_context() -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    request_context = _request_context.get()
    if request_context:
        merged.update(request_context)
    job_context = _job_context.get()
    if job_context:
        merged.update(job_context)
    return merged


class ContextFilter(logging.Filter):
    """Copy request_id and the active request/job context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = _request_id.get()
        if request_id:
            record.request_id = request_id

        for key, value in _current_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds timestamp, environment info and context fields."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = settings.ENVIRONMENT

        if hasattr(record, "request_id"):
            log_record["request_id"] = record.request_id

        for key, value in _current_context().items():
            if key not in log_record:
                log_record[key] = value

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


class TextFormatter(logging.Formatter):
    """Text formatter that appends request/job context as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "environment"):
            record.environment = settings.ENVIRONMENT
        base_msg = super().format(record)

        if hasattr(record, "request_id"):
            base_msg = f"{base_msg} [request_id={record.request_id}]"

        context_parts = [
            f"{key}={value}"
            for key, value in _current_context().items()
            if key != "request_id"
        ]
        if context_parts:
            base_msg = f"{base_msg} [{', '.join(context_parts)}]"

        return base_msg


def setup_logger(name: str = "integration_backend") -> logging.Logger:
    """
    Set up and configure a logger with environment-based settings.

    Args:
        name: Logger name (default: "integration_backend")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if settings.LOG_FILE:
        handler = logging.FileHandler(settings.LOG_FILE)
    else:
        handler = logging.StreamHandler(sys.stdout)

    if settings.LOG_FORMAT == "json":
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    else:
        formatter = TextFormatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s] [%(environment)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


def set_request_context(request_id: Optional[str] = None, **kwargs) -> None:
    """
    Set request context for logging. This will automatically be included in all subsequent logs.

    Args:
        request_id: Unique request ID
        **kwargs: Additional context fields (e.g., method, path, tenant_id)
    """
    if request_id:
        _request_id.set(request_id)

    if kwargs:
        _request_context.set(kwargs)
    elif request_id:
        _request_context.set({})


def clear_request_context() -> None:
    """Clear request context after request is processed."""
    _request_id.set(None)
    _request_context.set(None)


def set_job_context(job_id: str, tenant_id: Optional[str] = None, entity_type: Optional[str] = None) -> None:
    """Attach the ingestion job being processed to every log record of this thread."""
    context: Dict[str, Any] = {"job_id": job_id}
    if tenant_id:
        context["tenant_id"] = tenant_id
    if entity_type:
        context["entity_type"] = entity_type
    _job_context.set(context)


def clear_job_context() -> None:
    _job_context.set(None)


# Lazy logger instance - only created on first access
_app_logger = None


def get_app_logger() -> logging.Logger:
    """Lazy logger loader - logger is only created on first access."""
    global _app_logger
    if _app_logger is None:
        _app_logger = setup_logger("integration_backend")
    return _app_logger


class _LoggerProxy:
    """Proxy that lazily loads logger on first method call."""

    def __getattr__(self, name):
        return getattr(get_app_logger(), name)

    def __repr__(self):
        return repr(get_app_logger())


app_logger = _LoggerProxy()
