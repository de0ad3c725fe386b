"""Structured JSON logging with workflow execution context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from storeflow.config import get_settings

CONTEXT_FIELDS = ("workflow_id", "execution_id", "node_id", "primitive")


class ExecutionContextFilter(logging.Filter):
    """Add execution context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default context fields if not present."""
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if "timestamp" not in log_record:
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Drop empty context slots so lines stay short
        for name in CONTEXT_FIELDS:
            if not log_record.get(name):
                log_record.pop(name, None)


def setup_logging() -> None:
    """Configure structured JSON logging for the application."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    handler.addFilter(ExecutionContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call ``extra`` over the adapter's own."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> logging.LoggerAdapter:
    """
    Get a logger with execution context support.

    Args:
        name: Logger name (typically __name__)
        **context: Fields attached to every record from this adapter

    Returns:
        LoggerAdapter that can accept execution context in extra dict
    """
    logger = logging.getLogger(name)
    return ContextLoggerAdapter(logger, extra=context)


def with_trace_context(
    workflow_id: str | None = None,
    execution_id: str | None = None,
    node_id: str | None = None,
    primitive: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with execution context for logging.

    Args:
        workflow_id: Workflow ID
        execution_id: Execution ID
        node_id: Node being executed
        primitive: Primitive name
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if execution_id:
        extra["execution_id"] = execution_id
    if node_id:
        extra["node_id"] = node_id
    if primitive:
        extra["primitive"] = primitive
    return extra
