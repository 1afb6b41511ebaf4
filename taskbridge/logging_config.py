import logging
import logging.config
import os
import sys
import time
import uuid
from typing import Optional

import structlog

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("apscheduler", "urllib3", "werkzeug")


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure structured logging for the application.

    Events are rendered as JSON through the stdlib handlers. Anything bound
    with RunContext (operation, operation_id) is merged into every event
    logged while the run is active.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path. If None, logs to stdout only.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = ["console"]
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "plain",
                "stream": sys.stdout
            }
        },
        "loggers": {
            "taskbridge": {"level": log_level, "handlers": handlers, "propagate": False},
        },
        "root": {"level": log_level, "handlers": handlers},
    }
    for name in QUIET_LOGGERS:
        log_config["loggers"][name] = {"level": "WARNING"}

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        log_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "plain",
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        handlers.append("file")

    logging.config.dictConfig(log_config)

    logger = structlog.get_logger("taskbridge")
    logger.info("Logging configured", level=log_level, file=log_file)
    return logger


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class RunContext:
    """
    Correlation scope for one materializer run or import session.

    Binds `operation` and `operation_id` into structlog's context variables
    so every event logged inside the block can be grouped by run.
    """

    def __init__(self, operation: str, operation_id: Optional[str] = None):
        self.operation = operation
        self.operation_id = operation_id or uuid.uuid4().hex[:8]
        self.logger = get_logger("taskbridge.run")
        self._started = None

    @property
    def elapsed_seconds(self) -> float:
        if self._started is None:
            return 0.0
        return round(time.monotonic() - self._started, 3)

    def __enter__(self):
        self._started = time.monotonic()
        structlog.contextvars.bind_contextvars(operation=self.operation, operation_id=self.operation_id)
        self.logger.info("Run started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.logger.info("Run finished", duration_seconds=self.elapsed_seconds, status="success")
        else:
            self.logger.error(
                "Run failed",
                duration_seconds=self.elapsed_seconds,
                status="error",
                error_type=exc_type.__name__,
                error_message=str(exc_val),
            )
        structlog.contextvars.unbind_contextvars("operation", "operation_id")
        return False
