"""
Structured Logging Configuration Module

JSON log records for imports, commits, status passes and admin actions.
Every record carries the acting user, the action name and the resource it
touched, so a day of servicing can be replayed from the log stream.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Attributes copied from a LogRecord into the JSON payload when present
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "loan_servicing",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        logger_name: Application root logger; module loggers are its children
        log_format: "json" or "text"
        log_file: Write to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(TEXT_FORMAT) if log_format == "text" else JSONFormatter()
    )
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False

    return logger


def get_logger(name: str = "loan_servicing") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Emit a structured record.

    Args:
        logger: Module logger
        level: info, warning, error ...
        message: Human-readable summary
        user_id: User performing the action
        action: Machine-readable action name (reconcile_import, status_pass)
        resource: Touched resource, "kind:id"
        correlation_id: Request id, when known
        extra: Counts and other details
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra or None,
    }
    logger.log(
        logging.getLevelName(level.upper()),
        message,
        extra={k: v for k, v in fields.items() if v is not None}
    )
