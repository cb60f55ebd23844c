"""
Logging Configuration

Plain text logs in development, one JSON object per line everywhere else.
Request-scoped fields (tenant_id, user_id, request_id) are passed through
`extra=` and end up as top-level keys in the JSON output.
"""
import logging
import sys
from typing import Any, Dict
import json
from datetime import datetime

# Extra attributes copied into JSON records when present
CONTEXT_FIELDS = ("tenant_id", "user_id", "request_id", "security_event", "event_type")


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Makes logs machine-readable for log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format for structured logging

    NOTE: Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)

    root_logger.addHandler(handler)

    # Reduce noise from noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() for consistency.
    """
    return logging.getLogger(name)


def log_security_event(event_type: str, details: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Log security-related events.

    Event types:
    - failed_login: Failed authentication attempt
    - tenant_isolation_violation: Attempted cross-tenant access
    - rate_limit_exceeded: Rate limit hit
    - privilege_escalation: Attempted unauthorized action
    - password_reset, password_reset_no_user, password_reset_invalid_token
    """
    log_data = {
        "security_event": True,
        "event_type": event_type,
        **details
    }

    logger.warning(f"SECURITY EVENT: {event_type}", extra=log_data)
