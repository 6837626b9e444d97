"""
Logging configuration for HeroLoops
Structured logging for synthesis runs and external API calls
"""

import logging
import json
import sys
from datetime import datetime, timezone


# Extra record attributes copied into JSON log lines when present
STRUCTURED_FIELDS = (
    "area_id",
    "activity",
    "cluster_index",
    "tier",
    "api_name",
    "error_type",
    "phase",
    "percent",
    "duration",
)


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Set up logging for the engine and its entry points.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to emit one JSON object per line
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Third-party chatter
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger("heroloops").setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under ``heroloops``."""
    return logging.getLogger(f"heroloops.{name}")


def log_api_call(logger: logging.Logger, api_name: str, endpoint: str, **kwargs):
    """
    Log an external API call with structured data.

    Args:
        logger: Logger instance
        api_name: Name of the API being called
        endpoint: API endpoint or profile
        **kwargs: Additional fields to log
    """
    extra = {"api_name": api_name, "endpoint": endpoint, **kwargs}
    logger.info(f"API call to {api_name}: {endpoint}", extra=extra)


def log_error(logger: logging.Logger, error_type: str, message: str, **kwargs):
    """
    Log an error with structured data.

    Args:
        logger: Logger instance
        error_type: Type of error (e.g., "routing_failed", "too_short")
        message: Error message
        **kwargs: Additional fields to log
    """
    extra = {"error_type": error_type, **kwargs}
    logger.warning(message, extra=extra)
