"""
Structured logging configuration.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from protelab.config import LOG_LEVEL


def build_formatter() -> JsonFormatter:
    """One JSON object per record: timestamp, level, logger, message plus any `extra`."""
    return JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def configure_logging(app_name: str = "protelab", log_level: str = LOG_LEVEL) -> logging.Logger:
    """
    Configure structured logging for the application.

    Args:
        app_name: Name of the application logger; module loggers below it inherit the handler
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter())
    logger.addHandler(handler)
    return logger
