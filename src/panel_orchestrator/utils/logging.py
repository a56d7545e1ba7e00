"""Logging setup: JSON lines by default, plain text for local runs."""

import logging
import sys

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Floor levels of third-party loggers that flood DEBUG output
_NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "docker": logging.INFO,
    "aiosqlite": logging.INFO,
    "sqlalchemy.engine": logging.WARNING,
}


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return jsonlogger.JsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
            timestamp=True,
        )
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Route all application logging to stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format type (json or text)

    Raises:
        ValueError: If the level name is unknown
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(log_format))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name, floor in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, floor))


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, typically ``get_logger(__name__)``."""
    return logging.getLogger(name)
