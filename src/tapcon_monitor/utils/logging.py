"""Logging utilities for tapcon monitor."""

import logging
import socket
import sys

from pythonjsonlogger import jsonlogger

# Libraries that log every request or notification at DEBUG/INFO
NOISY_LOGGERS = ("watchdog", "httpx", "httpcore", "docker", "urllib3")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_formatter(log_format: str) -> logging.Formatter:
    """
    Formatter for the daemon's log sink.

    JSON records carry the host name, since one collector usually gathers
    every host's agent.
    """
    if log_format.lower() != "json":
        return logging.Formatter(TEXT_FORMAT)
    return jsonlogger.JsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "timestamp"},
        static_fields={"host": socket.gethostname()},
        timestamp=True,
    )


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Route all daemon logging to stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format type (json or text)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    # Diagnostics dumps go to the same sink as everything else
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(build_formatter(log_format))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)
