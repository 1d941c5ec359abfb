"""Logging setup for the API, the Temporal worker and the remote driver.

Each process configures its own named loggers once, with a console handler
and (unless LOG_TO_FILE is off) a file under LOG_DIR. Modules themselves
only call `logging.getLogger(__name__)`; configuring the "hybridflow"
logger routes every engine, node and driver module below it.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

# Log directory, configurable via LOG_DIR env var for Docker
LOG_DIR = Path(os.getenv("LOG_DIR", str(Path(__file__).parent.parent / "logs")))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes")

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str) -> logging.Logger:
    """Attach console and file handlers to a named logger, once per process.

    Args:
        name: Logger name (e.g., 'hybridflow', 'worker', 'api')
        filename: Log file name under LOG_DIR (e.g., 'engine.log')

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    logger.setLevel(LOG_LEVEL)
    logger.propagate = False  # handlers are attached here, not on the root

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    if LOG_TO_FILE:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(LOG_DIR / filename, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    _configured_loggers.add(name)
    return logger


def get_engine_logger() -> logging.Logger:
    """Parent of every hybridflow module logger (state machine, router, nodes)."""
    return setup_logger("hybridflow", "engine.log")


def get_worker_logger() -> logging.Logger:
    """Logger for the Temporal worker process."""
    return setup_logger("worker", "worker.log")


def get_api_logger() -> logging.Logger:
    """Logger for API requests and startup."""
    return setup_logger("api", "api.log")


def get_driver_logger() -> logging.Logger:
    """Logger for the remote driver CLI."""
    return setup_logger("hybridflow.remote", "driver.log")
