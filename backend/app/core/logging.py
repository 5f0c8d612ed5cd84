"""Logging configuration for the income ledger backend."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any


def setup_logging(level: int | str | None = None) -> logging.Logger:
    """Configure and return the application logger."""
    logger = logging.getLogger("ledger")

    if logger.handlers:
        return logger

    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str = "ledger") -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class LogContext:
    """Context manager that logs the start, completion or failure of an operation."""

    def __init__(self, logger: logging.Logger, operation: str, **context: Any) -> None:
        self.logger = logger
        self.operation = operation
        self.context = context

    def _describe(self) -> str:
        if not self.context:
            return self.operation
        params = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.operation} ({params})"

    def __enter__(self) -> "LogContext":
        self.logger.info(f"Starting {self._describe()}")
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any) -> bool:
        if exc_type is not None:
            self.logger.error(
                f"Failed {self._describe()}: {exc_val}",
                exc_info=True,
            )
        else:
            self.logger.info(f"Completed {self._describe()}")
        return False


# Initialize default logger
logger = setup_logging()
