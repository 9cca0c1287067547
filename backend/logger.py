"""
Nexus Scheduling Agent - Logging
Console and rotating file output for the service
"""

import logging
import sys
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGS_DIR = os.getenv("LOG_DIR", os.path.join(os.path.dirname(__file__), "logs"))
LOG_FILE_NAME = "nexus.log"

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP clients log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "asyncpg")


class LevelColorFormatter(logging.Formatter):
    """Colors console lines by level and appends the call site."""

    COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[34;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self):
        super().__init__(PLAIN_FORMAT + " (%(filename)s:%(lineno)d)", datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{line}{self.RESET}" if color else line


def resolve_level(level: Optional[int] = None) -> int:
    if level is not None:
        return level
    name = os.getenv("LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def setup_logger(name: str = "", level: Optional[int] = None, log_to_file: bool = True) -> logging.Logger:
    """Configure the service logger once at startup.

    With the default empty name the root logger is configured, so module
    loggers created with ``logging.getLogger(__name__)`` share its handlers.
    Repeated calls only adjust the level.
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(level))

    if logger.handlers:
        return logger

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(LevelColorFormatter())
    logger.addHandler(console)

    if log_to_file:
        os.makedirs(LOGS_DIR, exist_ok=True)
        rotating = RotatingFileHandler(
            os.path.join(LOGS_DIR, LOG_FILE_NAME),
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        rotating.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(rotating)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
