"""Logging for the retargeting pipeline: colored console output, optional file log"""

import copy
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "mocap"


class ColoredFormatter(logging.Formatter):
    """Colored log output for terminal."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    NAME_COLOR = "\033[34m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so the file handler sees plain level names
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        record.name = f"{self.NAME_COLOR}{record.name}{self.RESET}"
        return super().format(record)


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Setup logging for the ``mocap`` logger tree.

    Calling it again only updates the level; handlers are installed once.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file name (a timestamp suffix is added)
        log_dir: Directory for log files

    Returns:
        Root logger instance
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(_resolve_level(level))

    if root_logger.handlers:
        return root_logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        "%(asctime)s │ %(levelname)-8s │ %(name)-24s │ %(message)s",
        datefmt="%H:%M:%S"
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_path = log_path / f"{log_file}_{timestamp}.log"

        file_handler = logging.FileHandler(file_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)-24s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {file_path}")

    return root_logger


def setup_logging_from_config(config) -> logging.Logger:
    """Configure logging from the ``logging`` section of a Config."""
    section = config.logging
    return setup_logging(
        level=section.get("level", "INFO"),
        log_file=section.get("log_file"),
        log_dir=section.get("log_dir", "logs"),
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger under the mocap namespace.

    Args:
        name: Module name (e.g., "pose.mapper", "motion.retarget")

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
