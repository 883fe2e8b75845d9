"""Logging configuration for image-sanitizer."""

import logging
import sys
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "image_sanitizer"


def setup_logger(
    name: str = PACKAGE_LOGGER,
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Module loggers (``image_sanitizer.*``) get no handlers of their own and
    propagate to the package logger, so ``--verbose`` and ``--log-file``
    reconfigure every module at once.

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_file: Optional file path for log output

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if name != PACKAGE_LOGGER and name.startswith(PACKAGE_LOGGER + "."):
        if not logging.getLogger(PACKAGE_LOGGER).handlers:
            setup_logger(PACKAGE_LOGGER)
        return logger

    logger.setLevel(level)
    logger.propagate = False

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    # Console output goes to stderr; stdout carries the progress bar and report
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(fmt="%(levelname)s: %(message)s")
    )
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # More verbose in file
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger
