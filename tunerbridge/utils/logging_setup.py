"""Logging setup for TunerBridge with console and rotating file output"""

import logging
import logging.handlers
import sys
from pathlib import Path

_SIZE_UNITS = {"KB": 1024, "MB": 1024 * 1024, "GB": 1024 * 1024 * 1024}


def parse_size(value: str | int) -> int:
    """Parse a size like ``10MB`` into bytes; bare numbers are bytes."""
    if isinstance(value, int):
        return value
    text = value.strip().upper()
    for unit, factor in _SIZE_UNITS.items():
        if text.endswith(unit):
            return int(float(text[: -len(unit)]) * factor)
    return int(text)


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    log_to_console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_format: str | None = None,
) -> logging.Logger:
    """
    Set up logging for the TunerBridge process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Log file path; file logging is disabled when empty
        log_to_console: Whether to log to stdout
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of rotated files to keep
        log_format: Format string for the file handler

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    file_formatter = logging.Formatter(
        log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    root_logger.info(f"Logging initialized - Level: {log_level}")
    if log_file:
        root_logger.info(f"Log file: {log_file} (max {max_bytes / (1024 * 1024):.1f} MB, {backup_count} backups)")

    if numeric_level <= logging.DEBUG:
        root_logger.debug("Debug mode is active!")
        root_logger.debug(
            "When finished, please delete all logs as they will contain sensitive private info."
        )

    return root_logger
