"""
nftvest - Structured Logging Configuration

Configures structured JSON logging for the vesting engine and its API:
- JSON format for easy parsing and aggregation
- Log rotation to prevent disk space issues
- Console and file handlers

Usage:
    from nftvest.core.logging_config import setup_logging

    logger = setup_logging(
        name="nftvest.core",
        log_file="/var/log/nftvest/core.json",
        level="INFO"
    )

    logger.info("Plan created", extra={"event": "vesting.plan_created", "plan_id": 1})
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with additional context fields.

    Adds timestamp, environment, service name and source location to all
    log records.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "nftvest",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or "production"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "nftvest",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    enable_file: bool = True,
    max_bytes: int = 100 * 1024 * 1024,  # 100MB
    backup_count: int = 10,
) -> logging.Logger:
    """
    Setup structured JSON logging.

    Args:
        name: Logger name (typically the package or a sub-package)
        log_file: Path to JSON log file (optional)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment identifier (dev, staging, prod)
        enable_console: Whether to log to console
        enable_file: Whether to log to file
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    formatter = CustomJsonFormatter(
        fmt="%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp=True,
        environment=environment,
        service_name=name.split(".")[0],
    )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if enable_file and log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setLevel(getattr(logging, level.upper()))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(
                "Could not create file handler for %s: %s",
                log_file,
                e,
                extra={"event": "logging.file_handler_failed"},
            )

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def get_logger(
    name: str,
    log_file: Optional[str] = None,
    level: str = "INFO",
) -> logging.Logger:
    """
    Get or create a logger with standard configuration.

    Only configures the logger on first use.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logging(name=name, log_file=log_file, level=level)

    return logger


def setup_engine_logging(
    environment: str = "production",
    log_file: Optional[str] = None,
    level: str = "INFO",
) -> logging.Logger:
    """Setup logging for the vesting engine and its API."""
    return setup_logging(
        name="nftvest.core",
        log_file=log_file,
        level=level,
        environment=environment,
    )


def setup_cli_logging(
    environment: str = "production",
    log_file: Optional[str] = None,
    level: str = "INFO",
) -> logging.Logger:
    """
    Setup logging for the command line client.

    Console output belongs to the CLI itself, so records only go to the file.
    """
    logger = setup_logging(
        name="nftvest.cli",
        log_file=log_file,
        level=level,
        environment=environment,
        enable_console=False,
    )
    logger.propagate = False
    return logger
