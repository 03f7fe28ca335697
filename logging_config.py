"""
Centralized logging configuration for DesignBundleWeb.

This module provides thread-aware logging with automatic thread context
in all log messages. Job status polling runs in background threads, so the
thread name is the quickest way to tell which job a line belongs to.

Features:
    - Automatic thread name and ID in all log messages
    - Console output (always enabled)
    - Rotating file logs (optional, for production)
    - Separate error log for ERROR/CRITICAL messages
    - Separate reconciliation log for payment capture failures
    - Helper functions for getting loggers with consistent naming

Log Format:
    2026-03-02 10:15:30 [INFO    ] [MainThread] design_bundle_web.app - Starting application
    2026-03-02 10:15:31 [INFO    ] [Poll-1842] design_bundle_web.job.1842 - Status: processing
    2026-03-02 10:15:32 [ERROR   ] [MainThread] design_bundle_web.reconciliation - Capture failed

Usage:
    # At application startup
    from logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    # In modules
    logger = get_logger(__name__)
    logger.info("This message includes thread context automatically")

    # For tracker threads
    job_logger = get_job_logger("1842")
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


APP_LOGGER_NAME = "design_bundle_web"
RECONCILIATION_LOGGER_NAME = f"{APP_LOGGER_NAME}.reconciliation"


# =============================================================================
# THREAD CONTEXT FILTER
# =============================================================================

class ThreadContextFilter(logging.Filter):
    """
    Logging filter that adds thread context to all log records.

    This filter adds two attributes to each log record:
        - thread_name: Name of the current thread (e.g., "MainThread", "Poll-1842")
        - thread_id: Numeric ID of the current thread
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_thread = threading.current_thread()
        record.thread_name = current_thread.name
        record.thread_id = threading.get_ident()
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    thread_filter: logging.Filter,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,  # 10 MB per file
        backupCount=5,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(thread_filter)
    return handler


def setup_logging(
    app_name: str = APP_LOGGER_NAME,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application logging with thread context.

    This sets up:
    1. Console handler (always enabled)
    2. Rotating file handler (optional)
    3. Error file handler (optional) - ERROR/CRITICAL only
    4. Reconciliation file handler (optional) - capture failures only
    5. Thread context filter - adds thread name to all messages

    Args:
        app_name: Name of the root logger (default: "design_bundle_web")
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs relative to this file)
        enable_file_logging: Whether to write to log files (default: True)

    Returns:
        Configured root logger instance
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False  # Prevent duplicate logs to root logger

    # Remove any existing handlers (allows re-configuration)
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)-8s] [%(thread_name)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    thread_filter = ThreadContextFilter()

    # ---------------------------------------------------------------------
    # Console Handler (always enabled)
    # ---------------------------------------------------------------------
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(thread_filter)
    logger.addHandler(console_handler)

    # ---------------------------------------------------------------------
    # File Handlers (optional)
    # ---------------------------------------------------------------------
    if enable_file_logging:
        if log_dir is None:
            log_dir = Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        logger.addHandler(_rotating_handler(app_log_file, log_level, formatter, thread_filter))
        logger.addHandler(
            _rotating_handler(log_dir / f"{app_name}_error.log", logging.ERROR, formatter, thread_filter)
        )

        # Paid-but-no-artifact cases are reviewed by hand, keep them in their own file
        reconciliation_logger = logging.getLogger(RECONCILIATION_LOGGER_NAME)
        reconciliation_logger.handlers.clear()
        reconciliation_logger.addHandler(
            _rotating_handler(log_dir / f"{app_name}_reconciliation.log", logging.WARNING, formatter, thread_filter)
        )

        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger with the application namespace.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance with thread context support

    Example:
        # In services/orchestrator.py
        logger = get_logger(__name__)
        # Logger name: "design_bundle_web.services.orchestrator"
    """
    if not name.startswith(APP_LOGGER_NAME):
        name = f"{APP_LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def get_job_logger(job_id: str) -> logging.Logger:
    """
    Get a logger for a specific generation job.

    Args:
        job_id: Backend job identifier (only first 8 chars used in name)

    Returns:
        Logger instance for the job
    """
    job_id = str(job_id)
    short_id = job_id[:8] if len(job_id) >= 8 else job_id
    return logging.getLogger(f"{APP_LOGGER_NAME}.job.{short_id}")


def get_reconciliation_logger() -> logging.Logger:
    """
    Logger for payment capture failures.

    Anything written here means money was taken without a confirmed
    artifact, and someone has to look at it.
    """
    return logging.getLogger(RECONCILIATION_LOGGER_NAME)


def set_thread_name(name: str) -> None:
    """
    Set the name of the current thread.

    This name appears in log messages in the [thread_name] field.

    Args:
        name: Thread name to display in logs
    """
    threading.current_thread().name = name
