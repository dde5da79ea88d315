"""
logging_config.py — Centralized Logging Configuration for the Storefront Service

This module configures unified logging behavior for the entire application.
All modules log through the stdlib logging tree so that checkout, webhook and
adapter messages end up in the same stream.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-worker deployments (uvicorn --workers)
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (pika, httpx, stripe)
"""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'
NOISY_LOGGERS = ("pika", "httpx", "httpcore", "stripe")


def setup_logging(level=logging.INFO, log_file="storefront.log"):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: INFO (default)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. File: 'storefront.log' (persistent log), skipped when log_file is None
            2. Console (stdout): real-time logs, Docker/Kubernetes compatible
        - Reduced verbosity for third-party libraries

    Args:
        level (int): Root log level.
        log_file (str | None): Path of the persistent log file.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a configured logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
