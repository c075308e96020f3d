"""Logging setup for hosts embedding DocDB."""

from __future__ import annotations

import logging

import json_log_formatter

from .config import DocDbConfig

logger = logging.getLogger(__name__)


def setup_logging(config: DocDbConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Database configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("redis").setLevel(logging.WARNING)
