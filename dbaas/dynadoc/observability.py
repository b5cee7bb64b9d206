"""
Logging setup for dynadoc.

Models and store clients log through module-level loggers with structured
context passed in ``extra``. Applications embedding the adapter call
setup_logging() once at startup.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import AdapterConfig


def setup_logging(config: AdapterConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Adapter configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

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
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
