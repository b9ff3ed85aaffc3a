"""
Process logging configuration for Taskdeck.

Library modules only create module-level loggers; entry points call
setup_logging() once.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import ObservabilityConfig, ServerConfig


def setup_logging(config: ServerConfig | ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration or just its observability section
    """
    observability = config.observability if isinstance(config, ServerConfig) else config
    level = getattr(logging, observability.log_level.upper(), logging.INFO)

    if observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
