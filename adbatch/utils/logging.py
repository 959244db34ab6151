"""
Logging setup for the batch engine.

Handlers are attached once, to the ``adbatch`` package logger; module loggers
propagate to it. ``batch_logger`` tags messages with the batch they concern.
"""

import logging
import os
from typing import Any, MutableMapping, Optional, Tuple
from pydantic import BaseModel, Field

ROOT_LOGGER_NAME = "adbatch"

class LogConfig(BaseModel):
    """Logging configuration, read from ``LOG_LEVEL`` and ``LOG_FILE``."""
    level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_path: Optional[str] = Field(default_factory=lambda: os.getenv("LOG_FILE"))

def configure_root(config: Optional[LogConfig] = None) -> logging.Logger:
    """Attach console and optional file handlers to the package logger once."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        return root

    config = config or LogConfig()
    root.setLevel(config.level)
    formatter = logging.Formatter(fmt=config.format, datefmt=config.date_format)

    handlers = [logging.StreamHandler()]
    if config.file_path:
        handlers.append(logging.FileHandler(config.file_path))
    for handler in handlers:
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    return root

def setup_logger(name: str) -> logging.Logger:
    """
    Get a module logger wired to the package handlers.

    Args:
        name: Name of the logger (usually __name__)

    Returns:
        logging.Logger: Logger instance
    """
    configure_root()
    return logging.getLogger(name)

class BatchLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[batch <id>]`` and exposes the id as a record attribute."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs.setdefault("extra", {})["batch_id"] = self.extra["batch_id"]
        return f"[batch {self.extra['batch_id']}] {msg}", kwargs

def batch_logger(logger: logging.Logger, batch_id: str) -> BatchLoggerAdapter:
    """Wrap ``logger`` so every message names ``batch_id``."""
    return BatchLoggerAdapter(logger, {"batch_id": batch_id})
