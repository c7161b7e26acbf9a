"""Structured logging setup for content-flow processes."""

from .logger import JSONFormatter, get_logger, setup_logging

__all__ = ["JSONFormatter", "get_logger", "setup_logging"]
