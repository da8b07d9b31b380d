"""Logging utilities for xdgm."""

from xdgm.logging.config import JsonFormatter, setup_logging

__all__ = ["JsonFormatter", "setup_logging"]
