"""Shared utilities."""

from .logging import get_logger, JSONFormatter  # noqa: F401
