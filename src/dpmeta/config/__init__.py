"""Runtime configuration for dpmeta."""

from .settings import Settings, settings  # noqa: F401
