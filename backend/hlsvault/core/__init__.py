"""Core module for configuration and utilities."""

from hlsvault.core.config import settings

__all__ = [
    "settings",
]
