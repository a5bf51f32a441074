"""
Core utilities shared across the application.
"""

from .logger import LOG_LEVELS, setup_logging

__all__ = ["LOG_LEVELS", "setup_logging"]
