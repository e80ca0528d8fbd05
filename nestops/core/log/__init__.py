"""
This package configures logging for nestops.
"""

from .build import build_logger

__all__ = [
    "build_logger"
]
