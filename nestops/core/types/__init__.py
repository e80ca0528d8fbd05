"""
Common type definitions used throughout the library.
"""
from .pytree import NestedValue

__all__ = [
    "NestedValue"
]
