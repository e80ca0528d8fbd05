"""Structured error types raised by the recursive tree operations."""


class RecursiveOpsError(Exception):
    """Base class for errors raised while traversing nested structures."""


class ShapeMismatchError(RecursiveOpsError, ValueError):
    """Parallel trees disagree in arity, field set, keys, dimensions or composite type."""


class UnsupportedOperationError(RecursiveOpsError, TypeError):
    """A leaf has no defined elementwise operation or element type."""


class ImmutableLeafError(RecursiveOpsError, TypeError):
    """An in-place write was requested on a leaf whose storage cannot be mutated."""
