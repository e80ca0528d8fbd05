"""
Elementwise operations applied to the leaves of nested structures.

Every operation exists in an out-of-place form that never aliases input storage, and
an in-place form (trailing underscore) that writes into the first leaf when its
storage allows it.
"""

import logging
import numbers
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import numpy as np
import torch

from .capability import can_accumulate_inplace, can_mutate_inplace
from .classify import is_marker, type_name
from .errors import ImmutableLeafError, ShapeMismatchError, UnsupportedOperationError

logger = logging.getLogger(__name__)


class MutationMode(StrEnum):
    """
    Enum specifying whether leaf storage may be reused.

    Attributes:
        out_of_place: Always allocate new leaves.
        in_place_if_possible: Mutate leaf storage when the leaf supports it, allocate otherwise.
    """

    out_of_place = "out_of_place"
    in_place_if_possible = "in_place_if_possible"


class ElementOp(StrEnum):
    """
    Enum of the elementwise operations available for nested structures.

    Attributes:
        add: Sum of two parallel leaves.
        zero: Additive identity of a leaf.
        copy: Copy of a leaf; in place it writes a source leaf into a destination leaf.
    """

    add = "add"
    zero = "zero"
    copy = "copy"


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (numbers.Number, np.bool_))


def _is_array(value: Any) -> bool:
    return isinstance(value, (torch.Tensor, np.ndarray))


def _check_same_marker(x: Any, y: Any, op_name: str):
    if y is not x:
        raise ShapeMismatchError(f"Cannot {op_name} marker {x!r} with {type_name(y)}")


def _check_broadcastable(x: Any, y: Any):
    if not (_is_array(x) or _is_array(y)):
        return
    shape_x = tuple(x.shape) if _is_array(x) else ()
    shape_y = tuple(y.shape) if _is_array(y) else ()
    try:
        np.broadcast_shapes(shape_x, shape_y)
    except ValueError as e:
        raise ShapeMismatchError(f"Cannot broadcast leaves with shapes {shape_x} and {shape_y}") from e


def add_leaves(x: Any, y: Any) -> Any:
    """
    Adds two leaves out of place.

    Tensors and NumPy arrays broadcast as usual. Markers pass through when both leaves hold the same marker.

    Args:
        x: The first leaf.
        y: The second leaf.

    Returns:
        A new leaf holding `x + y`.

    Raises:
        ShapeMismatchError: If the leaves cannot be broadcast together or a marker is paired with a different leaf.
        UnsupportedOperationError: If the leaf types have no defined addition.
    """

    if is_marker(x) or is_marker(y):
        _check_same_marker(x, y, "add")
        return x

    if isinstance(x, torch.Tensor) or isinstance(y, torch.Tensor):
        if not all(isinstance(v, torch.Tensor) or _is_scalar(v) for v in (x, y)):
            raise UnsupportedOperationError(f"Cannot add {type_name(x)} and {type_name(y)}")
        _check_broadcastable(x, y)
        return x + y

    if isinstance(x, np.ndarray) or isinstance(y, np.ndarray):
        if not all(isinstance(v, np.ndarray) or _is_scalar(v) for v in (x, y)):
            raise UnsupportedOperationError(f"Cannot add {type_name(x)} and {type_name(y)}")
        _check_broadcastable(x, y)
        return np.asarray(np.add(x, y))

    if _is_scalar(x) and _is_scalar(y):
        return x + y

    raise UnsupportedOperationError(f"Cannot add {type_name(x)} and {type_name(y)}")


def add_leaves_(x: Any, y: Any) -> Any:
    """
    Adds `y` into `x` in place when the storage of `x` allows it, out of place otherwise.

    Args:
        x: The leaf to accumulate into.
        y: The leaf to add.

    Returns:
        `x` itself after accumulation, or a new leaf if in-place accumulation is not possible.
    """

    if not can_accumulate_inplace(x, y):
        if _is_array(x):
            logger.debug(f"Leaf {type_name(x)} cannot accumulate in place, falling back to out-of-place add")
        return add_leaves(x, y)

    if isinstance(x, torch.Tensor):
        return x.add_(y)

    return np.add(x, y, out=x)


def zero_leaf(x: Any) -> Any:
    """
    Creates the additive identity of a leaf, keeping its shape and type.

    Args:
        x: The leaf.

    Returns:
        A new zero-filled leaf. Markers are returned unchanged.

    Raises:
        UnsupportedOperationError: If the leaf type has no additive identity.
    """

    if is_marker(x):
        return x
    if isinstance(x, torch.Tensor):
        return torch.zeros_like(x)
    if isinstance(x, np.ndarray):
        return np.zeros_like(x)
    if isinstance(x, np.generic):
        return x.dtype.type(0)
    if _is_scalar(x):
        return type(x)(0)

    raise UnsupportedOperationError(f"Cannot create a zero value for {type_name(x)}")


def zero_leaf_(x: Any) -> Any:
    """
    Fills a leaf with zeros in place when its storage allows it, out of place otherwise.

    Args:
        x: The leaf.

    Returns:
        `x` itself after zeroing, or a new zero-filled leaf.
    """

    if not can_mutate_inplace(x):
        if _is_array(x):
            logger.debug(f"Leaf {type_name(x)} cannot be zeroed in place, falling back to out-of-place zero")
        return zero_leaf(x)

    if isinstance(x, torch.Tensor):
        return x.zero_()

    x.fill(0)
    return x


def copy_leaf(x: Any) -> Any:
    """
    Copies a leaf out of place.

    Args:
        x: The leaf.

    Returns:
        A leaf equal in value to `x` that shares no storage with it. Immutable leaves
        (numbers and markers) are returned as they are.

    Raises:
        UnsupportedOperationError: If the leaf type cannot be copied.
    """

    if is_marker(x) or _is_scalar(x):
        return x
    if isinstance(x, torch.Tensor):
        return x.clone()
    if isinstance(x, np.ndarray):
        return x.copy()

    raise UnsupportedOperationError(f"Cannot copy {type_name(x)}")


def _check_copy_shapes(dst: Any, src: Any):
    if tuple(dst.shape) != tuple(src.shape):
        raise ShapeMismatchError(f"Cannot copy a leaf with shape {tuple(src.shape)} into shape {tuple(dst.shape)}")


def copy_leaf_(dst: Any, src: Any) -> Any:
    """
    Writes the value of `src` into the storage of `dst`.

    There is no out-of-place fallback: copying exists to write into existing storage.
    Dtypes are cast to the destination dtype, as `torch.Tensor.copy_` does.

    Args:
        dst: The destination leaf.
        src: The source leaf.

    Returns:
        `dst` itself after the write. Markers are returned unchanged when both leaves hold the same marker.

    Raises:
        ShapeMismatchError: If shapes differ or a marker is paired with a different leaf.
        ImmutableLeafError: If the destination storage cannot be mutated.
        UnsupportedOperationError: If the source type cannot be copied into the destination.
    """

    if is_marker(dst) or is_marker(src):
        _check_same_marker(dst, src, "copy")
        return dst

    if not _is_array(dst):
        raise ImmutableLeafError(f"Cannot copy into immutable leaf of type {type_name(dst)}")
    if not can_mutate_inplace(dst):
        raise ImmutableLeafError(f"Storage of {type_name(dst)} cannot be mutated in place")
    if not _is_array(src):
        raise UnsupportedOperationError(f"Cannot copy {type_name(src)} into {type_name(dst)}")

    _check_copy_shapes(dst, src)

    if isinstance(dst, torch.Tensor):
        if isinstance(src, np.ndarray):
            src = torch.from_numpy(src)
        return dst.copy_(src)

    if isinstance(src, torch.Tensor):
        src = src.detach().cpu().numpy()
    np.copyto(dst, src, casting="unsafe")
    return dst


def element_fn(op: ElementOp, mode: MutationMode) -> Callable[..., Any]:
    """
    Selects the leaf function implementing an operation in a given mutation mode.

    Args:
        op: The elementwise operation.
        mode: The mutation mode.

    Returns:
        The leaf function.
    """

    match op, mode:
        case ElementOp.add, MutationMode.out_of_place:
            return add_leaves
        case ElementOp.add, MutationMode.in_place_if_possible:
            return add_leaves_
        case ElementOp.zero, MutationMode.out_of_place:
            return zero_leaf
        case ElementOp.zero, MutationMode.in_place_if_possible:
            return zero_leaf_
        case ElementOp.copy, MutationMode.out_of_place:
            return copy_leaf
        case ElementOp.copy, MutationMode.in_place_if_possible:
            return copy_leaf_
        case _:
            raise ValueError(f"Unknown operation {op} with mutation mode {mode}")
