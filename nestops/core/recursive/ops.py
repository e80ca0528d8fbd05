import functools
from collections.abc import Callable
from typing import Any, TypeVar

from nestops.core.types import NestedValue

from .element import ElementOp, MutationMode, element_fn
from .mapper import recursive_map

TTree = TypeVar("TTree", bound=NestedValue)


def recursive_op(op: ElementOp, mode: MutationMode, strict_opaque: bool = False) -> Callable[..., Any]:
    """
    Binds an elementwise operation and a mutation mode into a function over nested structures.

    Args:
        op: The elementwise operation.
        mode: The mutation mode.
        strict_opaque: If True, objects that cannot be decomposed raise an error
            instead of being treated as leaves.

    Returns:
        A function taking one tree (zero, copy) or two trees (add, in-place copy).
    """

    return functools.partial(recursive_map, element_fn(op, mode), strict_opaque=strict_opaque)


def recursive_add(x: TTree, y: TTree) -> TTree:
    """
    Adds the leaves of two nested structures, allocating new leaves.

    Args:
        x: The first structure.
        y: A structure with the same shape as `x`.

    Returns:
        A new structure with `x + y` at every leaf.
    """

    return recursive_map(element_fn(ElementOp.add, MutationMode.out_of_place), x, y)


def recursive_add_(x: TTree, y: TTree) -> TTree:
    """
    Adds the leaves of `y` into the leaves of `x`.

    Leaves of `x` that allow in-place accumulation (writable tensors and arrays whose shape
    and dtype can hold the result) are modified in place; other leaves are replaced by new values.

    Args:
        x: The structure to accumulate into.
        y: A structure with the same shape as `x`.

    Returns:
        A structure with the same shape as `x`, sharing storage with `x` where accumulation happened in place.
    """

    return recursive_map(element_fn(ElementOp.add, MutationMode.in_place_if_possible), x, y)


def recursive_make_zero(x: TTree) -> TTree:
    """
    Creates a zero-filled copy of a nested structure.

    Args:
        x: The structure.

    Returns:
        A new structure of the same shape and dtypes filled with zeros.
    """

    return recursive_map(element_fn(ElementOp.zero, MutationMode.out_of_place), x)


def recursive_make_zero_(x: TTree) -> TTree:
    """
    Zeroes a nested structure, modifying writable leaves in place.

    Args:
        x: The structure.

    Returns:
        A zero-filled structure of the same shape, sharing storage with `x` where zeroing happened in place.
    """

    return recursive_map(element_fn(ElementOp.zero, MutationMode.in_place_if_possible), x)


def recursive_copy(x: TTree) -> TTree:
    """
    Copies a nested structure without sharing any tensor or array storage with it.
    """

    return recursive_map(element_fn(ElementOp.copy, MutationMode.out_of_place), x)


def recursive_copy_(dst: TTree, src: TTree) -> TTree:
    """
    Copies the leaves of `src` into the storage of the leaves of `dst`.

    Every leaf of `dst` holding a value must be a writable tensor or array; numbers are immutable
    and cause an error.

    Args:
        dst: The destination structure.
        src: A structure with the same shape as `dst`.

    Returns:
        `dst`'s structure rebuilt around its own, now overwritten, leaves.

    Raises:
        ImmutableLeafError: If a destination leaf cannot be written in place.
    """

    return recursive_map(element_fn(ElementOp.copy, MutationMode.in_place_if_possible), dst, src)
