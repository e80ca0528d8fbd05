import numbers
from typing import Any

import numpy as np
import torch


def _tensor_is_writable(tensor: torch.Tensor) -> bool:
    if tensor.requires_grad and torch.is_grad_enabled():
        return False
    if tensor.is_inference() and not torch.is_inference_mode_enabled():
        return False
    return True


def can_mutate_inplace(leaf: Any) -> bool:
    """
    Checks whether the storage of a leaf can be overwritten in place.

    A tensor is writable unless it requires grad while grad mode is enabled, or it is an inference
    tensor used outside inference mode. A NumPy array is writable if its `writeable` flag is set.
    Numbers and markers are never writable.

    Args:
        leaf: The leaf to check.

    Returns:
        True if in-place writes are allowed.
    """

    if isinstance(leaf, torch.Tensor):
        return _tensor_is_writable(leaf)
    if isinstance(leaf, np.ndarray):
        return bool(leaf.flags.writeable)
    return False


def _shape_of(value: Any) -> tuple[int, ...] | None:
    if isinstance(value, (torch.Tensor, np.ndarray)):
        return tuple(value.shape)
    if isinstance(value, (numbers.Number, np.bool_)):
        return ()
    return None


def can_accumulate_inplace(target: Any, other: Any) -> bool:
    """
    Checks whether `other` can be added into `target` without reallocating or widening it.

    Requires a writable target, a broadcast result shape equal to the target shape,
    and a promoted dtype that can be cast back into the target dtype.

    Args:
        target: The leaf to accumulate into.
        other: The leaf to add.

    Returns:
        True if `target += other` is allowed.
    """

    if not can_mutate_inplace(target):
        return False

    other_shape = _shape_of(other)
    if other_shape is None:
        return False

    if isinstance(target, torch.Tensor):
        if not isinstance(other, (torch.Tensor, bool, int, float, complex)):
            return False
        try:
            broadcast_shape = tuple(torch.broadcast_shapes(target.shape, other_shape))
        except RuntimeError:
            return False
        result_dtype = torch.result_type(target, other)
        return broadcast_shape == tuple(target.shape) and torch.can_cast(result_dtype, target.dtype)

    if not isinstance(other, (np.ndarray, numbers.Number, np.bool_)):
        return False
    try:
        broadcast_shape = np.broadcast_shapes(target.shape, other_shape)
    except ValueError:
        return False
    result_dtype = np.result_type(target, other)
    return broadcast_shape == target.shape and np.can_cast(result_dtype, target.dtype, casting="same_kind")
