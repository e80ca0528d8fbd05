import functools
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import torch

from nestops.core.types import NestedValue

from .classify import NodeKind, classify_node, is_marker, type_name
from .composite import resolve_composite
from .errors import UnsupportedOperationError


def _default_complex_dtype() -> torch.dtype:
    if torch.get_default_dtype() == torch.float64:
        return torch.complex128
    return torch.complex64


def _numpy_dtype_to_torch(dtype: np.dtype) -> torch.dtype:
    try:
        return torch.from_numpy(np.empty((0,), dtype=dtype)).dtype
    except TypeError as e:
        raise UnsupportedOperationError(f"NumPy dtype {dtype} has no torch counterpart") from e


def _scalar_eltype(x: Any) -> torch.dtype:
    if is_marker(x):
        return torch.bool
    if isinstance(x, np.generic):
        return _numpy_dtype_to_torch(x.dtype)
    if isinstance(x, bool):
        return torch.bool
    if isinstance(x, int):
        return torch.int64
    if isinstance(x, float):
        return torch.get_default_dtype()
    if isinstance(x, complex):
        return _default_complex_dtype()
    raise UnsupportedOperationError(f"Cannot infer element type of {type_name(x)}")


def _promote_children(children: Iterable[Any]) -> torch.dtype:
    dtypes = [recursive_eltype(child) for child in children]
    if len(dtypes) == 0:
        return torch.bool
    return functools.reduce(torch.promote_types, dtypes)


def recursive_eltype(x: NestedValue) -> torch.dtype:
    """
    Determines the promoted element type of a nested structure.

    Tensors and numeric NumPy arrays contribute their dtype directly. Python scalars map to
    `torch.bool`, `torch.int64`, the default float dtype and its complex counterpart.
    None and enum tags count as `torch.bool`. Container results are combined with
    `torch.promote_types`; a container without any leaves yields `torch.bool`.

    Args:
        x: The nested structure.

    Returns:
        The promoted element type.

    Raises:
        UnsupportedOperationError: If a leaf has no numeric element type or an object cannot be decomposed.
    """

    match classify_node(x):
        case NodeKind.direct_leaf:
            return _scalar_eltype(x)
        case NodeKind.bulk_leaf:
            if isinstance(x, torch.Tensor):
                return x.dtype
            return _numpy_dtype_to_torch(x.dtype)
        case NodeKind.array_of_leaves:
            if isinstance(x, np.ndarray):
                return _promote_children(x.flat)
            return _promote_children(x)
        case NodeKind.fixed_tuple:
            return _promote_children(x)
        case NodeKind.named_record:
            if isinstance(x, Mapping):
                return _promote_children(x.values())
            return _promote_children(x)
        case NodeKind.opaque_composite:
            adapter = resolve_composite(x)
            if adapter is None:
                raise UnsupportedOperationError(f"Cannot infer element type of {type_name(x)}")
            return _promote_children(child for _, child in adapter.children_of(x))
        case _:
            raise ValueError("Unknown node kind")
