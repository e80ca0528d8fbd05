import enum
import numbers
from typing import Any, TypeAlias

import numpy as np
import torch

NestedValue: TypeAlias = (
    numbers.Number
    | enum.Enum
    | None
    | torch.Tensor
    | np.ndarray
    | list["NestedValue"]
    | tuple["NestedValue", ...]
    | dict[str, "NestedValue"]
    | Any
)
"""
A recursive tree accepted by the recursive operations.

Leaves are numbers, absent markers (None), enum tags, tensors and numeric NumPy arrays.
Internal nodes are lists, object arrays, tuples, named tuples, mappings and composite
objects that can be decomposed into named children (see `nestops.core.recursive.composite`).
"""
