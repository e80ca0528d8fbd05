import enum
import numbers
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

import numpy as np
import torch


class NodeKind(StrEnum):
    """
    Enum describing how a node of a nested structure is traversed.

    Attributes:
        direct_leaf: A number, an absent marker (None) or an enum tag. Operations are applied directly.
        bulk_leaf: A tensor or a NumPy array with a primitive dtype. Operations are applied to the whole array.
        array_of_leaves: A list or an object-dtype NumPy array. Operations recurse into each element.
        fixed_tuple: A plain tuple. Operations recurse positionally.
        named_record: A named tuple or a mapping. Operations recurse per field, preserving names and order.
        opaque_composite: Anything else. Decomposition is delegated to a composite adapter.
    """

    direct_leaf = "direct_leaf"
    bulk_leaf = "bulk_leaf"
    array_of_leaves = "array_of_leaves"
    fixed_tuple = "fixed_tuple"
    named_record = "named_record"
    opaque_composite = "opaque_composite"


def type_name(node: Any) -> str:
    return type(node).__qualname__


def is_marker(node: Any) -> bool:
    """
    Checks whether a node is an absent marker (None) or a zero-argument enum tag.
    """

    return node is None or isinstance(node, enum.Enum)


def is_namedtuple(node: Any) -> bool:
    return isinstance(node, tuple) and hasattr(type(node), "_fields")


def classify_node(node: Any) -> NodeKind:
    """
    Decides how a single node of a nested structure should be traversed.

    Rules are checked in priority order:

    1. Numbers, None and enum members are direct leaves.
    2. Tensors are bulk leaves. NumPy arrays are bulk leaves unless their dtype is `object`,
        in which case they are arrays of leaves. Lists are always arrays of leaves since they
        carry no declared element kind.
    3. Plain tuples are fixed tuples.
    4. Named tuples and mappings are named records.
    5. Everything else is an opaque composite.

    Args:
        node: The node to classify.

    Returns:
        The traversal kind of the node.
    """

    if is_marker(node) or isinstance(node, (numbers.Number, np.bool_)):
        return NodeKind.direct_leaf

    if isinstance(node, torch.Tensor):
        return NodeKind.bulk_leaf
    if isinstance(node, np.ndarray):
        if node.dtype == np.object_:
            return NodeKind.array_of_leaves
        return NodeKind.bulk_leaf
    if isinstance(node, list):
        return NodeKind.array_of_leaves

    if isinstance(node, tuple):
        if is_namedtuple(node):
            return NodeKind.named_record
        return NodeKind.fixed_tuple

    if isinstance(node, Mapping):
        return NodeKind.named_record

    return NodeKind.opaque_composite
