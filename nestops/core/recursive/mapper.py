from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

import numpy as np

from nestops.core.types import NestedValue

from .classify import NodeKind, classify_node, is_namedtuple, type_name
from .composite import CompositeAdapter, resolve_composite
from .errors import ShapeMismatchError, UnsupportedOperationError

TTree = TypeVar("TTree", bound=NestedValue)


_CONTAINER_KINDS = frozenset({NodeKind.array_of_leaves, NodeKind.fixed_tuple, NodeKind.named_record})


def _is_container(node: Any) -> bool:
    kind = classify_node(node)
    if kind is NodeKind.opaque_composite:
        return resolve_composite(node) is not None
    return kind in _CONTAINER_KINDS


def _check_leaf_args(x: Any, args: Sequence[Any]):
    for arg in args:
        if _is_container(arg):
            raise ShapeMismatchError(f"Leaf {type_name(x)} is paired with container {type_name(arg)}")


def _map_list(fn: Callable[..., Any], x: list, args: Sequence[Any], strict_opaque: bool) -> list:
    for arg in args:
        if not isinstance(arg, list):
            raise ShapeMismatchError(f"Expected a list, got {type_name(arg)}")
        if len(arg) != len(x):
            raise ShapeMismatchError(f"List length mismatch: {len(x)} vs {len(arg)}")

    return [
        recursive_map(fn, *items, strict_opaque=strict_opaque)
        for items in zip(x, *args, strict=True)
    ]


def _map_object_array(
        fn: Callable[..., Any],
        x: np.ndarray,
        args: Sequence[Any],
        strict_opaque: bool
) -> np.ndarray:
    for arg in args:
        if not isinstance(arg, np.ndarray):
            raise ShapeMismatchError(f"Expected an object array, got {type_name(arg)}")
        if arg.shape != x.shape:
            raise ShapeMismatchError(f"Object array shape mismatch: {x.shape} vs {arg.shape}")

    result = np.empty(x.shape, dtype=object)
    for index in np.ndindex(x.shape):
        result[index] = recursive_map(fn, x[index], *(arg[index] for arg in args), strict_opaque=strict_opaque)
    return result


def _map_tuple(fn: Callable[..., Any], x: tuple, args: Sequence[Any], strict_opaque: bool) -> tuple:
    for arg in args:
        if not isinstance(arg, tuple) or is_namedtuple(arg):
            raise ShapeMismatchError(f"Expected a tuple, got {type_name(arg)}")
        if len(arg) != len(x):
            raise ShapeMismatchError(f"Tuple arity mismatch: {len(x)} vs {len(arg)}")

    mapped = [
        recursive_map(fn, *items, strict_opaque=strict_opaque)
        for items in zip(x, *args, strict=True)
    ]

    if type(x) is tuple:
        return tuple(mapped)
    return type(x)(mapped)


def _map_namedtuple(fn: Callable[..., Any], x: tuple, args: Sequence[Any], strict_opaque: bool) -> tuple:
    fields = type(x)._fields
    for arg in args:
        if not is_namedtuple(arg):
            raise ShapeMismatchError(f"Expected a named tuple, got {type_name(arg)}")
        if type(arg)._fields != fields:
            raise ShapeMismatchError(f"Named tuple field mismatch: {fields} vs {type(arg)._fields}")

    return type(x)(*(
        recursive_map(fn, *items, strict_opaque=strict_opaque)
        for items in zip(x, *args, strict=True)
    ))


def _rebuild_mapping(template: Mapping, items: list[tuple[Any, Any]]) -> Mapping:
    if type(template) is dict:
        return dict(items)
    if isinstance(template, defaultdict):
        return type(template)(template.default_factory, items)
    return type(template)(items)


def _map_mapping(fn: Callable[..., Any], x: Mapping, args: Sequence[Any], strict_opaque: bool) -> Mapping:
    keys = list(x.keys())
    for arg in args:
        if not isinstance(arg, Mapping):
            raise ShapeMismatchError(f"Expected a mapping, got {type_name(arg)}")
        if arg.keys() != x.keys():
            missing = sorted(map(str, x.keys() ^ arg.keys()))
            raise ShapeMismatchError(f"Mapping key mismatch, keys present in only one tree: {missing}")

    return _rebuild_mapping(x, [
        (key, recursive_map(fn, x[key], *(arg[key] for arg in args), strict_opaque=strict_opaque))
        for key in keys
    ])


def _map_composite(
        fn: Callable[..., Any],
        adapter: CompositeAdapter,
        x: Any,
        args: Sequence[Any],
        strict_opaque: bool
) -> Any:
    children = adapter.children_of(x)
    names = [name for name, _ in children]

    args_children = []
    for arg in args:
        if type(arg) is not type(x):
            raise ShapeMismatchError(f"Composite type mismatch: {type_name(x)} vs {type_name(arg)}")
        if not adapter.same_structure(x, arg):
            raise ShapeMismatchError(f"Composite structure mismatch for {type_name(x)}")
        arg_children = adapter.children_of(arg)
        arg_names = [name for name, _ in arg_children]
        if arg_names != names:
            raise ShapeMismatchError(f"Composite children mismatch for {type_name(x)}: {names} vs {arg_names}")
        args_children.append(arg_children)

    mapped = [
        (name, recursive_map(fn, child, *(arg_children[i][1] for arg_children in args_children),
                             strict_opaque=strict_opaque))
        for i, (name, child) in enumerate(children)
    ]
    return adapter.rebuild(x, mapped)


def recursive_map(fn: Callable[..., Any], x: TTree, *args: Any, strict_opaque: bool = False) -> TTree:
    """
    Applies a leaf function across one or more structurally parallel nested structures.

    The traversal step for each node is chosen by `classify_node` on the node of the first tree:

    1. Direct leaves (numbers, None, enum tags) and bulk leaves (tensors, numeric NumPy arrays):
        `fn` is called once with the corresponding leaves of all trees. Bulk leaves are never
        iterated element by element.
    2. Lists and object arrays: every element is recursed and a new container is built.
    3. Tuples: recursed positionally and rebuilt with the same arity.
    4. Named tuples and mappings: recursed per field and rebuilt with the same names and order.
    5. Other objects: decomposed into named children through the composite adapter registry,
        recursed per child and rebuilt. Objects without an adapter are passed to `fn` as leaves
        unless `strict_opaque` is set.

    Args:
        fn: The leaf function. Receives one leaf from each tree.
        x: The first tree. Its structure drives the traversal.
        *args: Additional trees with the same structure as `x`.
        strict_opaque: If True, objects that cannot be decomposed raise an error
            instead of being treated as leaves.

    Returns:
        A new tree with the same structure as `x` holding the results of `fn`.

    Raises:
        ShapeMismatchError: If the trees disagree in container type, arity, field names, keys or shapes.
        UnsupportedOperationError: If `strict_opaque` is set and an object cannot be decomposed.
    """

    match classify_node(x):
        case NodeKind.direct_leaf | NodeKind.bulk_leaf:
            _check_leaf_args(x, args)
            return fn(x, *args)
        case NodeKind.array_of_leaves:
            if isinstance(x, np.ndarray):
                return _map_object_array(fn, x, args, strict_opaque)
            return _map_list(fn, x, args, strict_opaque)
        case NodeKind.fixed_tuple:
            return _map_tuple(fn, x, args, strict_opaque)
        case NodeKind.named_record:
            if is_namedtuple(x):
                return _map_namedtuple(fn, x, args, strict_opaque)
            return _map_mapping(fn, x, args, strict_opaque)
        case NodeKind.opaque_composite:
            adapter = resolve_composite(x)
            if adapter is not None:
                return _map_composite(fn, adapter, x, args, strict_opaque)
            if strict_opaque:
                raise UnsupportedOperationError(f"Cannot decompose object of type {type_name(x)}")
            return fn(x, *args)
        case _:
            raise ValueError("Unknown node kind")
