"""
Recursive traversal and transformation of nested numeric structures.
"""

from .classify import NodeKind, classify_node
from .composite import (
    Composite,
    CompositeAdapter,
    register_composite,
    resolve_composite,
    unregister_composite,
)
from .config import RecursiveOps, RecursiveOpsConfig, recursive_ops_from_config
from .element import ElementOp, MutationMode, element_fn
from .eltype import recursive_eltype
from .errors import (
    ImmutableLeafError,
    RecursiveOpsError,
    ShapeMismatchError,
    UnsupportedOperationError,
)
from .mapper import recursive_map
from .ops import (
    recursive_add,
    recursive_add_,
    recursive_copy,
    recursive_copy_,
    recursive_make_zero,
    recursive_make_zero_,
    recursive_op,
)

__all__ = [
    "Composite",
    "CompositeAdapter",
    "ElementOp",
    "ImmutableLeafError",
    "MutationMode",
    "NodeKind",
    "RecursiveOps",
    "RecursiveOpsConfig",
    "RecursiveOpsError",
    "ShapeMismatchError",
    "UnsupportedOperationError",
    "classify_node",
    "element_fn",
    "recursive_add",
    "recursive_add_",
    "recursive_copy",
    "recursive_copy_",
    "recursive_eltype",
    "recursive_make_zero",
    "recursive_make_zero_",
    "recursive_map",
    "recursive_op",
    "recursive_ops_from_config",
    "register_composite",
    "resolve_composite",
    "unregister_composite",
]
