from typing import Any

import torch
from pydantic import BaseModel

from .element import ElementOp, MutationMode
from .eltype import recursive_eltype
from .ops import recursive_op


class RecursiveOpsConfig(BaseModel):
    """
    Configuration for a set of recursive operations.

    Attributes:
        mode: Mutation mode used by `add` and `make_zero`.
        strict_opaque: If True, objects that cannot be decomposed into children raise an error
            instead of being treated as leaves.
    """

    mode: MutationMode = MutationMode.out_of_place
    strict_opaque: bool = False


class RecursiveOps:
    """
    Recursive add, zero and copy operations bound to a single configuration.
    """

    def __init__(self, mode: MutationMode, strict_opaque: bool):
        """
        Constructs a RecursiveOps object.

        Args:
            mode: Mutation mode used by `add` and `make_zero`.
            strict_opaque: Whether undecomposable objects raise an error instead of being treated as leaves.
        """

        self._mode = mode
        self._add = recursive_op(ElementOp.add, mode, strict_opaque=strict_opaque)
        self._make_zero = recursive_op(ElementOp.zero, mode, strict_opaque=strict_opaque)
        self._copy = recursive_op(ElementOp.copy, MutationMode.out_of_place, strict_opaque=strict_opaque)
        self._copy_into = recursive_op(ElementOp.copy, MutationMode.in_place_if_possible, strict_opaque=strict_opaque)

    @property
    def mode(self) -> MutationMode:
        """
        Mutation mode used by `add` and `make_zero`.
        """

        return self._mode

    def add(self, x: Any, y: Any) -> Any:
        """
        Adds the leaves of two nested structures.

        Args:
            x: The first structure. Accumulated into when the mode allows it.
            y: A structure with the same shape as `x`.

        Returns:
            A structure with the same shape as `x` holding the sums.

        Raises:
            ShapeMismatchError: If the structures differ in shape.
        """

        return self._add(x, y)

    def make_zero(self, x: Any) -> Any:
        """
        Zeroes a nested structure.

        Args:
            x: The structure. Zeroed in place when the mode allows it.

        Returns:
            A zero-filled structure with the same shape and dtypes as `x`.
        """

        return self._make_zero(x)

    def copy(self, x: Any) -> Any:
        """
        Copies a nested structure. Always out of place, regardless of the configured mode.

        Args:
            x: The structure.

        Returns:
            A copy of `x` sharing no tensor or array storage with it.
        """

        return self._copy(x)

    def copy_(self, dst: Any, src: Any) -> Any:
        """
        Writes `src` into the storage of `dst`. Always in place, regardless of the configured mode.
        """

        return self._copy_into(dst, src)

    def eltype(self, x: Any) -> torch.dtype:
        """
        Determines the promoted element type of a nested structure.

        Args:
            x: The structure.

        Returns:
            The promoted dtype, `torch.bool` for a structure without leaves.
        """

        return recursive_eltype(x)


def recursive_ops_from_config(config: RecursiveOpsConfig) -> RecursiveOps:
    """
    Instantiates recursive operations from their configuration.

    Args:
        config: The configuration object.

    Returns:
        The configured operations.
    """

    return RecursiveOps(mode=config.mode, strict_opaque=config.strict_opaque)
