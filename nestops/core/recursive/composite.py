import abc
import dataclasses
import inspect
import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

import torch.utils._pytree as pytree  # noqa: PLC2701

from .classify import type_name

logger = logging.getLogger(__name__)

NamedChildren = list[tuple[str, Any]]


@runtime_checkable
class Composite(Protocol):
    """
    Protocol for composite objects that know how to decompose and rebuild themselves.

    Implement `tree_children` returning the named children in a stable order, and a
    `tree_rebuild` classmethod constructing a new instance from a replacement list of
    children in that same order.
    """

    def tree_children(self) -> Sequence[tuple[str, Any]]:
        ...

    @classmethod
    def tree_rebuild(cls, children: Sequence[tuple[str, Any]]) -> Any:
        ...


class CompositeAdapter(abc.ABC):
    """
    Abstract base class for the structural reflection of composite nodes.

    An adapter lists the named children of a node and rebuilds a node of the same concrete
    type from transformed children. Children are always returned and consumed in the same order.
    """

    @abc.abstractmethod
    def children_of(self, node: Any) -> NamedChildren:
        """
        Lists the named children of a node.

        Args:
            node: The composite node to decompose.

        Returns:
            A list of (name, child) pairs in a stable order.
        """

    @abc.abstractmethod
    def rebuild(self, template: Any, children: Sequence[tuple[str, Any]]) -> Any:
        """
        Rebuilds a node from replacement children.

        Args:
            template: The original node. It provides the concrete type and any context
                required for reconstruction; it is never modified.
            children: Replacement (name, child) pairs in the order returned by `children_of`.

        Returns:
            A new node of the same concrete type as the template.
        """

    def same_structure(self, node: Any, other: Any) -> bool:
        """
        Checks whether a parallel node can be rebuilt with the reconstruction context of `node`.

        Child names are compared separately by the caller.
        """

        return True


class FunctionCompositeAdapter(CompositeAdapter):
    """Adapter assembled from a pair of user-provided functions."""

    def __init__(
            self,
            children_of: Callable[[Any], Sequence[tuple[str, Any]]],
            rebuild: Callable[[Any, Sequence[tuple[str, Any]]], Any]
    ):
        self._children_of = children_of
        self._rebuild = rebuild

    def children_of(self, node: Any) -> NamedChildren:
        return list(self._children_of(node))

    def rebuild(self, template: Any, children: Sequence[tuple[str, Any]]) -> Any:
        return self._rebuild(template, children)


class ProtocolCompositeAdapter(CompositeAdapter):
    """Adapter for objects implementing the `Composite` protocol."""

    def children_of(self, node: Composite) -> NamedChildren:
        return list(node.tree_children())

    def rebuild(self, template: Composite, children: Sequence[tuple[str, Any]]) -> Any:
        return type(template).tree_rebuild(children)


class DataclassCompositeAdapter(CompositeAdapter):
    """
    Adapter for dataclass instances.

    Children are the fields accepted by the constructor, in declaration order. Nodes are rebuilt
    by calling the constructor, so fields with `init=False` are recomputed by the class itself.

    Dataclasses whose constructor requires arguments that are not fields (`InitVar` pseudo-fields
    without a default) cannot be rebuilt from their children and are not handled by this adapter.
    Such types need an explicit `register_composite`.
    """

    @staticmethod
    def can_rebuild(node: Any) -> bool:
        """
        Checks whether every required constructor argument of a dataclass instance is one of its init fields.
        """

        init_fields = {field.name for field in dataclasses.fields(node) if field.init}
        for param in inspect.signature(type(node)).parameters.values():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            if param.name not in init_fields and param.default is inspect.Parameter.empty:
                return False
        return True

    def children_of(self, node: Any) -> NamedChildren:
        return [(field.name, getattr(node, field.name)) for field in dataclasses.fields(node) if field.init]

    def rebuild(self, template: Any, children: Sequence[tuple[str, Any]]) -> Any:
        return type(template)(**dict(children))


class TorchPytreeCompositeAdapter(CompositeAdapter):
    """
    Adapter for node types registered within `torch.utils._pytree`.

    Children are named by their position. Rebuilding reuses the flatten context of the
    template node, so parallel trees must share that context.
    """

    def __init__(self, node_def: pytree.NodeDef):
        self._node_def = node_def

    def children_of(self, node: Any) -> NamedChildren:
        children, _ = self._node_def.flatten_fn(node)
        return [(str(i), child) for i, child in enumerate(children)]

    def context_of(self, node: Any) -> Any:
        _, context = self._node_def.flatten_fn(node)
        return context

    def same_structure(self, node: Any, other: Any) -> bool:
        return self.context_of(node) == self.context_of(other)

    def rebuild(self, template: Any, children: Sequence[tuple[str, Any]]) -> Any:
        return self._node_def.unflatten_fn([child for _, child in children], self.context_of(template))


_REGISTERED_ADAPTERS: dict[type, CompositeAdapter] = {}
_PROTOCOL_ADAPTER = ProtocolCompositeAdapter()
_DATACLASS_ADAPTER = DataclassCompositeAdapter()


def register_composite(
        cls: type,
        children_of: Callable[[Any], Sequence[tuple[str, Any]]],
        rebuild: Callable[[Any, Sequence[tuple[str, Any]]], Any]
):
    """
    Registers a decomposition for a composite type that cannot implement the `Composite` protocol.

    Registered adapters take precedence over every other resolution rule and apply to subclasses too.

    Args:
        cls: The composite type.
        children_of: Function returning (name, child) pairs of an instance.
        rebuild: Function taking the original instance and replacement (name, child) pairs
            and returning a new instance.

    Raises:
        ValueError: If the type is already registered.
    """

    if cls in _REGISTERED_ADAPTERS:
        raise ValueError(f"Composite type {cls.__qualname__} is already registered")

    _REGISTERED_ADAPTERS[cls] = FunctionCompositeAdapter(children_of=children_of, rebuild=rebuild)


def unregister_composite(cls: type):
    """
    Removes a decomposition previously added with `register_composite`.

    Args:
        cls: The composite type.

    Raises:
        KeyError: If the type is not registered.
    """

    del _REGISTERED_ADAPTERS[cls]


def resolve_composite(node: Any) -> CompositeAdapter | None:
    """
    Finds the structural reflection adapter for an opaque node.

    Resolution order: explicitly registered types (along the MRO), the `Composite` protocol,
    dataclass instances that can be rebuilt from their fields, node types registered within
    `torch.utils._pytree`.

    Args:
        node: The opaque node.

    Returns:
        The adapter, or None if the node cannot be decomposed.
    """

    for klass in type(node).__mro__:
        adapter = _REGISTERED_ADAPTERS.get(klass)
        if adapter is not None:
            return adapter

    if isinstance(node, Composite) and not isinstance(node, type):
        return _PROTOCOL_ADAPTER

    if dataclasses.is_dataclass(node) and not isinstance(node, type):
        if _DATACLASS_ADAPTER.can_rebuild(node):
            return _DATACLASS_ADAPTER
        logger.debug(f"Dataclass {type_name(node)} requires constructor arguments that are not fields and is not decomposed")

    node_def = pytree.SUPPORTED_NODES.get(type(node))
    if node_def is not None:
        logger.debug(f"Decomposing {type_name(node)} through the torch pytree registry")
        return TorchPytreeCompositeAdapter(node_def)

    return None
