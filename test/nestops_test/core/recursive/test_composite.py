import dataclasses
from collections import deque
from collections.abc import Sequence
from typing import Any

import pytest
import torch
import torch.utils._pytree as pytree  # noqa: PLC2701
from nestops.core.recursive import (
    Composite,
    ElementOp,
    MutationMode,
    ShapeMismatchError,
    UnsupportedOperationError,
    recursive_add,
    recursive_eltype,
    recursive_make_zero,
    recursive_op,
    register_composite,
    resolve_composite,
    unregister_composite,
)
from nestops.core.recursive.composite import (
    DataclassCompositeAdapter,
    ProtocolCompositeAdapter,
    TorchPytreeCompositeAdapter,
)


class Buffer:
    def __init__(self, data: torch.Tensor, name: str):
        self.data = data
        self.name = name


class SelfDescribing:
    def __init__(self, left: Any, right: Any):
        self.left = left
        self.right = right

    def tree_children(self) -> Sequence[tuple[str, Any]]:
        return [("left", self.left), ("right", self.right)]

    @classmethod
    def tree_rebuild(cls, children: Sequence[tuple[str, Any]]) -> "SelfDescribing":
        values = dict(children)
        return cls(left=values["left"], right=values["right"])


@dataclasses.dataclass
class Scaled:
    value: torch.Tensor
    factor: float = 1.0
    cached: int = dataclasses.field(init=False, default=0)


@dataclasses.dataclass
class Calibrated:
    value: torch.Tensor
    scale: dataclasses.InitVar[float]

    def __post_init__(self, scale: float):
        self.value = self.value * scale


@dataclasses.dataclass
class Shifted:
    value: torch.Tensor
    shift: dataclasses.InitVar[float] = 0.0

    def __post_init__(self, shift: float):
        self.value = self.value + shift


@pytest.fixture
def buffer_registered():
    register_composite(
        Buffer,
        children_of=lambda node: [("data", node.data)],
        rebuild=lambda template, children: Buffer(data=dict(children)["data"], name=template.name)
    )
    yield
    unregister_composite(Buffer)


@pytest.mark.local
def test_resolution_order(buffer_registered):
    assert resolve_composite(Buffer(torch.ones(1), "a")) is not None
    assert isinstance(resolve_composite(SelfDescribing(1, 2)), ProtocolCompositeAdapter)
    assert isinstance(resolve_composite(Scaled(torch.ones(1))), DataclassCompositeAdapter)
    assert resolve_composite(object()) is None
    assert resolve_composite(Scaled) is None


@pytest.mark.local
def test_protocol_is_runtime_checkable():
    assert isinstance(SelfDescribing(1, 2), Composite)
    assert not isinstance(Buffer(torch.ones(1), "a"), Composite)


@pytest.mark.local
def test_registered_composite(buffer_registered):
    x = Buffer(torch.tensor([1.0, 2.0]), "grad")

    result = recursive_add(x, Buffer(torch.tensor([1.0, 1.0]), "other"))

    assert isinstance(result, Buffer)
    assert result.name == "grad"
    assert torch.equal(result.data, torch.tensor([2.0, 3.0]))
    assert recursive_eltype(x) == torch.float32


@pytest.mark.local
def test_register_twice_fails(buffer_registered):
    with pytest.raises(ValueError, match="already registered"):
        register_composite(Buffer, children_of=lambda node: [], rebuild=lambda template, children: template)


@pytest.mark.local
def test_registration_applies_to_subclasses(buffer_registered):
    class NamedBuffer(Buffer):
        pass

    assert resolve_composite(NamedBuffer(torch.ones(1), "sub")) is not None


@pytest.mark.local
def test_protocol_composite():
    x = SelfDescribing(torch.tensor([1.0]), (2, 3))

    result = recursive_make_zero(x)

    assert isinstance(result, SelfDescribing)
    assert torch.equal(result.left, torch.tensor([0.0]))
    assert result.right == (0, 0)


@pytest.mark.local
def test_dataclass_skips_non_init_fields():
    x = Scaled(value=torch.tensor([2.0]), factor=3.0)
    x.cached = 42

    adapter = DataclassCompositeAdapter()
    assert [name for name, _ in adapter.children_of(x)] == ["value", "factor"]

    result = recursive_make_zero(x)
    assert result.cached == 0
    assert result.factor == 0.0


@pytest.mark.local
def test_protocol_children_mismatch():
    class Variable(SelfDescribing):
        def tree_children(self) -> Sequence[tuple[str, Any]]:
            if self.right is None:
                return [("left", self.left)]
            return super().tree_children()

    with pytest.raises(ShapeMismatchError):
        recursive_add(Variable(1, 2), Variable(1, None))


@pytest.mark.local
def test_torch_pytree_adapter_context():
    adapter = TorchPytreeCompositeAdapter(pytree.SUPPORTED_NODES[deque])

    node = deque([1, 2], maxlen=4)
    assert adapter.children_of(node) == [("0", 1), ("1", 2)]
    assert adapter.same_structure(node, deque([3, 4], maxlen=4))
    assert not adapter.same_structure(node, deque([3, 4]))

    rebuilt = adapter.rebuild(node, [("0", 5), ("1", 6)])
    assert list(rebuilt) == [5, 6]
    assert rebuilt.maxlen == 4


@pytest.mark.local
def test_dataclass_with_required_initvar_is_not_decomposed():
    node = Calibrated(torch.tensor([1.0, 2.0]), scale=2.0)

    assert not DataclassCompositeAdapter.can_rebuild(node)
    assert resolve_composite(node) is None
    with pytest.raises(UnsupportedOperationError, match="Cannot decompose object of type Calibrated"):
        recursive_op(ElementOp.zero, MutationMode.out_of_place, strict_opaque=True)(node)


@pytest.mark.local
def test_dataclass_with_defaulted_initvar_is_decomposed():
    node = Shifted(torch.tensor([1.0, 2.0]), shift=1.0)

    assert DataclassCompositeAdapter.can_rebuild(node)

    result = recursive_make_zero(node)

    assert isinstance(result, Shifted)
    assert torch.equal(result.value, torch.zeros(2))


@pytest.mark.local
def test_dataclass_with_required_initvar_can_be_registered():
    register_composite(
        Calibrated,
        children_of=lambda node: [("value", node.value)],
        rebuild=lambda template, children: Calibrated(dict(children)["value"], scale=1.0)
    )
    try:
        result = recursive_add(
            Calibrated(torch.tensor([1.0]), scale=2.0),
            Calibrated(torch.tensor([3.0]), scale=1.0)
        )
    finally:
        unregister_composite(Calibrated)

    assert isinstance(result, Calibrated)
    assert torch.equal(result.value, torch.tensor([5.0]))
