import dataclasses
from collections.abc import Callable
from typing import Any, NamedTuple

import numpy as np
import pytest
import torch
from nestops.core.recursive import (
    ElementOp,
    ImmutableLeafError,
    MutationMode,
    ShapeMismatchError,
    recursive_add,
    recursive_add_,
    recursive_copy,
    recursive_copy_,
    recursive_make_zero,
    recursive_make_zero_,
    recursive_op,
)


class AdamState(NamedTuple):
    exp_avg: torch.Tensor
    exp_avg_sq: torch.Tensor


@dataclasses.dataclass
class Params:
    w: torch.Tensor
    b: float


def _tree_equal(x: Any, y: Any) -> bool:
    if isinstance(x, torch.Tensor):
        return isinstance(y, torch.Tensor) and x.shape == y.shape and x.dtype == y.dtype and torch.equal(x, y)
    if isinstance(x, np.ndarray):
        return isinstance(y, np.ndarray) and x.shape == y.shape and np.array_equal(x, y)
    if isinstance(x, dict):
        return isinstance(y, dict) and list(x) == list(y) and all(_tree_equal(x[k], y[k]) for k in x)
    if isinstance(x, (list, tuple)):
        return type(x) is type(y) and len(x) == len(y) and all(_tree_equal(a, b) for a, b in zip(x, y))
    if dataclasses.is_dataclass(x):
        return type(x) is type(y) and all(
            _tree_equal(getattr(x, f.name), getattr(y, f.name)) for f in dataclasses.fields(x)
        )
    return x == y


def _scalar_tree():
    return 3.0


def _bulk_tree():
    return torch.randn(4, 3)


def _tuple_tree():
    return torch.randn(2), (1, np.arange(3.0))


def _record_tree():
    return {"adam": AdamState(exp_avg=torch.randn(3), exp_avg_sq=torch.rand(3)), "step": 4}


def _opaque_tree():
    return Params(w=torch.randn(2, 2), b=0.5)


_TREES = [_scalar_tree, _bulk_tree, _tuple_tree, _record_tree, _opaque_tree]


@pytest.mark.local
@pytest.mark.parametrize("make_tree", _TREES)
def test_add_zero_is_identity(make_tree: Callable[[], Any]):
    x = make_tree()

    assert _tree_equal(recursive_add(x, recursive_make_zero(x)), x)


@pytest.mark.local
@pytest.mark.parametrize("make_tree", _TREES)
def test_zero_is_idempotent(make_tree: Callable[[], Any]):
    x = make_tree()
    zero = recursive_make_zero(x)

    assert _tree_equal(recursive_make_zero(zero), zero)


@pytest.mark.local
@pytest.mark.parametrize("make_tree", _TREES)
def test_inplace_and_out_of_place_add_agree(make_tree: Callable[[], Any]):
    x = make_tree()
    y = make_tree()

    expected = recursive_add(x, y)
    actual = recursive_add_(recursive_copy(x), y)

    assert _tree_equal(actual, expected)


@pytest.mark.local
def test_out_of_place_add_does_not_alias():
    x = {"w": torch.ones(3)}
    y = {"w": torch.ones(3)}

    result = recursive_add(x, y)
    result["w"].add_(10.0)

    assert torch.equal(x["w"], torch.ones(3))
    assert torch.equal(y["w"], torch.ones(3))


@pytest.mark.local
def test_inplace_add_reuses_leaf_storage():
    weight = torch.ones(3)
    x = (weight, 1.0)

    result = recursive_add_(x, (torch.ones(3), 2.0))

    assert result[0] is weight
    assert torch.equal(weight, torch.full((3,), 2.0))
    assert result[1] == 3.0


@pytest.mark.local
def test_inplace_zero_reuses_leaf_storage():
    weight = torch.randn(3)
    x = {"w": weight, "n": 7, "skip": None}

    result = recursive_make_zero_(x)

    assert result["w"] is weight
    assert torch.count_nonzero(weight) == 0
    assert result["n"] == 0
    assert result["skip"] is None


@pytest.mark.local
def test_copy_roundtrip_without_aliasing():
    src = {"w": torch.randn(2, 2), "stats": [np.arange(3.0), None]}
    dst = recursive_make_zero(src)

    recursive_copy_(dst, src)

    assert _tree_equal(dst, src)

    src["w"].add_(1.0)
    src["stats"][0] += 1.0

    assert not torch.equal(dst["w"], src["w"])
    np.testing.assert_array_equal(dst["stats"][0], np.arange(3.0))


@pytest.mark.local
def test_copy_into_immutable_leaf_fails():
    with pytest.raises(ImmutableLeafError):
        recursive_copy_((torch.zeros(2), 1.0), (torch.ones(2), 2.0))


@pytest.mark.local
def test_shape_mismatch_detection():
    with pytest.raises(ShapeMismatchError):
        recursive_add((1, 2), (1, 2, 3))

    with pytest.raises(ShapeMismatchError):
        recursive_add({"a": 1, "b": 2}, {"a": 1})

    with pytest.raises(ShapeMismatchError):
        recursive_copy_({"w": torch.zeros(2)}, {"w": torch.zeros(3)})


@pytest.mark.local
def test_opaque_composite_add():
    result = recursive_add(
        Params(w=torch.tensor([1.0, 2.0]), b=3.0),
        Params(w=torch.tensor([1.0, 1.0]), b=1.0)
    )

    assert isinstance(result, Params)
    assert torch.equal(result.w, torch.tensor([2.0, 3.0]))
    assert result.b == 4.0


@pytest.mark.local
def test_shape_preserved_for_every_op():
    tree = {"a": (torch.randn(2, 3), [1, 2.0]), "b": AdamState(torch.randn(1), torch.randn(1))}

    for op in (ElementOp.zero, ElementOp.copy):
        for mode in (MutationMode.out_of_place, MutationMode.in_place_if_possible):
            if op == ElementOp.copy and mode == MutationMode.in_place_if_possible:
                continue
            result = recursive_op(op, mode)(tree)
            assert list(result) == ["a", "b"]
            assert isinstance(result["a"], tuple)
            assert result["a"][0].shape == (2, 3)
            assert isinstance(result["a"][1], list)
            assert len(result["a"][1]) == 2
            assert isinstance(result["b"], AdamState)
