"""Const, Identity, Transpose, Reshape, ExpandDims, Squeeze and Pad tests."""

import numpy as np
import pytest

from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph import DataType, NodeDef


def _kinds(harness):
    return [layer.kind for layer in harness.network.layers]


def _ints(harness, name, values):
    return harness.add_weights(name, values, dtype=DataType.DT_INT32)


# =============================================================================
# Const / Identity
# =============================================================================


class TestConst:
    """Constants become weights in both phases."""

    def test_validates_and_builds(self, harness):
        const = NodeDef.make("c", "Const", value=np.ones((2, 2), dtype=np.float32), dtype=DataType.DT_FLOAT)
        (out,) = harness.run_both(const)
        assert out.is_weights
        assert out.dims == (2, 2)

    def test_narrow_ints_are_widened(self, harness):
        const = NodeDef.make("c", "Const", value=np.array([1, 2], dtype=np.int8), dtype=DataType.DT_INT8)
        (out,) = harness.run_both(const)
        assert out.weights.values.dtype == np.int32

    def test_dtype_mismatch(self, harness):
        const = NodeDef.make("c", "Const", value=np.ones(2, dtype=np.float32), dtype=DataType.DT_INT32)
        assert harness.run_both(const) is InvalidArgumentError

    def test_empty_constant(self, harness):
        const = NodeDef.make("c", "Const", value=np.zeros(0, dtype=np.float32), dtype=DataType.DT_FLOAT)
        (out,) = harness.run_both(const)
        assert out.weights.count() == 0

    def test_unsupported_type(self, harness):
        const = NodeDef.make("c", "Const", value=np.ones(2, dtype=np.int64), dtype=DataType.DT_INT64)
        assert harness.run_both(const) is InvalidArgumentError


class TestIdentity:
    """Identity and Snapshot forward their input."""

    @pytest.mark.parametrize("op", ["Identity", "Snapshot"])
    def test_forwards(self, harness, node, op):
        x = harness.add_tensor("x", (3,))
        (out,) = harness.run_both(node(op, "x"))
        assert out.tensor is x.tensor
        assert harness.network.num_layers == 0


# =============================================================================
# Transpose / Reshape
# =============================================================================


class TestTranspose:
    """Permutations with the batch dim fixed in front."""

    def test_transpose(self, harness, node):
        harness.add_tensor("x", (2, 3, 4))
        _ints(harness, "perm", [0, 3, 1, 2])
        (out,) = harness.run_both(node("Transpose", "x", "perm"))
        assert out.dims == (4, 2, 3)
        assert out.tensor.producer.first_transpose == (2, 0, 1)

    @pytest.mark.parametrize(
        "perm,error",
        [
            ([1, 0, 2, 3], UnimplementedError),
            ([0, 2, 1], InvalidArgumentError),
            ([0, 1, 1, 2], InvalidArgumentError),
        ],
    )
    def test_rejected_permutations(self, harness, node, perm, error):
        harness.add_tensor("x", (2, 3, 4))
        _ints(harness, "perm", perm)
        assert harness.run_both(node("Transpose", "x", "perm")) is error

    def test_perm_must_be_constant(self, harness, node):
        harness.add_tensor("x", (2, 3, 4))
        harness.add_tensor("perm", (4,), dtype=DataType.DT_INT32)
        assert harness.run_both(node("Transpose", "x", "perm")) is UnimplementedError


class TestReshape:
    """Reshapes that leave the batch dimension alone."""

    @pytest.mark.parametrize(
        "shape,expected",
        [
            ([1, 6], (6,)),
            ([-1, 6], (6,)),
            ([1, 2, 3], (2, 3)),
            ([-1, 3, 1, 2], (3, 1, 2)),
            ([1, -1], (6,)),
            ([2, 3], UnimplementedError),
            ([-1, 3], UnimplementedError),
            ([-1, 2, 2], UnimplementedError),
            ([1, 4], InvalidArgumentError),
            ([], UnimplementedError),
        ],
    )
    def test_batch_is_invariant(self, harness, node, shape, expected):
        harness.add_tensor("x", (2, 3))
        _ints(harness, "shape", shape)
        result = harness.run_both(node("Reshape", "x", "shape"))
        if isinstance(expected, tuple):
            (out,) = result
            assert out.dims == expected
        else:
            assert result is expected

    @pytest.mark.parametrize(
        "shape,expected",
        [
            ([-1, 6], (6,)),
            ([1, 6], (6,)),
            ([-1, 2, 3], (2, 3)),
            ([5, 3, 2], (3, 2)),
            ([2, 3], UnimplementedError),
            ([-1, 4], UnimplementedError),
            ([-1, 3, -1], UnimplementedError),
        ],
    )
    def test_unknown_input_batch_needs_equal_volume(self, harness, node, shape, expected):
        harness.add_tensor("x", (2, 3), batch_size=-1)
        _ints(harness, "shape", shape)
        result = harness.run_both(node("Reshape", "x", "shape"))
        if isinstance(expected, tuple):
            (out,) = result
            assert out.dims == expected
        else:
            assert result is expected

    @pytest.mark.parametrize(
        "shape,expected",
        [
            ([-1, 6], (6,)),
            ([4, 6], (6,)),
            ([4, 3, 2], (3, 2)),
            ([-1, 24], UnimplementedError),
            ([2, 6], UnimplementedError),
            ([2, 12], UnimplementedError),
        ],
    )
    def test_known_input_batch_of_four(self, harness, node, shape, expected):
        harness.add_tensor("x", (6,), batch_size=4)
        _ints(harness, "shape", shape)
        result = harness.run_both(node("Reshape", "x", "shape"))
        if isinstance(expected, tuple):
            (out,) = result
            assert out.dims == expected
        else:
            assert result is expected

    def test_same_shape_adds_no_layer(self, harness, node):
        x = harness.add_tensor("x", (2, 3))
        _ints(harness, "shape", [1, 2, 3])
        (out,) = harness.run_both(node("Reshape", "x", "shape"))
        assert out.tensor is x.tensor
        assert harness.network.num_layers == 0

    def test_shape_must_be_constant(self, harness, node):
        harness.add_tensor("x", (2, 3))
        harness.add_tensor("shape", (2,), dtype=DataType.DT_INT32)
        assert harness.run_both(node("Reshape", "x", "shape")) is UnimplementedError


# =============================================================================
# ExpandDims / Squeeze
# =============================================================================


class TestExpandDims:
    @pytest.mark.parametrize(
        "axis,expected",
        [
            ([1], (1, 2, 3)),
            ([2], (2, 1, 3)),
            ([-1], (2, 3, 1)),
            ([3], (2, 3, 1)),
            ([0], UnimplementedError),
            ([4], InvalidArgumentError),
            ([1, 2], InvalidArgumentError),
        ],
    )
    def test_axis(self, harness, node, axis, expected):
        harness.add_tensor("x", (2, 3))
        _ints(harness, "axis", axis)
        result = harness.run_both(node("ExpandDims", "x", "axis"))
        if isinstance(expected, tuple):
            (out,) = result
            assert out.dims == expected
        else:
            assert result is expected


class TestSqueeze:
    def test_squeeze(self, harness, node):
        harness.add_tensor("x", (1, 3, 1))
        (out,) = harness.run_both(node("Squeeze", "x", squeeze_dims=[1, -1]))
        assert out.dims == (3,)

    def test_non_unit_dim(self, harness, node):
        harness.add_tensor("x", (1, 3, 1))
        assert harness.run_both(node("Squeeze", "x", squeeze_dims=[2])) is InvalidArgumentError

    def test_same_axis_twice(self, harness, node):
        harness.add_tensor("x", (1, 3, 1))
        assert harness.run_both(node("Squeeze", "x", squeeze_dims=[1, -3])) is InvalidArgumentError

    def test_implicit_dims(self, harness, node):
        harness.add_tensor("x", (1, 3, 1))
        assert harness.run_both(node("Squeeze", "x")) is UnimplementedError

    def test_batch_axis(self, harness, node):
        harness.add_tensor("x", (1, 3, 1))
        assert harness.run_both(node("Squeeze", "x", squeeze_dims=[0])) is UnimplementedError


# =============================================================================
# Pad
# =============================================================================


class TestPad:
    """Explicit padding of at most two non-batch dims."""

    def test_last_two_dims(self, harness, node):
        harness.add_tensor("x", (3, 4, 4))
        _ints(harness, "pads", [[0, 0], [0, 0], [1, 1], [2, 0]])
        (out,) = harness.run_both(node("Pad", "x", "pads"))
        assert out.dims == (3, 6, 6)
        assert _kinds(harness) == ["Padding"]
        layer = out.tensor.producer
        assert layer.pre_padding == (1, 2)
        assert layer.post_padding == (1, 0)

    def test_first_dim_is_swapped_into_place(self, harness, node):
        harness.add_tensor("x", (3, 4, 4))
        _ints(harness, "pads", [[0, 0], [1, 0], [0, 2], [0, 0]])
        (out,) = harness.run_both(node("Pad", "x", "pads"))
        assert out.dims == (4, 6, 4)
        assert _kinds(harness) == ["Shuffle", "Padding", "Shuffle"]

    def test_no_padding_forwards_input(self, harness, node):
        harness.add_tensor("x", (3, 4, 4))
        _ints(harness, "pads", [[0, 0]] * 4)
        harness.run_both(node("Pad", "x", "pads"))
        assert harness.network.num_layers == 0

    @pytest.mark.parametrize(
        "pads,error",
        [
            ([[1, 0], [0, 0], [0, 0], [0, 0]], InvalidArgumentError),
            ([[0, 0], [1, 0], [1, 0], [1, 0]], InvalidArgumentError),
            ([[0, 0], [1, 0], [0, 0], [1, 0]], UnimplementedError),
            ([[0, 0], [1, 0], [0, 0]], InvalidArgumentError),
        ],
    )
    def test_rejected_paddings(self, harness, node, pads, error):
        harness.add_tensor("x", (3, 4, 4))
        _ints(harness, "pads", pads)
        assert harness.run_both(node("Pad", "x", "pads")) is error

    def test_only_rank_four(self, harness, node):
        harness.add_tensor("x", (4, 4))
        _ints(harness, "pads", [[0, 0], [1, 1], [1, 1]])
        assert harness.run_both(node("Pad", "x", "pads")) is InvalidArgumentError

    def test_padding_type(self, harness, node):
        harness.add_tensor("x", (3, 4, 4))
        _ints(harness, "pads", [[0, 0], [0, 0], [1, 1], [1, 1]])
        assert harness.run_both(node("Pad", "x", "pads", Tpaddings=DataType.DT_INT64)) is UnimplementedError
