"""Shape algebra tests: axes, broadcasting, padding and property checks."""

import itertools

import pytest

from trtlower.convert.shapes import (
    are_dims_static_with_different_size,
    are_dims_static_with_same_size,
    check_shape_compatible,
    compute_broadcast_shapes,
    convert_axis,
    create_same_padding,
    remove_batch_dimension,
    tf_dtype_to_trt,
    validate_tensor_properties,
    verify_shapes_match,
)
from trtlower.convert.values import TensorOrWeights
from trtlower.convert.weights import WeightStore
from trtlower.errors import InvalidArgumentError, OutOfRangeError, UnimplementedError
from trtlower.graph import DataType
from trtlower.ir import MAX_DIMS, float16, float32, int32


def _tensor(*dims):
    return TensorOrWeights.placeholder(float32, dims)


def _weights(*dims):
    return TensorOrWeights.from_weights(WeightStore().get_temp_weights(float32, dims))


# =============================================================================
# Axis Conversion
# =============================================================================


class TestConvertAxis:
    """Source axes include the batch dim; backend axes do not."""

    def test_negative_axis_wraps_with_batch(self):
        assert convert_axis(-1, 3, "n") == 2

    def test_positive_axis_drops_batch(self):
        assert convert_axis(1, 3, "n") == 0
        assert convert_axis(3, 3, "n") == 2

    def test_batch_axis_is_unimplemented(self):
        with pytest.raises(UnimplementedError, match="batch dimension"):
            convert_axis(0, 3, "n")
        with pytest.raises(UnimplementedError):
            convert_axis(-4, 3, "n")

    def test_out_of_range_axis_is_invalid(self):
        with pytest.raises(InvalidArgumentError, match="out of bounds"):
            convert_axis(5, 3, "n")
        with pytest.raises(InvalidArgumentError):
            convert_axis(-5, 3, "n")


# =============================================================================
# Broadcasting
# =============================================================================


class TestBroadcast:
    """Rank alignment between tensors and weights."""

    def test_weights_with_trivial_batch_are_stripped(self):
        l_dims, r_dims = compute_broadcast_shapes(_tensor(3, 1, 1), _weights(1, 3, 1, 1))
        assert l_dims == (3, 1, 1)
        assert r_dims == (3, 1, 1)

    def test_weights_with_real_batch_are_rejected(self):
        with pytest.raises(InvalidArgumentError, match="non-trivial batch"):
            compute_broadcast_shapes(_tensor(3, 1, 1), _weights(2, 3, 1, 1))

    def test_lower_rank_side_is_left_padded(self):
        l_dims, r_dims = compute_broadcast_shapes(_tensor(4, 5, 6), _weights(6))
        assert l_dims == (4, 5, 6)
        assert r_dims == (1, 1, 6)

    def test_incompatible_padded_dims_are_rejected(self):
        with pytest.raises(InvalidArgumentError, match="Infeasible broadcast"):
            compute_broadcast_shapes(_tensor(4, 5, 6), _weights(5))

    def test_equal_rank_is_returned_as_is(self):
        # Feasibility of equal-rank operands is the caller's business.
        assert compute_broadcast_shapes(_tensor(2, 3), _tensor(4, 3)) == ((2, 3), (4, 3))

    @pytest.mark.parametrize(
        "lhs_dims,rhs_dims,rhs_is_weights",
        list(
            itertools.product(
                [(3,), (2, 3), (1, 3), (4, 2, 3)],
                [(3,), (1,), (2, 1), (1, 2, 3), (5, 3), (2, 2, 3)],
                [False, True],
            )
        ),
    )
    def test_symmetry(self, lhs_dims, rhs_dims, rhs_is_weights):
        lhs = _tensor(*lhs_dims)
        rhs = _weights(*rhs_dims) if rhs_is_weights else _tensor(*rhs_dims)
        try:
            forward = compute_broadcast_shapes(lhs, rhs)
        except InvalidArgumentError:
            with pytest.raises(InvalidArgumentError):
                compute_broadcast_shapes(rhs, lhs)
            return
        backward = compute_broadcast_shapes(rhs, lhs)
        assert forward == (backward[1], backward[0])


# =============================================================================
# SAME Padding
# =============================================================================


class TestSamePadding:
    """TensorFlow "SAME" padding, extra padding goes after."""

    @pytest.mark.parametrize(
        "size,stride,kernel,expected",
        [
            (8, 2, 3, (0, 1)),
            (7, 2, 3, (1, 1)),
            (5, 1, 3, (1, 1)),
            (4, 1, 4, (1, 2)),
            (6, 3, 1, (0, 0)),
            (2, 1, 5, (2, 2)),
        ],
    )
    def test_single_dim(self, size, stride, kernel, expected):
        assert create_same_padding([stride], [kernel], [size]) == [expected]

    def test_two_dims(self):
        assert create_same_padding((2, 1), (3, 3), (8, 5)) == [(0, 1), (1, 1)]


# =============================================================================
# Tensor Properties
# =============================================================================


class TestValidateTensorProperties:
    """Which source tensors may become backend tensors."""

    def test_batch_is_split_off(self):
        dtype, dims, batch = validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (8, 3, 4), False)
        assert dtype == float32
        assert dims == (3, 4)
        assert batch == 8

    def test_unknown_rank(self):
        with pytest.raises(InvalidArgumentError, match="rank is unknown"):
            validate_tensor_properties("Placeholder", DataType.DT_FLOAT, None, True)

    def test_rank_limit(self):
        with pytest.raises(OutOfRangeError):
            validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (1,) * (MAX_DIMS + 2), True)

    def test_scalar_only_for_const(self):
        with pytest.raises(InvalidArgumentError, match="Scalar"):
            validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (), True)
        _, dims, batch = validate_tensor_properties("Const", DataType.DT_FLOAT, (), True)
        assert dims == ()
        assert batch == -1

    def test_empty_tensor_is_unimplemented(self):
        with pytest.raises(UnimplementedError, match="Empty tensor"):
            validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (4, 0, 2), True)
        with pytest.raises(UnimplementedError):
            validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (0, 2), True)

    def test_unknown_dims_only_tolerated_while_validating(self):
        _, dims, batch = validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (-1, -1, 3), True)
        assert dims == (-1, 3)
        assert batch == -1
        with pytest.raises(InvalidArgumentError, match="unknown non-batch"):
            validate_tensor_properties("Placeholder", DataType.DT_FLOAT, (-1, -1, 3), False)

    def test_unsupported_dtype(self):
        with pytest.raises(InvalidArgumentError, match="Unsupported data type"):
            validate_tensor_properties("Placeholder", DataType.DT_INT64, (1, 3), True)


# =============================================================================
# Dims Helpers
# =============================================================================


def test_dtype_mapping() -> None:
    assert tf_dtype_to_trt(DataType.DT_FLOAT) == float32
    assert tf_dtype_to_trt(DataType.DT_HALF) == float16
    assert tf_dtype_to_trt(DataType.DT_INT32) == int32
    with pytest.raises(InvalidArgumentError):
        tf_dtype_to_trt(DataType.DT_BOOL)


def test_static_size_comparisons() -> None:
    assert are_dims_static_with_same_size((2, 3), (6,), is_tensor=True)
    assert not are_dims_static_with_same_size((2, -1), (6,), is_tensor=True)
    assert are_dims_static_with_different_size((2, 3), (5,), is_tensor=True)
    assert not are_dims_static_with_different_size((2, -1), (5,), is_tensor=True)
    # Rank-0 weights count as empty.
    assert are_dims_static_with_different_size((), (1,), is_tensor=False)


def test_remove_batch_dimension() -> None:
    assert remove_batch_dimension((1, 3, 4)) == (3, 4)
    with pytest.raises(InvalidArgumentError):
        remove_batch_dimension((3,))


def test_check_shape_compatible() -> None:
    check_shape_compatible(_tensor(2, 3), (3, 2))
    check_shape_compatible(_tensor(2, -1), (7,))
    with pytest.raises(InvalidArgumentError, match="Incompatible shapes"):
        check_shape_compatible(_tensor(2, 3), (5,))
    with pytest.raises(InvalidArgumentError, match="not fully defined"):
        check_shape_compatible(_weights(6), (-1, 3))


def test_verify_shapes_match() -> None:
    verify_shapes_match([_tensor(2, 3), _tensor(2, 5)], masked_dim=1, node_name="n")
    with pytest.raises(InvalidArgumentError, match="inconsistent shape"):
        verify_shapes_match([_tensor(2, 3), _tensor(2, 5)], masked_dim=-1, node_name="n")
    with pytest.raises(InvalidArgumentError, match="inconsistent rank"):
        verify_shapes_match([_tensor(2, 3), _tensor(2, 3, 1)], masked_dim=-1, node_name="n")
