"""Shape algebra shared by every converter.

All functions here are pure: they never touch a network and behave the same
whether a converter is validating or building. Dims never include the
implicit batch dimension unless a name says otherwise.
"""

from __future__ import annotations

import logging
from typing import Sequence

from trtlower.errors import InvalidArgumentError, OutOfRangeError, UnimplementedError
from trtlower.graph.dtypes import DataType
from trtlower.graph.properties import PartialShape
from trtlower.ir.dtypes import MAX_DIMS, DType, float16, float32, int8, int32
from trtlower.ir.tensor import Shape

from .values import TensorOrWeights

logger = logging.getLogger(__name__)


# =============================================================================
# Data Types
# =============================================================================


_TF_TO_TRT = {
    DataType.DT_FLOAT: float32,
    DataType.DT_HALF: float16,
    DataType.DT_INT32: int32,
}

_TRT_TO_TF = {
    float32: DataType.DT_FLOAT,
    float16: DataType.DT_HALF,
    int32: DataType.DT_INT32,
    int8: DataType.DT_INT8,
}


def tf_dtype_to_trt(dtype: DataType) -> DType:
    try:
        return _TF_TO_TRT[dtype]
    except KeyError:
        raise InvalidArgumentError(f"Unsupported data type {dtype.name}") from None


def trt_dtype_to_tf(dtype: DType) -> DataType:
    try:
        return _TRT_TO_TF[dtype]
    except KeyError:
        raise InvalidArgumentError(f"Unsupported data type {dtype}") from None


# =============================================================================
# Dims Helpers
# =============================================================================


def volume(dims: Sequence[int]) -> int:
    n = 1
    for d in dims:
        n *= d
    return n


def has_static_shape(dims: Sequence[int]) -> bool:
    return all(d >= 0 for d in dims)


def tensor_num_elements(dims: Sequence[int]) -> int:
    return volume(dims) if has_static_shape(dims) else -1


def weight_num_elements(dims: Sequence[int]) -> int:
    return volume(dims) if dims else 0


def _num_elements(dims: Sequence[int], is_tensor: bool) -> int:
    return tensor_num_elements(dims) if is_tensor else weight_num_elements(dims)


def are_dims_static_with_same_size(lhs: Sequence[int], rhs: Sequence[int], is_tensor: bool) -> bool:
    lhs_size = _num_elements(lhs, is_tensor)
    return lhs_size != -1 and lhs_size == _num_elements(rhs, is_tensor)


def are_dims_static_with_different_size(lhs: Sequence[int], rhs: Sequence[int], is_tensor: bool) -> bool:
    lhs_size = _num_elements(lhs, is_tensor)
    rhs_size = _num_elements(rhs, is_tensor)
    return lhs_size != -1 and rhs_size != -1 and lhs_size != rhs_size


def dims_equal(lhs: Sequence[int], rhs: Sequence[int]) -> bool:
    return tuple(lhs) == tuple(rhs)


def all_lengths_equal(inputs: Sequence[Sequence[object]]) -> bool:
    return all(len(v) == len(inputs[0]) for v in inputs)


def remove_batch_dimension(dims: Shape) -> Shape:
    if len(dims) < 2:
        raise InvalidArgumentError("Dropping batch dimension requires dims with rank>=2.")
    return tuple(dims[1:])


def check_shape_compatible(value: TensorOrWeights, dims: Sequence[int]) -> None:
    """Raise unless `value` can be reshaped (or materialized) to `dims`.

    Shapes with unknown dims are trusted; the backend layer resolves them.
    """
    if value.is_weights and not has_static_shape(dims):
        raise InvalidArgumentError(f"Shape is not fully defined: {tuple(dims)}")
    if are_dims_static_with_different_size(value.dims, dims, value.is_tensor):
        raise InvalidArgumentError(f"Incompatible shapes: {value.dims} vs. {tuple(dims)}")


def verify_shapes_match(inputs: Sequence[TensorOrWeights], masked_dim: int, node_name: str) -> None:
    """All inputs must share rank and every dim except `masked_dim` (-1 for none)."""
    if len(inputs) <= 1:
        return
    dims_0 = inputs[0].dims
    for value in inputs[1:]:
        dims_i = value.dims
        if len(dims_i) != len(dims_0):
            raise InvalidArgumentError(f"Received inputs with inconsistent rank, at {node_name}")
        for j, (a, b) in enumerate(zip(dims_0, dims_i)):
            if j != masked_dim and a != b:
                raise InvalidArgumentError(f"Received inputs with inconsistent shape, at {node_name}")


# =============================================================================
# Tensor Properties
# =============================================================================


def validate_tensor_properties(
    producer_op: str,
    dtype: DataType,
    shape: PartialShape,
    validation_only: bool,
) -> tuple[DType, Shape, int]:
    """Check that a source tensor can live in the backend.

    Args:
        producer_op: Op type of the producing node; only Const may be scalar.
        dtype: Source element type.
        shape: Full source shape including batch, or None if rank is unknown.
        validation_only: Unknown non-batch dims are tolerated while validating.

    Returns:
        `(backend dtype, dims without batch, batch size)`.
    """
    trt_dtype = tf_dtype_to_trt(dtype)
    if shape is None:
        raise InvalidArgumentError("Input tensor rank is unknown.")
    if len(shape) > MAX_DIMS + 1:
        raise OutOfRangeError(f"Input tensor rank is greater than {MAX_DIMS + 1}")
    if producer_op != "Const" and len(shape) < 1:
        raise InvalidArgumentError("Scalar input tensor is not supported since the first dimension is treated as batch dimension by TRT")

    dims = tuple(int(d) for d in shape[1:])
    batch_size = int(shape[0]) if shape else -1
    if batch_size == 0 or any(d == 0 for d in dims):
        raise UnimplementedError("Empty tensor with shape " + str(tuple(shape)))
    if not validation_only and any(d < 0 for d in dims):
        raise InvalidArgumentError(
            "Input tensor with shape " + str(tuple(shape)) + " has an unknown non-batch dimension"
        )
    return trt_dtype, dims, batch_size


# =============================================================================
# Broadcasting
# =============================================================================


def compute_broadcast_shapes(lhs: TensorOrWeights, rhs: TensorOrWeights) -> tuple[Shape, Shape]:
    """Bring two operands of an elementwise op to the same rank.

    Weights whose rank exceeds the other side are assumed to carry a batch
    dimension, which must be trivial and is stripped. The lower-rank side is
    then left-padded with 1s.

    Raises:
        InvalidArgumentError: On a non-trivial weight batch dim or when a pair
            of dims is neither equal nor 1.
    """
    l_dims, r_dims = lhs.dims, rhs.dims

    if lhs.is_weights and len(l_dims) > len(r_dims):
        if l_dims[0] not in (-1, 1):
            raise InvalidArgumentError("Cannot broadcast weights with non-trivial batch dimension")
        l_dims = remove_batch_dimension(l_dims)
    if rhs.is_weights and len(r_dims) > len(l_dims):
        if r_dims[0] not in (-1, 1):
            raise InvalidArgumentError("Cannot broadcast weights with non-trivial batch dimension")
        r_dims = remove_batch_dimension(r_dims)

    if len(l_dims) == len(r_dims):
        logger.debug(f"Broadcasted operands to [L] {l_dims} and [R] {r_dims}")
        return l_dims, r_dims

    rank = max(len(l_dims), len(r_dims))
    l_dims = (1,) * (rank - len(l_dims)) + l_dims
    r_dims = (1,) * (rank - len(r_dims)) + r_dims
    logger.debug(f"Broadcasted operands to [L] {l_dims} and [R] {r_dims}")
    check_broadcast_feasible(l_dims, r_dims)
    return l_dims, r_dims


def check_broadcast_feasible(l_dims: Shape, r_dims: Shape) -> None:
    for a, b in zip(l_dims, r_dims):
        if a != b and a != 1 and b != 1:
            raise InvalidArgumentError(
                f"Infeasible broadcast scheme (batch_dim: {l_dims[0]}, {l_dims} "
                f"vs batch_dim: {r_dims[0]}, {r_dims})"
            )


# =============================================================================
# Axes & Padding
# =============================================================================


def convert_axis(tf_axis: int, trt_nb_dims: int, node_name: str) -> int:
    """Map a source axis (batch included, may be negative) to a backend axis."""
    tf_nb_dims = trt_nb_dims + 1
    if tf_axis < -tf_nb_dims or tf_axis >= tf_nb_dims:
        raise InvalidArgumentError(
            f"Axis value of {tf_axis} is out of bounds, must be in range "
            f"[{-tf_nb_dims}, {tf_nb_dims}), at {node_name}"
        )
    if tf_axis < 0:
        tf_axis += tf_nb_dims
    if tf_axis == 0:
        raise UnimplementedError(f"TensorRT does not allow manipulation of the batch dimension, at {node_name}")
    return tf_axis - 1


def create_same_padding(
    stride: Sequence[int],
    kernel: Sequence[int],
    input_dims: Sequence[int],
) -> list[tuple[int, int]]:
    """Per-dim (before, after) padding for a "SAME" window.

    `kernel` must already include dilation: `(k - 1) * d + 1`.
    """
    padding = []
    for s, k, size in zip(stride, kernel, input_dims):
        p = ((size - 1) // s) * s + k - size
        p = max(p, 0)
        left = p // 2
        padding.append((left, p - left))
        logger.debug(f"SAME padding: in={size} k={k} s={s} -> ({left}, {p - left})")
    return padding
