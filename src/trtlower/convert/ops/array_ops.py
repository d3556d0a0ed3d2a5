"""Slicing, splitting, stacking and gathering.

Index vectors handled here include the batch dimension at position 0 so they
line up with the source op's arguments; it is dropped when the backend layer
is added.
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph.node import AttrType
from trtlower.ir.dtypes import MAX_DIMS, int32

from ..params import OpConverterParams, allow_data_types, check_input_kinds
from ..shapes import all_lengths_equal, check_shape_compatible, convert_axis, verify_shapes_match
from ..values import TensorOrWeights
from ..weights import ShapedWeights
from .elementwise import FLOAT_TYPES
from .shape_ops import SHAPE_TYPES


def _int_list(weights: ShapedWeights) -> list[int]:
    return [int(v) for v in weights.to_list()]


def _scalar_axis(params: OpConverterParams, weights: ShapedWeights) -> int:
    axis = _int_list(weights)
    if len(axis) != 1:
        raise InvalidArgumentError(f"Axis for {params.op} must be a scalar, at {params.name}")
    return axis[0]


# =============================================================================
# Slice Helper
# =============================================================================


def strided_slice_helper(
    params: OpConverterParams,
    value: TensorOrWeights,
    begin: Sequence[int],
    size: Sequence[int],
    stride: Sequence[int],
) -> None:
    """Bounds-check a batch-inclusive (begin, size, stride) and add a slice layer.

    The produced tensor is appended to the node outputs, so helpers that
    slice several times (Split, Unpack) emit one output per call.
    """
    input_dims = (-1,) + tuple(value.dims)
    for i in range(1, len(input_dims)):
        dim = input_dims[i]
        if begin[i] < 0 or (dim >= 0 and begin[i] > dim):
            raise InvalidArgumentError(
                f'"begin" for dimension {i} in {params.op} is out of range, at {params.name}'
            )
        end = begin[i] + size[i]
        if end < 0 or (dim >= 0 and end > dim):
            raise InvalidArgumentError(
                f'"begin" + "size" for dimension {i} in {params.op} is out of range, at {params.name}'
            )
        if size[i] <= 0:
            raise InvalidArgumentError(f'"size" cannot be negative or zero for {params.op}, at {params.name}')
    if params.validation_only:
        return

    layer = params.network.add_slice(value.tensor, begin[1:], size[1:], stride[1:])
    params.session.mark_quantization_ranges_as_inferrable(value.tensor, layer.get_output(0))
    params.add_output(layer.get_output(0))


# =============================================================================
# Slice / StridedSlice
# =============================================================================


def convert_slice(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False), ("begin", True), ("size", True)])
    allow_data_types(params, SHAPE_TYPES)
    value = params.inputs[0]
    begin = _int_list(params.inputs[1].weights)
    size = _int_list(params.inputs[2].weights)
    input_dims = [value.batch_size] + list(value.dims)
    if not all_lengths_equal([input_dims, begin, size]):
        raise InvalidArgumentError(
            f"Length of begin and size arguments must equal rank of input for Slice, at {params.name}"
        )

    batch_defined = input_dims[0] > 0
    begin_modified = begin[0] != 0
    size_modified = size[0] != -1 and (not batch_defined or size[0] != input_dims[0])
    if begin_modified or size_modified:
        raise UnimplementedError(f"TensorRT does not allow modifications to the batch dimension, at {params.name}")

    # -1 takes everything from begin to the end of the dim.
    for i in range(1, len(input_dims)):
        if size[i] == -1 and input_dims[i] >= 0:
            size[i] = input_dims[i] - begin[i]
    strided_slice_helper(params, value, begin, size, [1] * len(begin))


class SliceSpec(NamedTuple):
    """Dense, batch-inclusive strided slice with all masks resolved."""

    begin: list[int]
    end: list[int]
    strides: list[int]
    begin_masked: list[bool]
    end_masked: list[bool]


def canonicalize_strided_slice(
    input_dims: Sequence[int],
    begin: Sequence[int],
    end: Sequence[int],
    strides: Sequence[int],
    begin_mask: int,
    end_mask: int,
    ellipsis_mask: int,
    node_name: str,
) -> SliceSpec:
    """Resolve masks and negative indices against `input_dims`.

    Only positive strides are resolved; zero and negative strides raise.
    Unknown dims (-1) keep their indices unresolved.
    """
    rank = len(input_dims)
    n = len(begin)
    if ellipsis_mask & (ellipsis_mask - 1):
        raise InvalidArgumentError(f"Multiple ellipses in slice spec not allowed, at {node_name}")
    if (ellipsis_mask and n - 1 > rank) or (not ellipsis_mask and n > rank):
        raise InvalidArgumentError(f"Index spec of length {n} is too long for input of rank {rank}, at {node_name}")

    # (begin, end, stride, begin masked, end masked) per dense dim
    dense: list[tuple[int, int, int, bool, bool]] = []
    for i in range(n):
        if ellipsis_mask & (1 << i):
            covered = rank - (n - 1)
            dense.extend((0, 0, 1, True, True) for _ in range(covered))
        else:
            dense.append((begin[i], end[i], strides[i], bool(begin_mask & (1 << i)), bool(end_mask & (1 << i))))
    dense.extend((0, 0, 1, True, True) for _ in range(rank - len(dense)))

    spec = SliceSpec([], [], [], [], [])
    for i, (b, e, s, b_masked, e_masked) in enumerate(dense):
        dim = input_dims[i]
        if s == 0:
            raise InvalidArgumentError(f"strides[{i}] must be non-zero, at {node_name}")
        if s < 0:
            raise UnimplementedError(
                f"Negative or zero stride values are not supported for StridedSlice, at {node_name}"
            )
        if dim >= 0:
            b = 0 if b_masked else min(max(b + dim if b < 0 else b, 0), dim)
            e = dim if e_masked else min(max(e + dim if e < 0 else e, 0), dim)
        else:
            b = 0 if b_masked else b
            e = dim if e_masked else e
        spec.begin.append(b)
        spec.end.append(e)
        spec.strides.append(s)
        spec.begin_masked.append(b_masked)
        spec.end_masked.append(e_masked)
    return spec


def convert_strided_slice(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False), ("begin", True), ("end", True), ("strides", True)])
    allow_data_types(params, SHAPE_TYPES)
    for attr in ("new_axis_mask", "shrink_axis_mask"):
        if params.attrs.get_or(attr, AttrType.INT, 0) != 0:
            raise UnimplementedError(f"{attr} is not supported for StridedSlice, at {params.name}")
    begin_mask = params.attrs.get_or("begin_mask", AttrType.INT, 0)
    end_mask = params.attrs.get_or("end_mask", AttrType.INT, 0)
    ellipsis_mask = params.attrs.get_or("ellipsis_mask", AttrType.INT, 0)

    value = params.inputs[0]
    input_dims = [max(-1, value.batch_size)] + list(value.dims)
    begin_raw = _int_list(params.inputs[1].weights)
    end_raw = _int_list(params.inputs[2].weights)
    stride_raw = _int_list(params.inputs[3].weights)
    if not all_lengths_equal([begin_raw, end_raw, stride_raw]):
        raise InvalidArgumentError(f"Length of begin, end, and stride must be equal, at {params.name}")

    spec = canonicalize_strided_slice(
        input_dims, begin_raw, end_raw, stride_raw, begin_mask, end_mask, ellipsis_mask, params.name
    )

    # Mask flags follow the raw entry that produced dense dim 0, or are set
    # when an ellipsis covers it.
    batch_defined = input_dims[0] > 0
    begin_modified = not spec.begin_masked[0] and spec.begin[0] != 0
    stride_modified = spec.strides[0] != 1
    end_modified = not spec.end_masked[0] and (not batch_defined or spec.end[0] != input_dims[0])
    if begin_modified or stride_modified or end_modified:
        raise UnimplementedError(
            f"TensorRT does not allow modifications to the batch dimension, at {params.name}"
        )

    # Backend slices take (begin, size); size rounds up.
    size = [(e - b + s - 1) // s for b, e, s in zip(spec.begin, spec.end, spec.strides)]
    strided_slice_helper(params, value, spec.begin, size, spec.strides)


# =============================================================================
# Split / Unpack
# =============================================================================


def split_helper(
    params: OpConverterParams,
    value: TensorOrWeights,
    tf_axis: int,
    num_splits: int,
    squeeze_after: bool,
) -> None:
    dims = value.dims
    trt_axis = convert_axis(tf_axis, len(dims), params.name)
    if num_splits <= 0:
        raise InvalidArgumentError(f"Number of splits must be positive, got {num_splits}, at {params.name}")
    axis_size = dims[trt_axis]
    if axis_size < 0:
        raise InvalidArgumentError(f"Dimension {tf_axis} must be known to split it, at {params.name}")
    if squeeze_after and axis_size != num_splits:
        raise InvalidArgumentError(
            f"Dimension {tf_axis} has size {axis_size} which is not equal to num of {num_splits}, at {params.name}"
        )
    if axis_size % num_splits != 0:
        raise InvalidArgumentError(
            f"Dimension {tf_axis} of size {axis_size} is not evenly divisble by {num_splits}, at {params.name}"
        )

    split_size = axis_size // num_splits
    begin = [0] * (len(dims) + 1)
    size = [1] + list(dims)
    size[trt_axis + 1] = split_size
    stride = [1] * (len(dims) + 1)
    for i in range(num_splits):
        begin[trt_axis + 1] = i * split_size
        strided_slice_helper(params, value, begin, size, stride)
    if params.validation_only:
        return

    if squeeze_after:
        squeezed = size[1:trt_axis + 1] + size[trt_axis + 2:]
        converter = params.session
        for i, output in enumerate(params.outputs):
            params.outputs[i] = TensorOrWeights.from_tensor(
                converter.prepare_tensor_for_shape(output, squeezed, validation_only=False)
            )


def convert_split(params: OpConverterParams) -> None:
    check_input_kinds(params, [("axis", True), ("value", False)])
    allow_data_types(params, SHAPE_TYPES)
    tf_axis = _scalar_axis(params, params.inputs[0].weights)
    num_split = params.attrs.get("num_split", AttrType.INT)
    split_helper(params, params.inputs[1], tf_axis, num_split, squeeze_after=False)


def convert_unpack(params: OpConverterParams) -> None:
    check_input_kinds(params, [("value", False)])
    allow_data_types(params, SHAPE_TYPES)
    value = params.inputs[0]
    if value.rank == 0:
        raise UnimplementedError(f'Input "value" for Unpack must be rank 2 or greater, at {params.name}')
    tf_axis = params.attrs.get_or("axis", AttrType.INT, 0)
    num = params.attrs.get("num", AttrType.INT)
    split_helper(params, value, tf_axis, num, squeeze_after=True)


# =============================================================================
# Pack / Concat
# =============================================================================


def convert_pack(params: OpConverterParams) -> None:
    inputs = params.inputs
    num_inputs = params.attrs.get("N", AttrType.INT)
    if num_inputs != len(inputs):
        raise InvalidArgumentError(f"Number of inputs for Pack is inconsistent with N attribute, at {params.name}")
    check_input_kinds(params, [(f"values_{i}", False) for i in range(num_inputs)])
    allow_data_types(params, FLOAT_TYPES)
    if num_inputs > 1:
        verify_shapes_match(inputs, masked_dim=-1, node_name=params.name)

    dims = inputs[0].dims
    tf_axis = params.attrs.get_or("axis", AttrType.INT, 0)
    trt_axis = convert_axis(tf_axis, len(dims) + 1, params.name)
    expanded_dims = list(dims)
    expanded_dims.insert(trt_axis, 1)
    for value in inputs:
        check_shape_compatible(value, expanded_dims)
    if params.validation_only:
        return

    converter = params.session
    expanded = [converter.prepare_tensor_for_shape(v, expanded_dims, validation_only=False) for v in inputs]
    if num_inputs == 1:
        params.add_output(expanded[0])
        return
    # The axis index is unchanged by the expansion.
    params.add_output(params.network.add_concatenation(expanded, trt_axis).get_output(0))


def convert_concat(params: OpConverterParams) -> None:
    inputs = params.inputs
    num_inputs = params.attrs.get("N", AttrType.INT)
    if num_inputs != len(inputs) - 1:
        raise InvalidArgumentError(
            f"Number of inputs for ConcatV2 is inconsistent with N attribute, at {params.name}"
        )
    check_input_kinds(params, [(f"values_{i}", False) for i in range(num_inputs)] + [("axis", True)])
    allow_data_types(params, FLOAT_TYPES)
    tf_axis = _scalar_axis(params, inputs[num_inputs].weights)
    trt_axis = convert_axis(tf_axis, inputs[0].rank, params.name)
    verify_shapes_match(inputs[:num_inputs], masked_dim=trt_axis, node_name=params.name)
    if params.validation_only:
        return

    tensors = [v.tensor for v in inputs[:num_inputs]]
    params.add_output(params.network.add_concatenation(tensors, trt_axis).get_output(0))


# =============================================================================
# Gather
# =============================================================================


def convert_gather(params: OpConverterParams) -> None:
    check_input_kinds(params, [("params", False), ("indices", False), ("axis", True)])
    allow_data_types(params, SHAPE_TYPES, dtype_attr_name="Tparams")
    data, indices = params.inputs[0], params.inputs[1]
    tf_axis = _scalar_axis(params, params.inputs[2].weights)
    trt_axis = convert_axis(tf_axis, data.rank, params.name)
    if indices.batch_size != 1:
        raise InvalidArgumentError("Only indices with batch 1 are supported.")
    if indices.dtype != int32:
        raise UnimplementedError(f"Indices for GatherV2 must be int32, at {params.name}")
    output_rank = data.rank + indices.rank + 1
    if output_rank > MAX_DIMS + 1:
        raise InvalidArgumentError(f"Result of gather has dimension greater than {MAX_DIMS + 1}")
    if params.validation_only:
        return

    gathered = params.network.add_gather(data.tensor, indices.tensor, trt_axis).get_output(0)
    # Reinsert the indices' batch dim (always 1) so the result lines up with
    # the source op's output once the implicit batch dim is added back.
    dims = list(gathered.dims)
    dims.insert(trt_axis, 1)
    output = params.session.prepare_tensor_for_shape(
        TensorOrWeights.from_tensor(gathered), dims, validation_only=False
    )
    params.add_output(output)
