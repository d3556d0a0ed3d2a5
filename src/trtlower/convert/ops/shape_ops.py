from __future__ import annotations

import numpy as np

from trtlower.errors import InternalError, InvalidArgumentError, UnimplementedError
from trtlower.graph.dtypes import DataType
from trtlower.graph.node import AttrType

from ..params import OpConverterParams, allow_data_types, check_input_kinds
from ..shapes import are_dims_static_with_same_size, check_shape_compatible, convert_axis, tf_dtype_to_trt
from ..values import TensorOrWeights
from ..weights import ShapedWeights
from .elementwise import FLOAT_TYPES

SHAPE_TYPES = (DataType.DT_FLOAT, DataType.DT_HALF, DataType.DT_INT32)

# Narrow integer constants are widened; the backend only has int32.
_WIDENED_TO_INT32 = (DataType.DT_INT8, DataType.DT_UINT8, DataType.DT_INT16, DataType.DT_UINT16)


def _int_list(weights: ShapedWeights) -> list[int]:
    return [int(v) for v in weights.to_list()]


# =============================================================================
# Const / Identity
# =============================================================================


def convert_const(params: OpConverterParams) -> None:
    if params.inputs:
        raise InvalidArgumentError(f"Constant node is expected to have empty input list: {params.name}")
    array = params.attrs.get("value", AttrType.TENSOR)
    if not isinstance(array, np.ndarray):
        raise InternalError(f"Cannot parse weight tensor proto: {params.name}")
    dtype = params.attrs.get("dtype", AttrType.TYPE)
    try:
        tensor_dtype = DataType.from_numpy(array.dtype)
    except ValueError:
        raise InvalidArgumentError(f"Unsupported data type {array.dtype} for constant {params.name}") from None
    if dtype is not tensor_dtype:
        raise InvalidArgumentError(
            f"DataType mismatch between attr ({dtype.name}) and tensor ({tensor_dtype.name})"
        )

    converted = DataType.DT_INT32 if dtype in _WIDENED_TO_INT32 else dtype
    trt_dtype = tf_dtype_to_trt(converted)
    if array.size == 0:
        weights = ShapedWeights.empty(trt_dtype)
    else:
        # Scalars become a 1-D weight with one entry.
        dims = array.shape if array.ndim > 0 else (array.size,)
        weights = params.weight_store.copy_from_array(array, trt_dtype, dims, tag=params.name)
    # Constants are produced in both modes; validation reads them as weights.
    params.add_output(TensorOrWeights.from_weights(weights))


def convert_identity(params: OpConverterParams) -> None:
    if params.validation_only:
        return
    params.add_output(params.inputs[0])


# =============================================================================
# Transpose / Reshape
# =============================================================================


def convert_transpose(params: OpConverterParams) -> None:
    check_input_kinds(params, [("x", False), ("perm", True)])
    allow_data_types(params, SHAPE_TYPES)
    perm = _int_list(params.inputs[1].weights)
    value = params.inputs[0]
    if len(perm) - 1 != value.rank:
        raise InvalidArgumentError("Rank of perm for transpose does not match with that of the input.")
    if perm[0] != 0:
        raise UnimplementedError("Transpose at batch dimension is not supported.")
    if sorted(perm) != list(range(len(perm))):
        raise InvalidArgumentError(f"Transpose perm {perm} is not a permutation, at {params.name}")
    if params.validation_only:
        return

    params.add_output(params.session.transpose_tensor(value.tensor, perm))


def _reshape_may_change_batch_dim(input_batch: int, input_dims, reshape_batch: int, reshape_dims) -> bool:
    if input_batch > 0:
        if reshape_batch == -1:
            # The remaining dims must then pin the batch dim down.
            return not are_dims_static_with_same_size(input_dims, reshape_dims, is_tensor=True)
        return reshape_batch != input_batch
    return not are_dims_static_with_same_size(input_dims, reshape_dims, is_tensor=True)


def convert_reshape(params: OpConverterParams) -> None:
    check_input_kinds(params, [("tensor", False), ("shape", True)])
    allow_data_types(params, SHAPE_TYPES)
    value = params.inputs[0]
    shape = params.inputs[1].weights
    if shape.count() == 0:
        raise UnimplementedError(f"Reshape to shape=[] is not supported, at {params.name}")

    target = _int_list(shape)
    reshape_batch, reshape_dims = target[0], tuple(target[1:])
    if _reshape_may_change_batch_dim(value.batch_size, value.dims, reshape_batch, reshape_dims):
        raise UnimplementedError(f"Reshape on batch dimension is not supported, at {params.name}")

    check_shape_compatible(value, reshape_dims)
    if params.validation_only:
        return

    params.add_output(params.session.prepare_tensor_for_shape(value, reshape_dims, validation_only=False))


def convert_expand_dims(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False), ("axis", True)])
    allow_data_types(params, SHAPE_TYPES)
    value = params.inputs[0]
    axis = _int_list(params.inputs[1].weights)
    if len(axis) != 1:
        raise InvalidArgumentError(f"ExpandDims axis must be a scalar, at {params.name}")
    # One extra rank so the new axis may go at the end.
    trt_axis = convert_axis(axis[0], value.rank + 1, params.name)
    if params.validation_only:
        return

    dims = list(value.dims)
    dims.insert(trt_axis, 1)
    params.add_output(params.session.prepare_tensor_for_shape(value, dims, validation_only=False))


def convert_squeeze(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False)])
    allow_data_types(params, SHAPE_TYPES)
    value = params.inputs[0]
    squeeze_dims = params.attrs.get_or("squeeze_dims", AttrType.LIST_INT, ())
    if not squeeze_dims:
        raise UnimplementedError(f"Squeeze is only implemented for explicit dims, at {params.name}")

    dims = list(value.dims)
    for tf_axis in squeeze_dims:
        trt_axis = convert_axis(tf_axis, value.rank, params.name)
        # Already-squeezed axes are marked 0 and fail here too.
        if dims[trt_axis] != 1:
            raise InvalidArgumentError(
                f"Dimension {tf_axis} with size {dims[trt_axis]} cannot be squeezed because it must be size 1, "
                f"at {params.name}"
            )
        dims[trt_axis] = 0
    if params.validation_only:
        return

    new_dims = [d for d in dims if d != 0]
    params.add_output(params.session.prepare_tensor_for_shape(value, new_dims, validation_only=False))


# =============================================================================
# Pad
# =============================================================================


def convert_pad(params: OpConverterParams) -> None:
    check_input_kinds(params, [("tensor", False), ("paddings", True)])
    allow_data_types(params, FLOAT_TYPES)
    value = params.inputs[0]
    pads = params.inputs[1].weights
    nb_dims = value.rank + 1
    if pads.rank != 2 or pads.dims[0] != nb_dims or pads.dims[1] != 2:
        raise InvalidArgumentError(f"Pad only supports explicit padding on 4 dimensional tensor, at {params.name}")
    if value.rank != 3:
        raise InvalidArgumentError(f"Pad only supports 4 dimensional tensors, at {params.name}")
    padding_type = params.attrs.get_or("Tpaddings", AttrType.TYPE, DataType.DT_INT32)
    if padding_type is not DataType.DT_INT32:
        raise UnimplementedError("Tpaddings supports only DT_INT32")

    pad_data = _int_list(pads)
    pad_index = [i for i in range(nb_dims) if pad_data[2 * i] != 0 or pad_data[2 * i + 1] != 0]
    if len(pad_index) > 2:
        raise InvalidArgumentError("Padding layer does not support padding on > 2")
    if pad_index and pad_index[0] == 0:
        raise InvalidArgumentError("Padding layer does not support padding on batch dimension")
    if pad_index == [1, 3]:
        raise UnimplementedError("Padding layer does not support padding on dimension 1 and 3 yet")
    if params.validation_only:
        return

    if not pad_index:
        params.add_output(value)
        return

    converter = params.session
    tensor = value.tensor
    # The padding layer only reaches the last two dims; swap dim 1 into place.
    swapped = pad_index[0] == 1
    permuted_index = list(pad_index)
    if swapped:
        tensor = converter.transpose_tensor(tensor, (0, 3, 2, 1))
        permuted_index[0] = 3

    pre, post = [0, 0], [0, 0]
    for index, permuted in zip(pad_index, permuted_index):
        pre[permuted - 2] = pad_data[2 * index]
        post[permuted - 2] = pad_data[2 * index + 1]

    output = params.network.add_padding(tensor, tuple(pre), tuple(post)).get_output(0)
    converter.mark_quantization_ranges_as_inferrable(tensor, output)
    if swapped:
        output = converter.transpose_tensor(output, (0, 3, 2, 1))
    params.add_output(output)
