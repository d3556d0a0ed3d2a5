from __future__ import annotations

from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph.dtypes import DataType
from trtlower.graph.node import AttrType
from trtlower.ir.layers import ReduceOperation, TopKOperation

from ..params import OpConverterParams, allow_data_types, check_input_kinds
from ..shapes import convert_axis
from ..values import TensorOrWeights
from .elementwise import FLOAT_TYPES

REDUCE_OPERATIONS = {
    "Sum": ReduceOperation.SUM,
    "Prod": ReduceOperation.PROD,
    "Max": ReduceOperation.MAX,
    "Min": ReduceOperation.MIN,
    "Mean": ReduceOperation.AVG,
}

ARG_OPERATIONS = {
    "ArgMin": TopKOperation.MIN,
    "ArgMax": TopKOperation.MAX,
}


def convert_reduce(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False), ("axis", True)])
    allow_data_types(params, FLOAT_TYPES)
    value = params.inputs[0]
    tf_axes = [int(a) for a in params.inputs[1].weights.to_list()]
    if params.attrs.get_or("Tidx", AttrType.TYPE, DataType.DT_INT32) is not DataType.DT_INT32:
        raise UnimplementedError("Tidx supports only DT_INT32")
    if not tf_axes:
        raise InvalidArgumentError(f"TRT cannot support reduce on all (batch) dimensions, at {params.name}")

    axes = 0
    for tf_axis in tf_axes:
        axes |= 1 << convert_axis(tf_axis, value.rank, params.name)
    operation = REDUCE_OPERATIONS.get(params.op)
    if operation is None:
        raise UnimplementedError(f"Op not supported {params.op}, at {params.name}")
    if params.validation_only:
        return

    keep_dims = params.attrs.get_or("keep_dims", AttrType.BOOL, False)
    layer = params.network.add_reduce(value.tensor, operation, axes, keep_dims)
    params.add_output(layer.get_output(0))


def convert_arg_min_max(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False), ("dimension", True)])
    allow_data_types(params, FLOAT_TYPES)
    output_type = params.attrs.get_or("output_type", AttrType.TYPE, DataType.DT_INT64)
    # The backend has no int64 tensors.
    if output_type is not DataType.DT_INT32:
        raise UnimplementedError(f"Output type {output_type.name} is not supported, at {params.name}")
    value = params.inputs[0]
    dimension = params.inputs[1].weights.to_list()
    if len(dimension) != 1:
        raise InvalidArgumentError(f"Dimension for {params.op} must be a scalar, at {params.name}")
    trt_axis = convert_axis(int(dimension[0]), value.rank, params.name)
    operation = ARG_OPERATIONS.get(params.op)
    if operation is None:
        raise InvalidArgumentError("Unsupported ArgMin/Max operation")
    if params.validation_only:
        return

    # TopK with k=1; only the indices output is kept, then squeezed.
    layer = params.network.add_topk(value.tensor, operation, 1, 1 << trt_axis)
    indices = layer.get_output(1)
    dims = list(value.dims)
    del dims[trt_axis]
    output = params.session.prepare_tensor_for_shape(
        TensorOrWeights.from_tensor(indices), dims, validation_only=False
    )
    params.add_output(output)


def convert_topk(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False), ("k", True)])
    allow_data_types(params, FLOAT_TYPES)
    value = params.inputs[0]
    if value.rank == 0:
        raise InvalidArgumentError(f"TensorRT TopK cannot apply on batch dimension, at {params.name}")
    k_weights = params.inputs[1].weights
    if k_weights.count() != 1:
        raise InvalidArgumentError(f"k value of TopK should be a scalar, at {params.name}")
    k = int(k_weights.to_list()[0])
    last = value.dims[-1]
    if k <= 0 or (last >= 0 and k > last):
        raise InvalidArgumentError(f"k value of TopK must be in [1, {last}], got {k}, at {params.name}")
    if params.validation_only:
        return

    # Outputs are always sorted, so the "sorted" attribute needs no handling.
    layer = params.network.add_topk(value.tensor, TopKOperation.MAX, k, 1 << (value.rank - 1))
    params.add_output(layer.get_output(0))
    params.add_output(layer.get_output(1))


def convert_softmax(params: OpConverterParams) -> None:
    check_input_kinds(params, [("logits", False)])
    allow_data_types(params, FLOAT_TYPES)
    value = params.inputs[0]
    if value.rank == 0:
        raise InvalidArgumentError(f"TensorRT Softmax cannot apply on batch dimension, at {params.name}")
    if params.validation_only:
        return

    # Softmax runs over the last dim.
    output = params.network.add_softmax(value.tensor, 1 << (value.rank - 1)).get_output(0)
    params.session.provide_quantization_range(output, 0.0, 1.0)
    params.add_output(output)
