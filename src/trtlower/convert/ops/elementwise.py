from __future__ import annotations

import math

from trtlower.config import PrecisionMode
from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph.dtypes import DataType
from trtlower.graph.node import AttrType
from trtlower.ir.layers import ElementWiseOperation, ScaleMode, UnaryOperation

from ..params import OpConverterParams, allow_data_types, check_input_kinds, create_broadcastable_scalar_constant
from ..reorder import convert_fp32_to_fp16
from ..shapes import check_broadcast_feasible, compute_broadcast_shapes
from ..values import TensorOrWeights
from ..weights import ShapedWeights

FLOAT_TYPES = (DataType.DT_FLOAT, DataType.DT_HALF)

BINARY_OPERATIONS = {
    "Add": ElementWiseOperation.SUM,
    "Mul": ElementWiseOperation.PROD,
    "Sub": ElementWiseOperation.SUB,
    "Div": ElementWiseOperation.DIV,
    "RealDiv": ElementWiseOperation.DIV,
    "Minimum": ElementWiseOperation.MIN,
    "Maximum": ElementWiseOperation.MAX,
    "Pow": ElementWiseOperation.POW,
}

UNARY_OPERATIONS = {
    "Neg": UnaryOperation.NEG,
    "Exp": UnaryOperation.EXP,
    "Log": UnaryOperation.LOG,
    "Sqrt": UnaryOperation.SQRT,
    "Abs": UnaryOperation.ABS,
    "Reciprocal": UnaryOperation.RECIP,
    "Sin": UnaryOperation.SIN,
    "Cos": UnaryOperation.COS,
    "Tan": UnaryOperation.TAN,
    "Sinh": UnaryOperation.SINH,
    "Cosh": UnaryOperation.COSH,
    "Asin": UnaryOperation.ASIN,
    "Acos": UnaryOperation.ACOS,
    "Atan": UnaryOperation.ATAN,
    "Asinh": UnaryOperation.ASINH,
    "Acosh": UnaryOperation.ACOSH,
    "Atanh": UnaryOperation.ATANH,
    "Ceil": UnaryOperation.CEIL,
    "Floor": UnaryOperation.FLOOR,
}

# Output ranges that hold regardless of the input.
_UNARY_FIXED_RANGES = {
    "Sin": (-1.0, 1.0),
    "Cos": (-1.0, 1.0),
    "Asin": (-math.pi / 2, math.pi / 2),
    "Atan": (-math.pi / 2, math.pi / 2),
    "Acos": (0.0, math.pi),
}

# Symmetric quantization: same range as the input.
_UNARY_INFERRABLE = ("Neg", "Abs")


# =============================================================================
# Binary
# =============================================================================


def binary_tensor_op_tensor(params: OpConverterParams, lhs: TensorOrWeights, rhs: TensorOrWeights) -> None:
    operation = BINARY_OPERATIONS.get(params.op)
    if operation is None:
        raise UnimplementedError(f"Binary op {params.op} not supported at: {params.name}")
    if lhs.dtype != rhs.dtype:
        raise InvalidArgumentError(
            f"Binary op {params.op} got operands of different types {lhs.dtype} and {rhs.dtype}, at {params.name}"
        )
    try:
        l_dims, r_dims = compute_broadcast_shapes(lhs, rhs)
        check_broadcast_feasible(l_dims, r_dims)
    except InvalidArgumentError as exc:
        raise InvalidArgumentError(f"Unsupported binary op broadcast scheme for op {params.name}: {exc}") from exc
    if params.validation_only:
        return

    converter = params.session
    # Materializes constants and records quantization edges for reshapes.
    tensor_l = converter.prepare_tensor_for_shape(lhs, l_dims, validation_only=False)
    tensor_r = converter.prepare_tensor_for_shape(rhs, r_dims, validation_only=False)
    layer = params.network.add_elementwise(tensor_l, tensor_r, operation)
    params.add_output(layer.get_output(0))


def convert_binary(params: OpConverterParams) -> None:
    inputs = params.inputs
    if len(inputs) != 2:
        raise InvalidArgumentError(f"Binary ops require two inputs, at {params.name}")
    if inputs[0].is_weights and inputs[1].is_weights:
        raise UnimplementedError(
            f"Constant folding is left to the source framework, binary op received both inputs as constant at: {params.name}"
        )
    binary_tensor_op_tensor(params, inputs[0], inputs[1])


# =============================================================================
# Unary
# =============================================================================


def convert_unary(params: OpConverterParams) -> None:
    check_input_kinds(params, [("x", False)])
    allow_data_types(params, FLOAT_TYPES)
    operation = UNARY_OPERATIONS.get(params.op)
    if operation is None:
        raise UnimplementedError(f"Unary op: {params.op} not supported at: {params.name}")
    if params.validation_only:
        return

    tensor = params.inputs[0].tensor
    output = params.network.add_unary(tensor, operation).get_output(0)
    converter = params.session
    if params.op in _UNARY_FIXED_RANGES:
        converter.provide_quantization_range(output, *_UNARY_FIXED_RANGES[params.op])
    elif params.op in _UNARY_INFERRABLE:
        converter.mark_quantization_ranges_as_inferrable(tensor, output)
    params.add_output(output)


def convert_rsqrt(params: OpConverterParams) -> None:
    check_input_kinds(params, [("x", False)])
    allow_data_types(params, FLOAT_TYPES)
    # sqrt(x) would need its own range.
    if params.precision_mode is PrecisionMode.INT8 and not params.use_calibration:
        raise UnimplementedError(
            "Intermediate quantization range cannot be determined without calibration for Rsqrt, "
            f"consider replacing with Sqrt -> FakeQuant -> Reciprocal ops, at {params.name}"
        )
    if params.validation_only:
        return

    network = params.network
    sqrt = network.add_unary(params.inputs[0].tensor, UnaryOperation.SQRT).get_output(0)
    recip = network.add_unary(sqrt, UnaryOperation.RECIP).get_output(0)
    params.add_output(recip)


def convert_square(params: OpConverterParams) -> None:
    check_input_kinds(params, [("x", False)])
    allow_data_types(params, FLOAT_TYPES)
    if params.validation_only:
        return

    x = params.inputs[0]
    two = create_broadcastable_scalar_constant(params, 2.0, x.dims)
    layer = params.network.add_elementwise(x.tensor, two, ElementWiseOperation.POW)
    params.add_output(layer.get_output(0))


# =============================================================================
# BiasAdd
# =============================================================================


def convert_bias_add(params: OpConverterParams) -> None:
    check_input_kinds(params, [("value", False), ("bias", True)])
    allow_data_types(params, FLOAT_TYPES)
    value, bias = params.inputs
    original_dims = value.dims
    rank = len(original_dims)
    data_format = params.attrs.get_or("data_format", AttrType.STRING, "NHWC")
    if data_format not in ("NHWC", "NCHW"):
        raise UnimplementedError(f"Unsupported data format {data_format} for BiasAdd, at {params.name}")
    if rank < 1:
        raise InvalidArgumentError(f"BiasAdd requires an input of rank >= 2, at {params.name}")
    channel_index = rank - 1 if data_format == "NHWC" else 0
    channels = original_dims[channel_index]
    if bias.weights.rank != 1 or (bias.dims[0] != 1 and channels >= 0 and bias.dims[0] != channels):
        raise InvalidArgumentError(
            f"Bias of dims {bias.dims} does not match {channels} channels, at {params.name}"
        )
    if params.validation_only:
        return

    converter = params.session
    network = params.network
    tensor = value.tensor
    permutation = None
    if channel_index != 0:
        order = list(range(rank))
        order[0], order[channel_index] = channel_index, 0
        permutation = tuple(order)

    # The scale layer works on CHW tensors.
    reshaped = channel_index != 0 or rank != 3
    if reshaped:
        reshape_dims = (0, 0 if rank >= 2 else 1, -1 if rank >= 3 else 1)
        shuffled = network.add_shuffle(tensor, first_transpose=permutation, reshape_dims=reshape_dims).get_output(0)
        converter.mark_quantization_ranges_as_inferrable(tensor, shuffled)
        tensor = shuffled

    weights: ShapedWeights = bias.weights
    if params.precision_mode is PrecisionMode.FP16:
        weights = convert_fp32_to_fp16(params.weight_store, weights)
    mode = ScaleMode.UNIFORM if weights.dims[0] == 1 else ScaleMode.CHANNEL
    empty = ShapedWeights.empty(weights.dtype).get_trt_weights()
    output = network.add_scale(tensor, mode, weights.get_trt_weights(), empty, empty).get_output(0)

    if reshaped:
        restore = list(original_dims)
        if channel_index != 0:
            restore[channel_index], restore[0] = original_dims[0], original_dims[channel_index]
        restored = network.add_shuffle(output, reshape_dims=restore, second_transpose=permutation).get_output(0)
        converter.mark_quantization_ranges_as_inferrable(output, restored)
        output = restored
    params.add_output(output)
