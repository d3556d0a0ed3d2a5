from __future__ import annotations

from trtlower.errors import UnimplementedError
from trtlower.graph.node import AttrType
from trtlower.ir.layers import ActivationType, ElementWiseOperation

from ..params import OpConverterParams, allow_data_types, check_input_kinds, create_broadcastable_scalar_constant
from .elementwise import FLOAT_TYPES

ACTIVATION_TYPES = {
    "Relu": ActivationType.RELU,
    "Sigmoid": ActivationType.SIGMOID,
    "Tanh": ActivationType.TANH,
}

_ACTIVATION_RANGES = {
    "Sigmoid": (0.0, 1.0),
    "Tanh": (-1.0, 1.0),
}


def convert_activation(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False)])
    allow_data_types(params, FLOAT_TYPES)
    activation = ACTIVATION_TYPES.get(params.op)
    if activation is None:
        raise UnimplementedError(f"Activation op: {params.op} not supported at: {params.name}")
    if params.validation_only:
        return

    output = params.network.add_activation(params.inputs[0].tensor, activation).get_output(0)
    if params.op in _ACTIVATION_RANGES:
        params.session.provide_quantization_range(output, *_ACTIVATION_RANGES[params.op])
    params.add_output(output)


def convert_leaky_relu(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False)])
    allow_data_types(params, FLOAT_TYPES)
    alpha = params.attrs.get_or("alpha", AttrType.FLOAT, 0.2)
    if alpha < 0.0 or alpha > 1.0:
        raise UnimplementedError(f"Alpha value for LeakyRelu must be between 0 and 1, at {params.name}")
    if params.validation_only:
        return

    # max(x, alpha * x)
    network = params.network
    tensor = params.inputs[0].tensor
    alpha_tensor = create_broadcastable_scalar_constant(params, alpha, tensor.dims)
    scaled = network.add_elementwise(tensor, alpha_tensor, ElementWiseOperation.PROD).get_output(0)
    output = network.add_elementwise(tensor, scaled, ElementWiseOperation.MAX).get_output(0)
    params.session.mark_quantization_ranges_as_inferrable(output, scaled)
    params.add_output(output)


def convert_relu6(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False)])
    allow_data_types(params, FLOAT_TYPES)
    if params.validation_only:
        return

    # min(relu(x), 6); the fixed [0, 6] range keeps INT8 scales tight.
    converter = params.session
    network = params.network
    relu = network.add_activation(params.inputs[0].tensor, ActivationType.RELU).get_output(0)
    converter.provide_quantization_range(relu, 0.0, 6.0)
    six = create_broadcastable_scalar_constant(params, 6.0, relu.dims)
    output = network.add_elementwise(relu, six, ElementWiseOperation.MIN).get_output(0)
    converter.provide_quantization_range(output, 0.0, 6.0)
    params.add_output(output)
