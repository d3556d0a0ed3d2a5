from __future__ import annotations

import logging

import numpy as np

from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph.node import AttrType
from trtlower.ir.dtypes import float16, float32
from trtlower.ir.layers import ScaleMode

from ..params import OpConverterParams, allow_data_types, check_input_kinds
from ..weights import ShapedWeights
from .elementwise import FLOAT_TYPES

logger = logging.getLogger(__name__)


def convert_fused_batch_norm(params: OpConverterParams) -> None:
    """Fold inference-mode batch norm into a single scale layer.

    scale' = scale / sqrt(variance + epsilon)
    offset' = offset - mean * scale'
    """
    check_input_kinds(
        params, [("x", False), ("scale", True), ("offset", True), ("mean", True), ("variance", True)]
    )
    allow_data_types(params, FLOAT_TYPES)
    epsilon = params.attrs.get_or("epsilon", AttrType.FLOAT, 1e-4)
    data_format = params.attrs.get_or("data_format", AttrType.STRING, "NHWC")
    if data_format != "NCHW":
        raise UnimplementedError(f"{params.op} only supports data_format=NCHW, at {params.name}")
    if params.attrs.get_or("is_training", AttrType.BOOL, True):
        # A very common mistake; make it visible beyond debug logs.
        logger.warning(
            f"{params.op} only supports is_training=false. If you are using Keras, please call "
            f"keras.backend.set_learning_phase(0) before constructing your model. At {params.name}"
        )
        raise UnimplementedError(f"{params.op} only supports is_training=false, at {params.name}")

    value = params.inputs[0]
    parameters: list[ShapedWeights] = [v.weights for v in params.inputs[1:]]
    parameter_type = parameters[0].dtype
    if parameter_type not in (float32, float16):
        raise UnimplementedError(
            f"Only float32 or float16 weight data type is supported, for node {params.name} got {parameter_type}"
        )
    if any(w.dtype != parameter_type for w in parameters):
        raise UnimplementedError(f"Inconsistent parameter type for batchnorm is not supported, at: {params.name}")

    nweight = max(w.count() for w in parameters)
    shape_weights = next(w for w in parameters if w.count() == nweight)
    if any(w.count() not in (nweight, 1) for w in parameters):
        raise InvalidArgumentError(f"Inconsistent batchnorm parameter count, at: {params.name}")
    channels = value.dims[0] if value.rank else -1
    if nweight != 1 and channels >= 0 and nweight != channels:
        raise InvalidArgumentError(
            f"Batchnorm has {nweight} parameters for {channels} channels, at: {params.name}"
        )
    if params.validation_only:
        return

    # Math in float32; results are stored back in the parameter type.
    scale, offset, mean, variance = (
        np.broadcast_to(w.values[: w.count()].astype(np.float32), (nweight,)) for w in parameters
    )
    combined_scale = scale / np.sqrt(variance + np.float32(epsilon))
    combined_offset = offset - mean * combined_scale

    store = params.weight_store
    scale_weights = store.get_temp_weights_like(shape_weights, tag=f"{params.name}/scale")
    offset_weights = store.get_temp_weights_like(shape_weights, tag=f"{params.name}/offset")
    scale_weights.values[:nweight] = combined_scale.astype(parameter_type.numpy)
    offset_weights.values[:nweight] = combined_offset.astype(parameter_type.numpy)

    mode = ScaleMode.UNIFORM if nweight == 1 else ScaleMode.CHANNEL
    power = ShapedWeights.empty(parameter_type).get_trt_weights()
    layer = params.network.add_scale(
        value.tensor, mode, offset_weights.get_trt_weights(), scale_weights.get_trt_weights(), power
    )
    params.add_output(layer.get_output(0))
