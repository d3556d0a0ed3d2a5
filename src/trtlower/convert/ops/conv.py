"""Convolution, transposed convolution and pooling.

Source tensors are NHWC or NCHW; backend windowed layers work on CHW, so NHWC
inputs are transposed in and out around the layer. Asymmetric SAME padding
becomes an explicit padding layer (or a crop, for transposed convolutions).
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

from trtlower.config import PrecisionMode
from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph.node import AttrType
from trtlower.ir.layers import PoolingType
from trtlower.ir.tensor import Tensor

from ..params import OpConverterParams, allow_data_types, check_input_kinds
from ..reorder import convert_fp32_to_fp16, reorder_rsck_to_kcrs
from ..shapes import create_same_padding
from ..weights import ShapedWeights
from .elementwise import FLOAT_TYPES

DATA_FORMATS = ("NHWC", "NCHW")
PADDING_TYPES = ("SAME", "VALID")

_TO_CHW = (0, 3, 1, 2)
_TO_HWC = (0, 2, 3, 1)


class WindowLayout(NamedTuple):
    """Positions of H, W and C in a rank-4 source shape (batch at 0)."""

    h: int
    w: int
    c: int

    @classmethod
    def of(cls, data_format: str) -> WindowLayout:
        if data_format == "NHWC":
            return cls(1, 2, 3)
        return cls(2, 3, 1)


# =============================================================================
# Shared Attribute Parsing
# =============================================================================


def _data_format(params: OpConverterParams) -> str:
    data_format = params.attrs.get_or("data_format", AttrType.STRING, "NHWC")
    if data_format not in DATA_FORMATS:
        raise UnimplementedError(f"Unsupported data format {data_format}, at {params.name}")
    return data_format


def _padding_type(params: OpConverterParams) -> str:
    padding = params.attrs.get_or("padding", AttrType.STRING, "")
    if padding not in PADDING_TYPES:
        raise UnimplementedError(f"Padding type {padding!r} is not supported, at {params.name}")
    return padding


def _window_attr(
    params: OpConverterParams,
    key: str,
    layout: WindowLayout,
    default: Sequence[int] | None = None,
) -> tuple[int, int]:
    """Read a 4-entry window attribute, returning its (h, w) pair."""
    if default is None and key not in params.attrs:
        raise InvalidArgumentError(f"Attribute {key} is required for {params.op}, at {params.name}")
    values = list(params.attrs.get_or(key, AttrType.LIST_INT, default))
    if len(values) != 4:
        raise InvalidArgumentError(f"Convolution {key} field must specify 4 dimensions, at {params.name}")
    if values[0] != 1 or values[layout.c] != 1:
        raise UnimplementedError(
            f"{key} must be 1 for batch and channel dimensions, at {params.name}"
        )
    return values[layout.h], values[layout.w]


def _is_asymmetric(padding: Sequence[tuple[int, int]]) -> bool:
    return any(before != after for before, after in padding)


def _window_output(size: int, kernel: int, stride: int, pad_total: int) -> int:
    return (size + pad_total - kernel) // stride + 1


# =============================================================================
# Convolution
# =============================================================================


def conv2d_helper(params: OpConverterParams, group: int, is_backprop: bool) -> None:
    """Lower Conv2D (group=1), depthwise (group=0) or Conv2DBackpropInput.

    A `group` of 0 means one group per input channel.
    """
    if is_backprop:
        check_input_kinds(params, [("input_sizes", True), ("filter", True), ("out_backprop", False)])
        value, filter_value = params.inputs[2], params.inputs[1]
    else:
        check_input_kinds(params, [("input", False), ("filter", True)])
        value, filter_value = params.inputs
    allow_data_types(params, FLOAT_TYPES)

    weights: ShapedWeights = filter_value.weights
    if weights.rank != 4:
        raise InvalidArgumentError(f"Conv2D expects kernel of dimension 4, at {params.name}")
    data_format = _data_format(params)
    layout = WindowLayout.of(data_format)
    if value.rank != 3:
        raise InvalidArgumentError(f"Conv2D expects input of rank 4 (including batch), at {params.name}")

    dilation = _window_attr(params, "dilations", layout, default=(1, 1, 1, 1))
    if is_backprop and dilation != (1, 1):
        raise UnimplementedError(
            f"Dilation with Conv2DBackpropInput (conv2d_transpose) is not supported, at {params.name}"
        )
    stride = _window_attr(params, "strides", layout)
    padding_type = _padding_type(params)

    dims = value.dims
    channels = dims[layout.c - 1]
    num_groups = group
    if group == 0:
        if channels < 0:
            raise InvalidArgumentError(f"Depthwise convolution requires a known channel dimension, at {params.name}")
        num_groups = channels
    kernel_channels = weights.dims[3] if is_backprop else weights.dims[2]
    if channels >= 0 and kernel_channels != channels:
        raise InvalidArgumentError(
            f"Conv2D input has {channels} channels but the kernel expects {kernel_channels}, at {params.name}"
        )

    kernel_size = (weights.dims[0], weights.dims[1])
    effective_kernel = tuple((k - 1) * d + 1 for k, d in zip(kernel_size, dilation))
    input_hw = (dims[layout.h - 1], dims[layout.w - 1])
    if is_backprop:
        input_sizes = params.inputs[0].weights
        if input_sizes.count() != 4:
            raise InvalidArgumentError(f"Conv2DBackpropInput input_sizes must have 4 entries, at {params.name}")
        sizes = input_sizes.to_list()
        window_hw = (int(sizes[layout.h]), int(sizes[layout.w]))
    else:
        window_hw = input_hw

    padding = [(0, 0), (0, 0)]
    static = all(d >= 0 for d in window_hw)
    if padding_type == "SAME" and static:
        padding = create_same_padding(stride, effective_kernel, window_hw)
    if not is_backprop and all(d >= 0 for d in input_hw):
        for size, k, s, (before, after) in zip(input_hw, effective_kernel, stride, padding):
            if _window_output(size, k, s, before + after) <= 0:
                raise InvalidArgumentError(
                    f"Conv2D kernel {kernel_size} does not fit input of dims {dims}, at {params.name}"
                )
    if params.validation_only:
        return

    converter = params.session
    network = params.network
    tensor = value.tensor
    if data_format == "NHWC":
        tensor = converter.transpose_tensor(tensor, _TO_CHW)

    if params.precision_mode is PrecisionMode.FP16:
        weights = convert_fp32_to_fp16(params.weight_store, weights)
    kernel = params.weight_store.get_temp_weights_like(weights, tag=f"{params.name}/kernel")
    reorder_rsck_to_kcrs(weights, kernel, num_groups)
    bias = ShapedWeights.empty(weights.dtype).get_trt_weights()
    output_axis = 1 if is_backprop else 0
    noutput = kernel.dims[output_axis] * num_groups

    asymmetric = _is_asymmetric(padding)
    symmetric = (0, 0) if asymmetric else (padding[0][0], padding[1][0])
    pre = (padding[0][0], padding[1][0])
    post = (padding[0][1], padding[1][1])

    if is_backprop:
        layer = network.add_deconvolution(
            tensor, noutput, kernel_size, kernel.get_trt_weights(), bias,
            stride=stride, padding=symmetric, num_groups=num_groups,
        )
        output = layer.get_output(0)
        if asymmetric:
            # Transposed SAME padding trims the output instead of padding the input.
            cropped = network.add_padding(output, (-pre[0], -pre[1]), (-post[0], -post[1])).get_output(0)
            converter.mark_quantization_ranges_as_inferrable(output, cropped)
            output = cropped
    else:
        if asymmetric:
            padded = network.add_padding(tensor, pre, post).get_output(0)
            converter.mark_quantization_ranges_as_inferrable(tensor, padded)
            tensor = padded
        layer = network.add_convolution(
            tensor, noutput, kernel_size, kernel.get_trt_weights(), bias,
            stride=stride, padding=symmetric, dilation=dilation, num_groups=num_groups,
        )
        output = layer.get_output(0)

    if data_format == "NHWC":
        output = converter.transpose_tensor(output, _TO_HWC)
    params.add_output(output)


def convert_conv2d(params: OpConverterParams) -> None:
    conv2d_helper(params, group=1, is_backprop=False)


def convert_conv2d_depthwise(params: OpConverterParams) -> None:
    conv2d_helper(params, group=0, is_backprop=False)


def convert_conv2d_backprop_input(params: OpConverterParams) -> None:
    conv2d_helper(params, group=1, is_backprop=True)


# =============================================================================
# Pooling
# =============================================================================


POOLING_TYPES = {
    "MaxPool": PoolingType.MAX,
    "AvgPool": PoolingType.AVERAGE,
}


def convert_pool(params: OpConverterParams) -> None:
    check_input_kinds(params, [("input", False)])
    allow_data_types(params, FLOAT_TYPES)
    pool_type = POOLING_TYPES.get(params.op)
    if pool_type is None:
        raise UnimplementedError(f"Unsupported pooling type: {params.op}, at {params.name}")
    padding_type = _padding_type(params)
    data_format = _data_format(params)
    layout = WindowLayout.of(data_format)
    value = params.inputs[0]
    if value.rank != 3:
        raise InvalidArgumentError(f"{params.op} expects input of rank 4 (including batch), at {params.name}")
    stride = _window_attr(params, "strides", layout)
    ksize = _window_attr(params, "ksize", layout)

    dims = value.dims
    input_hw = (dims[layout.h - 1], dims[layout.w - 1])
    padding = [(0, 0), (0, 0)]
    if all(d >= 0 for d in input_hw):
        if padding_type == "SAME":
            padding = create_same_padding(stride, ksize, input_hw)
        for size, k, s, (before, after) in zip(input_hw, ksize, stride, padding):
            if _window_output(size, k, s, before + after) <= 0:
                raise InvalidArgumentError(
                    f"{params.op} window {ksize} does not fit input of dims {dims}, at {params.name}"
                )
    if params.validation_only:
        return

    converter = params.session
    network = params.network
    tensor: Tensor = value.tensor
    if data_format == "NHWC":
        tensor = converter.transpose_tensor(tensor, _TO_CHW)

    if _is_asymmetric(padding):
        padded = network.add_padding(
            tensor, (padding[0][0], padding[1][0]), (padding[0][1], padding[1][1])
        ).get_output(0)
        converter.mark_quantization_ranges_as_inferrable(tensor, padded)
        tensor = padded
        symmetric = (0, 0)
    else:
        symmetric = (padding[0][0], padding[1][0])

    output = network.add_pooling(tensor, pool_type, ksize, stride=stride, padding=symmetric).get_output(0)
    # Max pooling never leaves the input range.
    if pool_type is PoolingType.MAX:
        converter.mark_quantization_ranges_as_inferrable(tensor, output)

    if data_format == "NHWC":
        output = converter.transpose_tensor(output, _TO_HWC)
    params.add_output(output)
