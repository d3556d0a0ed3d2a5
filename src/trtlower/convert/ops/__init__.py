"""Op converters and the static op type -> converter table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .activation import ACTIVATION_TYPES, convert_activation, convert_leaky_relu, convert_relu6
from .array_ops import (
    convert_concat,
    convert_gather,
    convert_pack,
    convert_slice,
    convert_split,
    convert_strided_slice,
    convert_unpack,
)
from .conv import (
    POOLING_TYPES,
    convert_conv2d,
    convert_conv2d_backprop_input,
    convert_conv2d_depthwise,
    convert_pool,
)
from .elementwise import (
    BINARY_OPERATIONS,
    UNARY_OPERATIONS,
    convert_bias_add,
    convert_binary,
    convert_rsqrt,
    convert_square,
    convert_unary,
)
from .matmul import convert_batch_matmul, convert_matmul
from .nms import convert_combined_nms
from .normalization import convert_fused_batch_norm
from .quantize import QUANTIZE_OPS, convert_quantize
from .reduction import ARG_OPERATIONS, REDUCE_OPERATIONS, convert_arg_min_max, convert_reduce, convert_softmax, convert_topk
from .shape_ops import (
    convert_const,
    convert_expand_dims,
    convert_identity,
    convert_pad,
    convert_reshape,
    convert_squeeze,
    convert_transpose,
)

if TYPE_CHECKING:
    from ..registry import OpConverterRegistry


def register_validatable_op_converters(registry: OpConverterRegistry) -> None:
    """Fill `registry` with every built-in converter.

    The same table serves validation and building.
    """
    registry.register("BatchMatMul", convert_batch_matmul)
    registry.register("BiasAdd", convert_bias_add)
    registry.register("CombinedNonMaxSuppression", convert_combined_nms)
    registry.register("ConcatV2", convert_concat)
    registry.register("Const", convert_const)
    registry.register("Conv2D", convert_conv2d)
    registry.register("Conv2DBackpropInput", convert_conv2d_backprop_input)
    registry.register("DepthwiseConv2dNative", convert_conv2d_depthwise)
    registry.register("ExpandDims", convert_expand_dims)
    registry.register("GatherV2", convert_gather)
    registry.register(("Identity", "Snapshot"), convert_identity)
    registry.register("LeakyRelu", convert_leaky_relu)
    registry.register("MatMul", convert_matmul)
    registry.register("Pack", convert_pack)
    registry.register("Pad", convert_pad)
    registry.register("Relu6", convert_relu6)
    registry.register("Reshape", convert_reshape)
    registry.register("Rsqrt", convert_rsqrt)
    registry.register("Slice", convert_slice)
    registry.register("Softmax", convert_softmax)
    registry.register("Split", convert_split)
    registry.register("Square", convert_square)
    registry.register("Squeeze", convert_squeeze)
    registry.register("StridedSlice", convert_strided_slice)
    registry.register("TopKV2", convert_topk)
    registry.register("Transpose", convert_transpose)
    registry.register("Unpack", convert_unpack)

    registry.register(QUANTIZE_OPS, convert_quantize)
    registry.register(BINARY_OPERATIONS, convert_binary)
    registry.register(ACTIVATION_TYPES, convert_activation)
    registry.register(POOLING_TYPES, convert_pool)
    registry.register(("FusedBatchNorm", "FusedBatchNormV2"), convert_fused_batch_norm)
    registry.register(UNARY_OPERATIONS, convert_unary)
    registry.register(REDUCE_OPERATIONS, convert_reduce)
    registry.register(ARG_OPERATIONS, convert_arg_min_max)


__all__ = [
    "QUANTIZE_OPS",
    "register_validatable_op_converters",
]
