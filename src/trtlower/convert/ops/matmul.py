from __future__ import annotations

from typing import Sequence

from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.graph.node import AttrType
from trtlower.ir.layers import MatrixOperation
from trtlower.ir.tensor import Tensor

from ..params import OpConverterParams, allow_data_types, check_input_kinds
from ..reorder import reorder_ck_to_kc
from ..shapes import remove_batch_dimension
from ..values import TensorOrWeights
from ..weights import ShapedWeights
from .elementwise import FLOAT_TYPES


def _operand_dims(dims: Sequence[int], transpose: bool, is_lhs: bool) -> tuple[tuple[int, ...], int]:
    """(leading dims, contracted dim) of a matmul operand."""
    if len(dims) < 2:
        return (), dims[-1]
    rows, cols = dims[-2:]
    if transpose:
        rows, cols = cols, rows
    return tuple(dims[:-2]), cols if is_lhs else rows


def check_matmul_operands(
    params: OpConverterParams,
    a: TensorOrWeights,
    b: TensorOrWeights,
    transpose_a: bool,
    transpose_b: bool,
) -> None:
    for operand, transpose in ((a, transpose_a), (b, transpose_b)):
        if operand.rank == 0:
            raise InvalidArgumentError(f"{params.op} operands must have rank >= 1, at {params.name}")
        # Constant operands are transposed at conversion time, which needs a matrix.
        if operand.is_weights and transpose and operand.rank != 2:
            raise UnimplementedError(
                f"{params.op} can only transpose rank 2 constant operands, got {operand.dims}, at {params.name}"
            )

    lead_a, k_a = _operand_dims(a.dims, transpose_a, is_lhs=True)
    lead_b, k_b = _operand_dims(b.dims, transpose_b, is_lhs=False)
    if k_a >= 0 and k_b >= 0 and k_a != k_b:
        raise InvalidArgumentError(
            f"{params.op} inner dimensions do not match: {a.dims} vs {b.dims}, at {params.name}"
        )
    width = max(len(lead_a), len(lead_b))
    lead_a = (1,) * (width - len(lead_a)) + lead_a
    lead_b = (1,) * (width - len(lead_b)) + lead_b
    for da, db in zip(lead_a, lead_b):
        if da != db and da != 1 and db != 1 and da >= 0 and db >= 0:
            raise InvalidArgumentError(f"{params.op} cannot broadcast {a.dims} with {b.dims}, at {params.name}")


def convert_fc_helper(params: OpConverterParams, tensor_a: Tensor, weights_raw: ShapedWeights, transpose_b: bool) -> None:
    # The FC layer wants KC; source weights are CK unless transpose_b.
    if transpose_b:
        weights = weights_raw
    else:
        weights = params.weight_store.get_temp_weights_like(weights_raw, tag=f"{params.name}/kernel")
        reorder_ck_to_kc(weights_raw, weights)
    bias = ShapedWeights.empty(weights.dtype).get_trt_weights()
    noutput = weights.dims[0]
    layer = params.network.add_fully_connected(tensor_a, noutput, weights.get_trt_weights(), bias)
    params.add_output(layer.get_output(0))


def convert_matmul_helper(
    params: OpConverterParams,
    input_a: TensorOrWeights,
    input_b: TensorOrWeights,
    transpose_a: bool,
    transpose_b: bool,
) -> None:
    should_use_fc = (
        not transpose_a
        and input_a.is_tensor
        and input_b.is_weights
        and input_a.rank >= 3
        and input_b.rank == 2
    )
    if should_use_fc:
        convert_fc_helper(params, input_a.tensor, input_b.weights, transpose_b)
        return

    converter = params.session

    def prepare_operand(operand: TensorOrWeights, transpose: bool) -> tuple[Tensor, bool]:
        if operand.is_tensor:
            return operand.tensor, transpose
        weights = operand.weights
        if transpose:
            transposed = params.weight_store.get_temp_weights_like(weights, tag=f"{params.name}/transposed")
            reorder_ck_to_kc(weights, transposed)
            weights, transpose = transposed, False
        return converter.create_constant_layer(weights, weights.dims), transpose

    def matrix_op(tensor: Tensor, transpose: bool) -> MatrixOperation:
        if tensor.rank < 2:
            return MatrixOperation.VECTOR
        return MatrixOperation.TRANSPOSE if transpose else MatrixOperation.NONE

    tensor_a, transpose_a = prepare_operand(input_a, transpose_a)
    tensor_b, transpose_b = prepare_operand(input_b, transpose_b)
    layer = params.network.add_matrix_multiply(
        tensor_a, matrix_op(tensor_a, transpose_a), tensor_b, matrix_op(tensor_b, transpose_b)
    )
    params.add_output(layer.get_output(0))


def convert_matmul(params: OpConverterParams) -> None:
    check_input_kinds(params, [("a", False), ("b", True)])
    allow_data_types(params, FLOAT_TYPES)
    transpose_a = params.attrs.get_or("transpose_a", AttrType.BOOL, False)
    transpose_b = params.attrs.get_or("transpose_b", AttrType.BOOL, False)
    a, b = params.inputs
    check_matmul_operands(params, a, b, transpose_a, transpose_b)
    if params.validation_only:
        return

    convert_matmul_helper(params, a, b, transpose_a, transpose_b)


def convert_batch_matmul(params: OpConverterParams) -> None:
    allow_data_types(params, FLOAT_TYPES)
    inputs = params.inputs
    if len(inputs) != 2:
        raise InvalidArgumentError(f"{params.op} got {len(inputs)} inputs but expected 2, at {params.name}")
    if inputs[0].is_weights and inputs[1].is_weights:
        raise InvalidArgumentError("All inputs are weights, but Grappler is expected to fold them.")
    transpose_a = params.attrs.get_or("adj_x", AttrType.BOOL, False)
    transpose_b = params.attrs.get_or("adj_y", AttrType.BOOL, False)

    # Weights carry the batch dim explicitly; it may only be 1.
    operands = []
    for value in inputs:
        if value.is_weights:
            if value.dims[0] != 1:
                raise InvalidArgumentError(
                    f"Input weight attempts to broadcast across batch dimension for BatchMatMul, at {params.name}"
                )
            weights = value.weights
            value = TensorOrWeights.from_weights(
                ShapedWeights(weights.dtype, remove_batch_dimension(weights.dims), weights.values)
            )
        operands.append(value)
    check_matmul_operands(params, operands[0], operands[1], transpose_a, transpose_b)
    if params.validation_only:
        return

    convert_matmul_helper(params, operands[0], operands[1], transpose_a, transpose_b)
