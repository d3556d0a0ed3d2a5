"""Per-call context handed to every op converter, plus the shared checks.

A converter body runs the same checks in both modes and only diverges once
`params.validation_only` is consulted, after all validation is done.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from trtlower.config import PrecisionMode
from trtlower.errors import FatalError, InvalidArgumentError, UnimplementedError
from trtlower.graph.dtypes import DataType
from trtlower.graph.node import AttrType, NodeDef
from trtlower.ir.dtypes import float32
from trtlower.ir.tensor import Shape, Tensor

from .attributes import NodeAttributes
from .shapes import tf_dtype_to_trt
from .values import TensorOrWeights
from .weights import WeightStore

if TYPE_CHECKING:
    from trtlower.ir.network import Network

    from .converter import Converter


@dataclass
class OpConverterParams:
    """Everything one converter invocation may read or write.

    Attributes:
        node: The source node being converted.
        inputs: Resolved input values, control inputs excluded.
        outputs: Sink for produced values. While validating only Const fills it.
        validation_only: When True the converter must not touch a network.
        weight_store: Arena for any weights the converter creates.
        precision_mode: Target precision (available in both modes).
        use_calibration: Whether INT8 ranges will come from a calibrator.
        converter: The building session; None while validating.
    """

    node: NodeDef
    inputs: list[TensorOrWeights]
    outputs: list[TensorOrWeights] | None
    validation_only: bool
    weight_store: WeightStore
    precision_mode: PrecisionMode = PrecisionMode.FP32
    use_calibration: bool = True
    converter: Converter | None = None
    attrs: NodeAttributes = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.attrs = NodeAttributes(self.node)

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def op(self) -> str:
        return self.node.op

    @property
    def session(self) -> Converter:
        if self.converter is None:
            raise FatalError(f"Node {self.node.name} tried to build while validating")
        return self.converter

    @property
    def network(self) -> Network:
        return self.session.network

    def add_output(self, value: TensorOrWeights | Tensor) -> None:
        if self.outputs is None:
            raise FatalError(f"Node {self.node.name} has no output sink")
        if isinstance(value, Tensor):
            value = TensorOrWeights.from_tensor(value)
        self.outputs.append(value)


OpConverter = Callable[[OpConverterParams], None]


# =============================================================================
# Shared Checks
# =============================================================================


def check_input_kinds(params: OpConverterParams, expected: Sequence[tuple[str, bool]]) -> None:
    """Check arity and the tensor-vs-weights kind of every input.

    Args:
        params: Converter context.
        expected: `(input name, is_weight)` per input, in order.
    """
    inputs = params.inputs
    if len(inputs) != len(expected):
        raise InvalidArgumentError(
            f"{params.op} got {len(inputs)} inputs but expected {len(expected)}, at {params.name}"
        )
    for value, (input_name, should_be_weight) in zip(inputs, expected):
        if should_be_weight and not value.is_weights:
            raise UnimplementedError(
                f'The input "{input_name}" for {params.op} must be a constant, at {params.name}'
            )
        if not should_be_weight and value.is_weights:
            raise UnimplementedError(
                f'The input "{input_name}" for {params.op} must be a tensor, at {params.name}'
            )


def allow_data_types(
    params: OpConverterParams,
    allowed: Iterable[DataType],
    dtype_attr_name: str = "T",
) -> DataType:
    allowed = set(allowed)
    if dtype_attr_name not in params.attrs:
        raise InvalidArgumentError(f"Attribute with name {dtype_attr_name} not found.")
    dtype = params.attrs.get(dtype_attr_name, AttrType.TYPE)
    if dtype not in allowed:
        names = ", ".join(sorted(t.name for t in allowed))
        raise UnimplementedError(
            f"Data type {dtype.name} is not supported for {params.op}, must be one of [{names}], at {params.name}"
        )
    return dtype


def create_broadcastable_scalar_constant(
    params: OpConverterParams,
    value: float,
    dims: Shape,
    dtype_attr_name: str = "T",
) -> Tensor:
    """A constant tensor of all-1 dims with the rank of `dims`, holding `value`."""
    trt_dtype = float32
    if dtype_attr_name in params.attrs:
        trt_dtype = tf_dtype_to_trt(params.attrs.get(dtype_attr_name, AttrType.TYPE))
    ones = (1,) * len(dims)
    weights = params.weight_store.get_temp_weights(trt_dtype, ones, tag=f"{params.name}/scalar")
    weights.values[:] = value
    converter = params.session
    tensor = converter.create_constant_layer(weights, ones)
    converter.provide_quantization_range(tensor, value, value)
    return tensor
