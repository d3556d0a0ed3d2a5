"""The build-mode lowering session.

A `Converter` owns one backend network and everything needed to fill it: the
value table (node output name -> `TensorOrWeights`), the weight arena, the
quantization bookkeeping and the batch size agreed on so far. Nodes are fed in
topological order through `convert_node`.
"""

from __future__ import annotations

import contextlib
import logging
from types import MappingProxyType
from typing import Iterator, Mapping, NamedTuple, Sequence

import numpy as np

from trtlower.config import PrecisionMode
from trtlower.errors import (
    AlreadyExistsError,
    ConversionError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    UnimplementedError,
)
from trtlower.graph.dtypes import DataType
from trtlower.graph.node import NodeDef, canonical_input_name, parse_input_name
from trtlower.ir.dtypes import DType, float16, float32, int32
from trtlower.ir.layers import NetworkDefinitionError
from trtlower.ir.network import Network
from trtlower.ir.plugins import PluginFactory, PluginRegistry
from trtlower.ir.tensor import Shape, Tensor

from .params import OpConverter, OpConverterParams
from .quantization import QuantizationRanges
from .registry import OpConverterRegistry, default_registry
from .shapes import check_shape_compatible, dims_equal, tf_dtype_to_trt
from .values import TensorOrWeights
from .weights import ShapedWeights, WeightStore

logger = logging.getLogger(__name__)


INPUT_PH_NAME = "TensorRTInputPH_"
OUTPUT_PH_NAME = "TensorRTOutputPH_"


def is_engine_input(name: str) -> bool:
    return name.startswith(INPUT_PH_NAME)


def is_engine_output(name: str) -> bool:
    return name.startswith(OUTPUT_PH_NAME)


class EngineOutputInfo(NamedTuple):
    """Which converted value becomes which named network output."""

    source_tensor_name: str
    dest_node_name: str
    dtype: DataType


class Converter:
    """Lowers source nodes into a `Network`, one node at a time."""

    def __init__(
        self,
        network: Network | None = None,
        precision_mode: PrecisionMode = PrecisionMode.FP32,
        use_calibration: bool = True,
        *,
        registry: OpConverterRegistry | None = None,
        plugin_factory: PluginFactory | None = None,
        plugin_registry: PluginRegistry | None = None,
    ) -> None:
        self.network = network if network is not None else Network()
        self.precision_mode = precision_mode
        self.use_calibration = use_calibration
        self.registry = registry if registry is not None else default_registry()
        self.plugin_factory = plugin_factory
        self.plugin_registry = plugin_registry if plugin_registry is not None else PluginRegistry.default()
        self.weight_store = WeightStore()
        self.quantization = QuantizationRanges()
        self.batch_size = -1
        self._values: dict[str, TensorOrWeights] = {}

    @property
    def values(self) -> Mapping[str, TensorOrWeights]:
        return MappingProxyType(self._values)

    # -------------------------------------------------------------------------
    # Node Conversion
    # -------------------------------------------------------------------------

    def convert_node(self, node: NodeDef) -> list[TensorOrWeights]:
        """Convert one node and store its outputs as `name`, `name:1`, ...

        Raises:
            UnimplementedError: If no converter exists for the op.
            InternalError: If the backend rejects a layer the converter built.
        """
        inputs = self.get_inputs(node)
        outputs: list[TensorOrWeights] = []
        params = OpConverterParams(
            node=node,
            inputs=inputs,
            outputs=outputs,
            validation_only=False,
            weight_store=self.weight_store,
            precision_mode=self.precision_mode,
            use_calibration=self.use_calibration,
            converter=self,
        )
        converter = self._dispatch(node.op)
        logger.debug(f"Converting node {node.name} ({node.op}) with {len(inputs)} input(s)")
        with self._building(node.name):
            converter(params)

        for i, output in enumerate(outputs):
            output_name = node.name if i == 0 else f"{node.name}:{i}"
            # Renaming an engine input would break its binding.
            if output.is_tensor and not is_engine_input(output.tensor.name):
                output.tensor.name = output_name
            logger.debug(f"Adding out tensor {output_name}: {output}")
            try:
                self.add_tensor_or_weights(output_name, output)
            except ConversionError as exc:
                raise type(exc)(f"Failed to add output for node {node.name}: {exc}", node_name=node.name) from exc
        return outputs

    def _dispatch(self, op_type: str) -> OpConverter:
        if self.plugin_factory is not None and self.plugin_factory.is_plugin(op_type):
            from .ops.plugin import convert_plugin

            logger.debug(f"Op {op_type} is handled by the plugin factory")
            return convert_plugin
        converter = self.registry.lookup(op_type)
        if converter is None:
            raise UnimplementedError(f"No converter registered for op: {op_type}")
        return converter

    @contextlib.contextmanager
    def _building(self, node_name: str) -> Iterator[None]:
        try:
            yield
        except NetworkDefinitionError as exc:
            raise InternalError(f"Failed to build layer for {node_name}: {exc}", node_name=node_name) from exc

    def get_inputs(self, node: NodeDef) -> list[TensorOrWeights]:
        inputs = []
        for ref in node.inputs:
            if parse_input_name(ref).is_control:
                continue
            name = canonical_input_name(ref)
            value = self._values.get(name)
            if value is None:
                raise InvalidArgumentError(
                    f"Node {node.name} should have an input named '{name}' but it is not available"
                )
            logger.debug(f"Retrieved input {name}: {value}")
            inputs.append(value)
        return inputs

    # -------------------------------------------------------------------------
    # Value Table
    # -------------------------------------------------------------------------

    def add_tensor_or_weights(self, name: str, value: TensorOrWeights) -> None:
        if value.is_tensor:
            if value.batch_size > 0 and self.batch_size > 0 and value.batch_size != self.batch_size:
                raise InvalidArgumentError(
                    f"Tensor {name} has batch size {value.batch_size} but the network uses {self.batch_size}"
                )
            value = value.with_batch_size(self.batch_size)
        if name in self._values:
            raise AlreadyExistsError(f"tensor/weights {name} already exist.")
        self._values[name] = value

    def get_tensor_or_weights(self, name: str) -> TensorOrWeights:
        value = self._values.get(name)
        if value is None:
            raise NotFoundError(f"Tensor or weights with name {name} could not be found.")
        return value

    def maybe_update_batch_size(self, batch_size: int) -> None:
        # -1 means unknown on either side.
        if self.batch_size < 0 or batch_size < 0 or self.batch_size == batch_size:
            if self.batch_size < 0 and batch_size >= 0:
                self.batch_size = batch_size
            return
        raise InvalidArgumentError(
            f"Provided batch size does not match converter batch size: {batch_size} vs {self.batch_size}"
        )

    # -------------------------------------------------------------------------
    # Engine Inputs / Outputs
    # -------------------------------------------------------------------------

    def add_input_tensor(self, name: str, dtype: DType, dims: Shape, batch_size: int) -> Tensor:
        self.maybe_update_batch_size(batch_size)
        try:
            tensor = self.network.add_input(name, dtype, dims)
        except NetworkDefinitionError as exc:
            raise InvalidArgumentError(f"Failed to create Input layer tensor {name} rank={len(dims)}: {exc}") from exc
        self.add_tensor_or_weights(name, TensorOrWeights.from_tensor(tensor, batch_size))
        logger.debug(f"Added network input {name}: {dims} {dtype}")
        return tensor

    def rename_and_mark_output_tensors(self, output_tensors: Sequence[EngineOutputInfo]) -> None:
        for info in output_tensors:
            value = self.get_tensor_or_weights(info.source_tensor_name)
            if not value.is_tensor:
                raise InvalidArgumentError(f"Output node '{info.source_tensor_name}' is weights not tensor")
            tensor = value.tensor
            with self._building(info.dest_node_name):
                if tensor.is_network_input or tensor.is_network_output:
                    # A tensor can only be bound once; bind an identity copy instead.
                    layer = self.network.add_shuffle(tensor)
                    self.mark_quantization_ranges_as_inferrable(tensor, layer.get_output(0))
                    tensor = layer.get_output(0)
                tensor.name = info.dest_node_name
                self.network.mark_output(tensor)
            tensor.dtype = tf_dtype_to_trt(info.dtype)
            logger.debug(f"Marked output {info.dest_node_name} (from {info.source_tensor_name}): {tensor.dims}")

    # -------------------------------------------------------------------------
    # Layer Helpers
    # -------------------------------------------------------------------------

    def transpose_tensor(self, tensor: Tensor, order_with_batch: Sequence[int]) -> Tensor:
        if len(order_with_batch) - 1 != tensor.rank:
            raise InvalidArgumentError("Rank of perm for transpose does not match with that of the input.")
        if order_with_batch[0] != 0:
            raise UnimplementedError("Transpose at batch dimension is not supported.")
        perm = [int(p) - 1 for p in order_with_batch[1:]]
        out = self.network.add_shuffle(tensor, first_transpose=perm).get_output(0)
        self.mark_quantization_ranges_as_inferrable(tensor, out)
        return out

    def create_constant_layer(self, weights: ShapedWeights, dims: Shape) -> Tensor:
        return self.network.add_constant(dims, weights.get_trt_weights()).get_output(0)

    def prepare_tensor_for_shape(
        self,
        value: TensorOrWeights,
        dims: Shape,
        validation_only: bool,
    ) -> Tensor | None:
        """Return a tensor with `dims`, reshaping or materializing as needed.

        Returns None while validating; the checks still run.
        """
        dims = tuple(dims)
        check_shape_compatible(value, dims)
        if validation_only:
            return None

        if value.is_tensor:
            if dims_equal(value.dims, dims):
                return value.tensor
            out = self.network.add_shuffle(value.tensor, reshape_dims=dims).get_output(0)
            self.mark_quantization_ranges_as_inferrable(value.tensor, out)
            return out

        tensor = self.create_constant_layer(value.weights, dims)
        if self.precision_mode is PrecisionMode.INT8 and not self.use_calibration:
            min_range, max_range = self.get_weight_range(value.weights)
            if min_range == 0.0 and max_range == 0.0:
                min_range, max_range = -127.0, 127.0
            self.provide_quantization_range(tensor, min_range, max_range)
        return tensor

    def get_weight_range(self, weights: ShapedWeights) -> tuple[float, float]:
        if weights.dtype not in (float32, float16, int32):
            raise UnimplementedError(f"Data type not supported: {weights.dtype}")
        values = weights.values[: weights.count()]
        if values.size == 0:
            return 0.0, 0.0
        return float(np.min(values)), float(np.max(values))

    # -------------------------------------------------------------------------
    # Quantization
    # -------------------------------------------------------------------------

    def provide_quantization_range(self, tensor: Tensor, min_range: float, max_range: float) -> None:
        self.quantization.provide_range(tensor, min_range, max_range)

    def mark_quantization_ranges_as_inferrable(self, a: Tensor, b: Tensor) -> None:
        self.quantization.mark_inferrable(a, b)

    def maybe_apply_quantization_ranges(self) -> list[Tensor]:
        """Apply collected ranges in INT8 mode; returns tensors left without one."""
        if self.precision_mode is not PrecisionMode.INT8:
            return []
        missing = self.quantization.apply(self.network, self.use_calibration)
        logger.info(
            f"Applied {len(self.quantization.ranges)} quantization range(s), {len(missing)} tensor(s) without range"
        )
        return missing
