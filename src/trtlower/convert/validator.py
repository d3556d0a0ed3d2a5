from __future__ import annotations

import logging
from typing import Sequence

from trtlower.config import PrecisionMode
from trtlower.errors import ConversionError, InternalError, InvalidArgumentError, UnimplementedError
from trtlower.graph.node import NodeDef
from trtlower.graph.properties import GraphProperties
from trtlower.ir.plugins import PluginFactory

from .ops.quantize import QUANTIZE_OPS
from .params import OpConverterParams
from .registry import OpConverterRegistry, default_registry
from .shapes import validate_tensor_properties
from .values import TensorOrWeights
from .weights import WeightStore

logger = logging.getLogger(__name__)


class NodeValidator:
    """Decides, node by node, whether a source node can be lowered.

    Runs converters in validate-only mode: inputs are placeholders built from
    shape inference results (or real weights for Const producers) and nothing
    is added to any network.
    """

    def __init__(
        self,
        precision_mode: PrecisionMode = PrecisionMode.FP32,
        use_calibration: bool = True,
        *,
        registry: OpConverterRegistry | None = None,
        plugin_factory: PluginFactory | None = None,
    ) -> None:
        self.precision_mode = precision_mode
        self.use_calibration = use_calibration
        self.registry = registry if registry is not None else default_registry()
        self.plugin_factory = plugin_factory
        self.weight_store = WeightStore()

    def validate_node(
        self,
        node: NodeDef,
        input_node_and_ports: Sequence[tuple[NodeDef, int]],
        graph_properties: GraphProperties,
    ) -> None:
        """Raise a `ConversionError` if `node` cannot be lowered.

        Args:
            node: The node to check.
            input_node_and_ports: Producer node and output port of every data
                input, in order.
            graph_properties: Shape inference results for the producers.
        """
        op = node.op
        # Plugins carry their own validation.
        if self.plugin_factory is not None and self.plugin_factory.is_plugin(op):
            return

        # Quantization ops only make sense when ranges will be applied.
        if op in QUANTIZE_OPS:
            is_supported = self.precision_mode is PrecisionMode.INT8
        else:
            is_supported = op in self.registry
        if not is_supported:
            raise UnimplementedError(f"Op type {op} is not supported.")

        inputs = []
        for i, (producer, port) in enumerate(input_node_and_ports):
            try:
                inputs.append(self.convert_to_tensor_or_weights(producer, port, graph_properties))
            except ConversionError as exc:
                raise InternalError(
                    f"Failed to convert input with index {i} to a TensorOrWeights: {exc}", node_name=node.name
                ) from exc

        params = OpConverterParams(
            node=node,
            inputs=inputs,
            outputs=[],
            validation_only=True,
            weight_store=self.weight_store,
            precision_mode=self.precision_mode,
            use_calibration=self.use_calibration,
        )
        self.registry.lookup(op)(params)
        logger.debug(f"Validated node {node.name} ({op})")

    def convert_to_tensor_or_weights(
        self,
        node: NodeDef,
        output_port: int,
        graph_properties: GraphProperties,
    ) -> TensorOrWeights:
        if node.op == "Const":
            if output_port != 0:
                raise InvalidArgumentError("Const node should only have one output.")
            return self.convert_const_to_weights(node)
        if not graph_properties.has_output_properties(node.name):
            raise InvalidArgumentError("Shape and data type are unknown")

        properties = graph_properties.get_output_properties(node.name)
        if output_port >= len(properties):
            raise InvalidArgumentError(f"Node {node.name} has no output properties for port {output_port}")
        prop = properties[output_port]
        trt_dtype, dims, batch_size = validate_tensor_properties(node.op, prop.dtype, prop.shape, validation_only=True)
        return TensorOrWeights.placeholder(trt_dtype, dims, batch_size)

    def convert_const_to_weights(self, node: NodeDef) -> TensorOrWeights:
        outputs: list[TensorOrWeights] = []
        params = OpConverterParams(
            node=node,
            inputs=[],
            outputs=outputs,
            validation_only=True,
            weight_store=self.weight_store,
            precision_mode=self.precision_mode,
            use_calibration=self.use_calibration,
        )
        self.registry.lookup("Const")(params)
        return outputs[0]
