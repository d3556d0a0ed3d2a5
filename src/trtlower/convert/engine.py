"""Top-level driver: lower a whole source graph into one backend network.

The graph is expected to be a single convertible segment whose boundary is
marked by placeholder nodes: `TensorRTInputPH_<slot>` Placeholders become
network inputs and `TensorRTOutputPH_<slot>` Identities select the outputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from trtlower.config import BuilderConfig, ConversionParams
from trtlower.errors import ConversionError, InternalError, InvalidArgumentError
from trtlower.graph.node import AttrType, GraphDef, NodeDef, canonical_input_name
from trtlower.graph.properties import PartialShape
from trtlower.ir.network import Network
from trtlower.ir.plugins import PluginFactory, PluginRegistry
from trtlower.ir.tensor import Tensor

from .attributes import NodeAttributes
from .converter import INPUT_PH_NAME, OUTPUT_PH_NAME, Converter, EngineOutputInfo, is_engine_input, is_engine_output
from .registry import OpConverterRegistry
from .shapes import validate_tensor_properties

logger = logging.getLogger(__name__)


class EngineBuilder(Protocol):
    """Consumes a finished network; returns None when the build fails."""

    def build_engine(self, network: Network, config: BuilderConfig) -> Any: ...


@dataclass
class ConversionResult:
    """Outcome of a successful lowering.

    Attributes:
        network: The populated network (inputs bound, outputs marked).
        engine: Whatever the builder produced, or None without a builder.
        missing_ranges: Tensors left without a quantization range (INT8 only).
    """

    network: Network
    engine: Any = None
    missing_ranges: list[Tensor] = field(default_factory=list)


def _tagged(exc: ConversionError, node: NodeDef) -> ConversionError:
    return type(exc)(f"{node.name} ({node.op}): {exc.message}", node_name=node.name)


def _slot_number(node_name: str, prefix: str) -> int:
    slot = node_name[len(prefix):]
    if not slot.isdigit():
        raise InvalidArgumentError(f"Failed to parse slot number from {node_name}")
    return int(slot)


def _add_engine_input(
    converter: Converter,
    node: NodeDef,
    input_shapes: Sequence[PartialShape],
) -> None:
    slot = _slot_number(node.name, INPUT_PH_NAME)
    if slot >= len(input_shapes):
        raise InvalidArgumentError(f"No input shape given for {node.name} (slot {slot})")
    dtype = NodeAttributes(node).get("dtype", AttrType.TYPE)
    try:
        trt_dtype, dims, batch_size = validate_tensor_properties(
            node.op, dtype, input_shapes[slot], validation_only=False
        )
    except ConversionError as exc:
        message = f"Validation failed for {node.name} and input slot {slot}: {exc}"
        logger.warning(message)
        raise type(exc)(message, node_name=node.name) from exc
    logger.debug(f"Adding engine input tensor {node.name} with shape {dims}")
    try:
        converter.add_input_tensor(node.name, trt_dtype, dims, batch_size)
    except ConversionError as exc:
        raise _tagged(exc, node) from exc


def _engine_output_info(node: NodeDef) -> tuple[int, EngineOutputInfo]:
    slot = _slot_number(node.name, OUTPUT_PH_NAME)
    if not node.data_inputs():
        raise InvalidArgumentError(f"Output placeholder {node.name} has no input")
    dtype = NodeAttributes(node).get("T", AttrType.TYPE)
    # Output 0 is keyed by the bare node name in the value table.
    source = canonical_input_name(node.data_inputs()[0])
    return slot, EngineOutputInfo(source, node.name, dtype)


def convert_graph_to_engine(
    graph_def: GraphDef,
    params: ConversionParams,
    input_shapes: Sequence[PartialShape],
    *,
    registry: OpConverterRegistry | None = None,
    plugin_factory: PluginFactory | None = None,
    plugin_registry: PluginRegistry | None = None,
    builder: EngineBuilder | None = None,
    calibrator: Any = None,
) -> ConversionResult:
    """Lower `graph_def` into a network and optionally build an engine from it.

    Args:
        graph_def: Nodes in topological order.
        params: Precision, batch and workspace settings.
        input_shapes: Full shape (batch first) of each input slot.
        registry: Converter table; the built-in one when omitted.
        plugin_factory: Custom-op plugins, consulted before the table.
        plugin_registry: Plugin creators for ops lowered through plugins.
        builder: Receives the finished network; skipped when None.
        calibrator: Handed to the builder in calibrated INT8 mode.

    Returns:
        A `ConversionResult`.

    Raises:
        ConversionError: The first failure, tagged with the offending node.
    """
    converter = Converter(
        Network(),
        params.precision_mode,
        params.use_calibration,
        registry=registry,
        plugin_factory=plugin_factory,
        plugin_registry=plugin_registry,
    )
    outputs: dict[int, tuple[NodeDef, EngineOutputInfo]] = {}

    logger.info(f"Starting engine conversion of {len(graph_def)} node(s), precision {params.precision_mode.value}")
    for node in graph_def:
        if is_engine_input(node.name) and node.op == "Placeholder":
            _add_engine_input(converter, node, input_shapes)
        elif is_engine_output(node.name) and node.op == "Identity":
            slot, info = _engine_output_info(node)
            outputs[slot] = (node, info)
        else:
            logger.debug(f"Converting node: {node.name}, {node.op}")
            try:
                converter.convert_node(node)
            except ConversionError as exc:
                raise _tagged(exc, node) from exc

    for slot in sorted(outputs):
        node, info = outputs[slot]
        try:
            converter.rename_and_mark_output_tensors([info])
        except ConversionError as exc:
            raise _tagged(exc, node) from exc
    logger.info(
        f"Converted {len(graph_def)} node(s): {len(converter.network.inputs)} input(s), "
        f"{len(converter.network.outputs)} output(s), {len(converter.network.layers)} layer(s)"
    )

    missing = converter.maybe_apply_quantization_ranges()

    engine = None
    if builder is not None:
        logger.info("Starting engine creation")
        engine = builder.build_engine(converter.network, BuilderConfig.from_params(params, calibrator))
        if engine is None:
            raise InternalError("Failed to build TensorRT engine")
    logger.info("Finished conversion")
    return ConversionResult(network=converter.network, engine=engine, missing_ranges=missing)
