from __future__ import annotations

from trtlower.errors import InvalidArgumentError
from trtlower.graph.node import AttrType

from ..params import OpConverterParams, check_input_kinds

QUANTIZE_OPS = (
    "QuantizeAndDequantizeV2",
    "QuantizeAndDequantizeV3",
    "FakeQuantWithMinMaxVars",
    "FakeQuantWithMinMaxArgs",
)

_EXPECTED_INPUTS = {
    "FakeQuantWithMinMaxArgs": [("input", False)],
    "FakeQuantWithMinMaxVars": [("input", False), ("min", True), ("max", True)],
    "QuantizeAndDequantizeV2": [("input", False), ("input_min", True), ("input_max", True)],
    "QuantizeAndDequantizeV3": [("input", False), ("input_min", True), ("input_max", True), ("num_bits", True)],
}


def convert_quantize(params: OpConverterParams) -> None:
    """Record the op's range on its input and pass the input through.

    No clamp is inserted: if the backend skips quantizing this tensor the
    range simply goes unused.
    """
    expected = _EXPECTED_INPUTS.get(params.op)
    if expected is None:
        raise InvalidArgumentError(f"Unknown quantization op {params.op}, at {params.name}")
    check_input_kinds(params, expected)

    if params.op == "FakeQuantWithMinMaxArgs":
        if "min" not in params.attrs or "max" not in params.attrs:
            raise InvalidArgumentError(f"Min or max attribute not found for {params.op} at {params.name}")
        min_range = params.attrs.get("min", AttrType.FLOAT)
        max_range = params.attrs.get("max", AttrType.FLOAT)
    else:
        min_weights, max_weights = params.inputs[1].weights, params.inputs[2].weights
        if min_weights.count() == 0 or max_weights.count() == 0:
            raise InvalidArgumentError(f"Empty min or max input for {params.op}, at {params.name}")
        min_range = float(min_weights.values[0])
        max_range = float(max_weights.values[0])
    if params.validation_only:
        return

    value = params.inputs[0]
    params.session.provide_quantization_range(value.tensor, min_range, max_range)
    params.add_output(value)
