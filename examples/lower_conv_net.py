from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np

repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root / "src"))

from trtlower import ConversionError, ConversionParams, DataType, GraphDef, GraphProperties, NodeDef, PrecisionMode
from trtlower import NodeValidator, convert_graph_to_engine


def _const(name: str, values: np.ndarray) -> NodeDef:
    return NodeDef.make(name, "Const", value=values, dtype=DataType.from_numpy(values.dtype))


def build_conv_classifier(classes: int = 10) -> GraphDef:
    rng = np.random.default_rng(0)
    f32 = DataType.DT_FLOAT
    g = GraphDef()
    g.add(NodeDef.make("TensorRTInputPH_0", "Placeholder", dtype=f32))

    g.add(_const("conv/kernel", rng.standard_normal((3, 3, 3, 8)).astype(np.float32)))
    g.add(NodeDef.make("conv", "Conv2D", ["TensorRTInputPH_0", "conv/kernel"], T=f32, strides=[1, 1, 1, 1], padding="SAME"))
    g.add(_const("conv/bias", np.zeros(8, dtype=np.float32)))
    g.add(NodeDef.make("conv/bias_add", "BiasAdd", ["conv", "conv/bias"], T=f32, data_format="NHWC"))
    g.add(NodeDef.make("relu", "Relu", ["conv/bias_add"], T=f32))
    g.add(NodeDef.make("pool", "MaxPool", ["relu"], T=f32, ksize=[1, 2, 2, 1], strides=[1, 2, 2, 1], padding="VALID"))

    g.add(_const("flatten/shape", np.array([-1, 8 * 8 * 8], dtype=np.int32)))
    g.add(NodeDef.make("flatten", "Reshape", ["pool", "flatten/shape"], T=f32))
    g.add(_const("fc/kernel", rng.standard_normal((8 * 8 * 8, classes)).astype(np.float32)))
    g.add(NodeDef.make("fc", "MatMul", ["flatten", "fc/kernel"], T=f32))
    g.add(NodeDef.make("probs", "Softmax", ["fc"], T=f32))

    g.add(NodeDef.make("TensorRTOutputPH_0", "Identity", ["probs"], T=f32))
    return g


def probe_support(validator: NodeValidator) -> None:
    """Validate a few candidate nodes against a known placeholder."""
    x = NodeDef.make("x", "Placeholder", dtype=DataType.DT_FLOAT)
    props = GraphProperties()
    props.add_output("x", DataType.DT_FLOAT, (1, 16, 16, 3))

    candidates = [
        NodeDef.make("relu", "Relu", ["x"], T=DataType.DT_FLOAT),
        NodeDef.make("squeeze", "Squeeze", ["x"], T=DataType.DT_FLOAT),
        NodeDef.make("cumsum", "Cumsum", ["x"], T=DataType.DT_FLOAT),
    ]
    for node in candidates:
        try:
            validator.validate_node(node, [(x, 0)], props)
            print(f"  {node.name:<8} ({node.op}): ok")
        except ConversionError as exc:
            print(f"  {node.name:<8} ({node.op}): {type(exc).__name__}: {exc}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("Probing node support...")
    probe_support(NodeValidator(PrecisionMode.FP32, use_calibration=True))

    print("\nLowering conv classifier...")
    g = build_conv_classifier()
    result = convert_graph_to_engine(g, ConversionParams(max_batch_size=1), [(1, 16, 16, 3)])
    print(result.network.summary())

    print("\nLowering in INT8 without a calibrator...")
    params = ConversionParams(precision_mode=PrecisionMode.INT8, use_calibration=False)
    result = convert_graph_to_engine(build_conv_classifier(), params, [(1, 16, 16, 3)])
    print(f"{len(result.missing_ranges)} tensor(s) have no quantization range")


if __name__ == "__main__":
    main()
