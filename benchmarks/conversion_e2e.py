#!/usr/bin/env python3
"""
End-to-end conversion benchmark.

Measures the Python overhead of lowering a deep conv stack:
- validate-only pass over every node (support probing)
- full conversion into a network

Usage:
    python benchmarks/conversion_e2e.py

Output:
    - Per-phase time statistics
    - Nodes per second for each phase
"""

import sys
import time
from pathlib import Path

import numpy as np

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trtlower import ConversionParams, DataType, GraphDef, GraphProperties, NodeDef, NodeValidator
from trtlower import convert_graph_to_engine
from trtlower.graph import parse_input_name


# =============================================================================
# Configuration
# =============================================================================

WARMUP_ITERS = 3
BENCH_ITERS = 20
NUM_BLOCKS = 16
CHANNELS = 16
SPATIAL = 32


def build_conv_stack(blocks: int) -> tuple[GraphDef, GraphProperties]:
    """Conv + BiasAdd + Relu blocks, NCHW, with shape properties for validation."""
    rng = np.random.default_rng(42)
    f32 = DataType.DT_FLOAT
    g = GraphDef()
    props = GraphProperties()
    shape = (1, CHANNELS, SPATIAL, SPATIAL)

    g.add(NodeDef.make("TensorRTInputPH_0", "Placeholder", dtype=f32))
    props.add_output("TensorRTInputPH_0", f32, shape)
    prev = "TensorRTInputPH_0"
    for i in range(blocks):
        kernel = rng.standard_normal((3, 3, CHANNELS, CHANNELS)).astype(np.float32) * 0.1
        bias = np.zeros(CHANNELS, dtype=np.float32)
        g.add(NodeDef.make(f"block{i}/kernel", "Const", value=kernel, dtype=f32))
        g.add(NodeDef.make(f"block{i}/bias", "Const", value=bias, dtype=f32))
        g.add(
            NodeDef.make(
                f"block{i}/conv", "Conv2D", [prev, f"block{i}/kernel"],
                T=f32, strides=[1, 1, 1, 1], padding="SAME", data_format="NCHW",
            )
        )
        g.add(NodeDef.make(f"block{i}/bias_add", "BiasAdd", [f"block{i}/conv", f"block{i}/bias"], T=f32, data_format="NCHW"))
        g.add(NodeDef.make(f"block{i}/relu", "Relu", [f"block{i}/bias_add"], T=f32))
        for name in ("conv", "bias_add", "relu"):
            props.add_output(f"block{i}/{name}", f32, shape)
        prev = f"block{i}/relu"
    g.add(NodeDef.make("TensorRTOutputPH_0", "Identity", [prev], T=f32))
    return g, props


def validate_graph(graph: GraphDef, props: GraphProperties) -> int:
    """Validate every convertible node; returns how many were checked."""
    validator = NodeValidator()
    checked = 0
    for node in graph:
        if node.op in ("Placeholder", "Identity"):
            continue
        inputs = []
        for ref in node.data_inputs():
            parsed = parse_input_name(ref)
            inputs.append((graph.node(parsed.node), parsed.index))
        validator.validate_node(node, inputs, props)
        checked += 1
    return checked


def time_phase(fn, iters: int, warmup: int) -> dict:
    for _ in range(warmup):
        fn()
    times = []
    for _ in range(iters):
        start = time.perf_counter()
        fn()
        times.append(time.perf_counter() - start)
    times_ms = np.array(times) * 1000
    return {
        "mean_ms": np.mean(times_ms),
        "std_ms": np.std(times_ms),
        "min_ms": np.min(times_ms),
        "p50_ms": np.percentile(times_ms, 50),
        "max_ms": np.max(times_ms),
    }


def main():
    """Run the conversion benchmark."""
    print("=" * 70)
    print("End-to-End Conversion Benchmark")
    print("=" * 70)

    graph, props = build_conv_stack(NUM_BLOCKS)
    print(f"\nGraph: {len(graph)} nodes, {NUM_BLOCKS} conv blocks, {CHANNELS}x{SPATIAL}x{SPATIAL}")

    params = ConversionParams()
    shapes = [(1, CHANNELS, SPATIAL, SPATIAL)]
    network = convert_graph_to_engine(graph, params, shapes).network
    print(f"Network: {network.num_layers} layers")

    phases = {
        "validate": lambda: validate_graph(graph, props),
        "convert": lambda: convert_graph_to_engine(graph, params, shapes),
    }

    print("\n" + "-" * 70)
    print(f"{'Phase':<12} {'mean ms':>10} {'std':>8} {'min':>8} {'p50':>8} {'max':>8} {'nodes/s':>10}")
    print("-" * 70)
    for name, fn in phases.items():
        stats = time_phase(fn, BENCH_ITERS, WARMUP_ITERS)
        rate = len(graph) / (stats["mean_ms"] / 1000)
        print(
            f"{name:<12} {stats['mean_ms']:>10.3f} {stats['std_ms']:>8.3f} {stats['min_ms']:>8.3f} "
            f"{stats['p50_ms']:>8.3f} {stats['max_ms']:>8.3f} {rate:>10.0f}"
        )
    print("=" * 70)


if __name__ == "__main__":
    main()
