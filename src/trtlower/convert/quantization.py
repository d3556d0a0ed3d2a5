"""Quantization range bookkeeping for INT8 engines.

Ranges are collected while building (from quantization ops and fixed-range
activations) together with "infer" edges between tensors whose ranges are
provably identical. `propagate` closes the ranges over those edges once, after
every node has been converted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from trtlower.ir.network import Network
from trtlower.ir.tensor import Tensor

logger = logging.getLogger(__name__)


@dataclass
class QuantizationRanges:
    """Symmetric ranges per tensor plus directed infer-from edges."""

    ranges: dict[Tensor, float] = field(default_factory=dict)
    edges: list[tuple[Tensor, Tensor]] = field(default_factory=list)

    def provide_range(self, tensor: Tensor, min_range: float, max_range: float) -> None:
        self.ranges[tensor] = max(abs(float(min_range)), abs(float(max_range)))

    def mark_inferrable(self, a: Tensor, b: Tensor) -> None:
        """Record that `a` and `b` share a range, in both directions."""
        self.edges.append((a, b))
        self.edges.append((b, a))

    def get(self, tensor: Tensor) -> float | None:
        return self.ranges.get(tensor)

    def propagate(self) -> int:
        """Copy ranges along edges until nothing changes.

        Returns:
            Number of tensors that received a range.
        """
        inferred = 0
        changed = True
        while changed:
            changed = False
            remaining = []
            for src, dst in self.edges:
                if dst in self.ranges:
                    continue
                if src in self.ranges:
                    self.ranges[dst] = self.ranges[src]
                    inferred += 1
                    changed = True
                    continue
                remaining.append((src, dst))
            self.edges = remaining
        logger.debug(f"Inferred {inferred} quantization range(s), {len(self.edges)} edge(s) unresolved")
        return inferred

    def apply(self, network: Network, use_calibration: bool) -> list[Tensor]:
        """Propagate, then set dynamic ranges on the network.

        Returns:
            Tensors used by some layer that still have no range. Only reported
            (as warnings) when no calibrator will fill them in.
        """
        self.propagate()
        for tensor, r in self.ranges.items():
            logger.debug(f"Setting range for tensor {tensor.name}: {-r}, {r}")
            tensor.set_dynamic_range(-r, r)

        missing: list[Tensor] = []
        if use_calibration:
            return missing
        seen: set[int] = set()
        for layer in network.layers:
            for tensor in (*layer.inputs, *layer.outputs):
                if id(tensor) in seen:
                    continue
                seen.add(id(tensor))
                if tensor not in self.ranges:
                    missing.append(tensor)
                    logger.warning(
                        f"Quantization range was not found for {tensor.name}. "
                        "This is okay if TensorRT does not need the range (e.g. due to node fusion)."
                    )
        return missing
