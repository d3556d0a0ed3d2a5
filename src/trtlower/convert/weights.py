"""Weight arena: owner of every constant buffer produced while lowering.

Backend layers keep references to weight buffers until the engine is built,
so buffers handed out here are never freed mid-session. The arena is dropped
as a whole together with the `Converter` that owns it.

Key design principles:
- Ownership: every `ShapedWeights` with data is a view into an arena buffer.
- Zero-fill: fresh buffers start at zero so partially written weights are
  deterministic.
- Debuggability: each allocation is tagged and `format_state` lists them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Sequence

import numpy as np

from trtlower.errors import check
from trtlower.ir.dtypes import MAX_DIMS, DType
from trtlower.ir.tensor import Shape, Weights, as_shape


# =============================================================================
# Shaped Weights
# =============================================================================


@dataclass(slots=True, eq=False)
class ShapedWeights:
    """A typed, shaped view over an arena-owned flat buffer.

    Attributes:
        dtype: Backend element type.
        dims: Dimensions. Rank-0 weights hold one element but report a
              `count()` of zero, which is how "no data" is spelled.
        values: Flat numpy array with `dtype.numpy` element type.
    """

    dtype: DType
    dims: Shape
    values: np.ndarray

    @classmethod
    def empty(cls, dtype: DType) -> ShapedWeights:
        """Sentinel for optional weight slots (e.g. a missing bias)."""
        return cls(dtype, (), np.zeros(0, dtype=dtype.numpy))

    @property
    def rank(self) -> int:
        return len(self.dims)

    def count(self) -> int:
        if not self.dims:
            return 0
        n = 1
        for d in self.dims:
            n *= d
        return n

    def size_bytes(self) -> int:
        return self.count() * self.dtype.itemsize

    def get_trt_weights(self) -> Weights:
        return Weights(self.dtype, self.values, self.count())

    def to_list(self) -> list:
        return self.values[: self.count()].tolist()

    def as_array(self) -> np.ndarray:
        """Values reshaped to `dims` (a view, not a copy)."""
        return self.values[: self.count()].reshape(self.dims)

    def __str__(self) -> str:
        return f"ShapedWeights(dims={self.dims}, dtype={self.dtype}, count={self.count()})"


# =============================================================================
# Allocation Tracking
# =============================================================================


class WeightAllocation(NamedTuple):
    """Record of a single arena buffer."""

    index: int
    dtype: DType
    dims: Shape
    nbytes: int
    tag: str


# =============================================================================
# Weight Store
# =============================================================================


@dataclass
class WeightStore:
    """Append-only arena of weight buffers.

    Example:
        >>> store = WeightStore()
        >>> w = store.get_temp_weights(float32, (2, 3))
        >>> w.count()
        6
    """

    _buffers: list[np.ndarray] = field(default_factory=list, repr=False)
    _allocations: list[WeightAllocation] = field(default_factory=list, repr=False)

    # -------------------------------------------------------------------------
    # Public Properties
    # -------------------------------------------------------------------------

    @property
    def num_buffers(self) -> int:
        return len(self._buffers)

    @property
    def total_bytes(self) -> int:
        return sum(a.nbytes for a in self._allocations)

    def get_allocations(self) -> list[WeightAllocation]:
        return list(self._allocations)

    # -------------------------------------------------------------------------
    # Core Operations
    # -------------------------------------------------------------------------

    def get_temp_weights(self, dtype: DType, dims: Sequence[int], tag: str = "") -> ShapedWeights:
        """Allocate zero-filled weights owned by the store.

        Args:
            dtype: Backend element type.
            dims: Weight dimensions (no batch semantics).
            tag: Free-form label shown by `format_state`.

        Returns:
            A `ShapedWeights` view over the new buffer.

        Raises:
            FatalError: If dims are negative or the rank is too large. Dims
                always come from already validated shapes at this point.
        """
        shape = as_shape(dims)
        check(len(shape) <= MAX_DIMS, f"Weight rank {len(shape)} exceeds {MAX_DIMS}")
        check(all(d >= 0 for d in shape), f"Weight dims must be non-negative, got {shape}")

        n = 1
        for d in shape:
            n *= d
        buffer = np.zeros(n, dtype=dtype.numpy)
        self._buffers.append(buffer)
        self._allocations.append(
            WeightAllocation(index=len(self._buffers) - 1, dtype=dtype, dims=shape, nbytes=buffer.nbytes, tag=tag)
        )
        return ShapedWeights(dtype, shape, buffer)

    def get_temp_weights_like(self, weights: ShapedWeights, tag: str = "") -> ShapedWeights:
        """Fresh zero-filled weights with the same dtype and dims as `weights`."""
        return self.get_temp_weights(weights.dtype, weights.dims, tag=tag)

    def copy_from_array(self, array: np.ndarray, dtype: DType, dims: Sequence[int] | None = None, tag: str = "") -> ShapedWeights:
        """Clone `array` into a new arena buffer, casting to `dtype`."""
        shape = as_shape(array.shape if dims is None else dims)
        weights = self.get_temp_weights(dtype, shape, tag=tag)
        flat = np.asarray(array).ravel()
        check(flat.size == weights.values.size, f"Cannot store {flat.size} values in weights of dims {shape}")
        weights.values[:] = flat.astype(dtype.numpy, copy=False)
        return weights

    # -------------------------------------------------------------------------
    # Debugging
    # -------------------------------------------------------------------------

    def format_state(self) -> str:
        lines = [f"WeightStore: {self.num_buffers} buffer(s), {self.total_bytes} bytes"]
        for a in self._allocations:
            tag = f" '{a.tag}'" if a.tag else ""
            lines.append(f"  #{a.index}{tag}: {a.dtype} {a.dims} ({a.nbytes} bytes)")
        return "\n".join(lines)
