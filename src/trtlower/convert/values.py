from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass

from trtlower.errors import FatalError, check
from trtlower.ir.dtypes import DType
from trtlower.ir.tensor import Shape, Tensor

from .weights import ShapedWeights


class ValueKind(enum.Enum):
    TENSOR = "tensor"
    PLACEHOLDER = "placeholder"
    WEIGHTS = "weights"


@dataclass(frozen=True, slots=True)
class TensorOrWeights:
    """A converted value: a network tensor, a placeholder, or constant weights.

    Placeholders stand in for tensors while validating. They expose a detached
    `Tensor` (no network) so converters can read dims and dtype the same way in
    both modes. `batch_size` is -1 when unknown; 0 is never valid.
    """

    kind: ValueKind
    _tensor: Tensor | None = None
    _weights: ShapedWeights | None = None
    batch_size: int = -1

    def __post_init__(self) -> None:
        check(self.batch_size != 0, "Batch size of a value can never be 0")

    @classmethod
    def from_tensor(cls, tensor: Tensor, batch_size: int = -1) -> TensorOrWeights:
        return cls(ValueKind.TENSOR, _tensor=tensor, batch_size=batch_size)

    @classmethod
    def placeholder(cls, dtype: DType, dims: Shape, batch_size: int = -1) -> TensorOrWeights:
        detached = Tensor(network=None, name="(placeholder)", dims=tuple(dims), dtype=dtype)
        return cls(ValueKind.PLACEHOLDER, _tensor=detached, batch_size=batch_size)

    @classmethod
    def from_weights(cls, weights: ShapedWeights) -> TensorOrWeights:
        return cls(ValueKind.WEIGHTS, _weights=weights)

    @property
    def is_tensor(self) -> bool:
        return self.kind is not ValueKind.WEIGHTS

    @property
    def is_weights(self) -> bool:
        return self.kind is ValueKind.WEIGHTS

    @property
    def is_placeholder(self) -> bool:
        return self.kind is ValueKind.PLACEHOLDER

    @property
    def tensor(self) -> Tensor:
        if self._tensor is None:
            raise FatalError(f"Value is {self.kind.value}, not a tensor")
        return self._tensor

    @property
    def weights(self) -> ShapedWeights:
        if self._weights is None:
            raise FatalError(f"Value is {self.kind.value}, not weights")
        return self._weights

    @property
    def dims(self) -> Shape:
        return self.weights.dims if self.is_weights else self.tensor.dims

    @property
    def dtype(self) -> DType:
        return self.weights.dtype if self.is_weights else self.tensor.dtype

    @property
    def rank(self) -> int:
        return len(self.dims)

    def with_batch_size(self, batch_size: int) -> TensorOrWeights:
        return dataclasses.replace(self, batch_size=batch_size)

    def __str__(self) -> str:
        if self.is_weights:
            return f"TensorOrWeights(type=weights, {self.weights})"
        return (
            f"TensorOrWeights(type={self.kind.value}, dims={self.dims}, "
            f"dtype={self.dtype}, batch_size={self.batch_size})"
        )
