from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, NamedTuple

import numpy as np

from .dtypes import DType

if TYPE_CHECKING:
	from .layers import Layer
	from .network import Network


Shape = tuple[int, ...]


class Weights(NamedTuple):
	"""The {type, buffer, count} triple a layer consumes.

	`values` is a flat numpy view; the owner (usually a `WeightStore`) must
	keep it alive until the engine is built.
	"""

	dtype: DType
	values: np.ndarray
	count: int

	@classmethod
	def empty(cls, dtype: DType) -> Weights:
		return cls(dtype, np.zeros(0, dtype=dtype.numpy), 0)


@dataclass(slots=True, eq=False)
class Tensor:
	"""A value flowing through the backend network.

	Dims never include the implicit batch dimension. Tensors hash by identity,
	which is what the quantization maps key on. A tensor with `network=None`
	is detached: it only carries dims/dtype and is used while validating.
	"""

	network: Network | None
	name: str
	dims: Shape
	dtype: DType
	producer: Layer | None = None
	users: list[Layer] = field(default_factory=list)
	is_network_input: bool = False
	is_network_output: bool = False
	dynamic_range: tuple[float, float] | None = None

	def add_user(self, layer: Layer) -> None:
		self.users.append(layer)

	def set_dynamic_range(self, min_value: float, max_value: float) -> bool:
		if min_value > max_value:
			return False
		self.dynamic_range = (float(min_value), float(max_value))
		return True

	@property
	def rank(self) -> int:
		return len(self.dims)

	@property
	def numel(self) -> int:
		n = 1
		for dim in self.dims:
			if dim < 0:
				return -1
			n *= dim
		return n

	def __repr__(self) -> str:  # pragma: no cover
		return f"Tensor(name={self.name!r}, dims={self.dims}, dtype={self.dtype})"


def as_shape(dims: Iterable[int]) -> Shape:
	return tuple(int(d) for d in dims)
